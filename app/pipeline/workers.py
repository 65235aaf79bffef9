"""
Stage workers: the reply side of each stage.

A worker subscribes to its stage's request channel, runs the external
collaborator (query expander, dense + sparse searchers, ranker) and
publishes exactly one reply with the request's correlation id.
Collaborator exceptions become a reply carrying ``error`` so the
coordinator can fall back immediately instead of waiting for the
timeout.

Each worker is independently deployable; in this process they share
the in-memory bus with the coordinator.
"""

from __future__ import annotations

import asyncio
from abc import ABC, abstractmethod
from typing import Any, Protocol, Sequence

from pydantic import ValidationError

from app.pipeline.fusion import DEFAULT_RRF_K, fused_candidates
from app.pipeline.stages import FallbackKind, StageDefinition
from app.schemas.messages import (
    ExpandReply,
    ExpandRequest,
    RankReply,
    RankRequest,
    RetrieveReply,
    RetrieveRequest,
    StageMessage,
    StageReply,
)
from app.schemas.search import Candidate, RankedResult
from app.services.bus import MessageBus
from app.utils.logging import get_logger
from app.utils.timing import Timer

logger = get_logger("searchsaga.pipeline.workers")


# ── Collaborator contracts ──────────────────────────────────────────
class QueryExpander(Protocol):
    async def expand(self, query: str) -> list[str]:
        ...


class CandidateSearcher(Protocol):
    name: str

    async def search(self, query: str, variants: Sequence[str], top_k: int) -> list[Candidate]:
        ...


class CandidateRanker(Protocol):
    async def rank(self, query: str, candidates: Sequence[Candidate]) -> list[RankedResult]:
        ...


# ── Worker base ─────────────────────────────────────────────────────
class StageWorker(ABC):
    request_model: type[StageMessage]
    reply_model: type[StageReply]

    def __init__(self, definition: StageDefinition, bus: MessageBus):
        self.definition = definition
        self.bus = bus

    def subscribe(self, workers: int | None = None) -> None:
        self.bus.subscribe(self.definition.request_channel, self.handle, workers=workers)

    async def handle(self, message: dict[str, Any]) -> None:
        stage = self.definition.stage.value
        try:
            request = self.request_model.model_validate(message)
        except ValidationError as e:
            logger.warning("[WORKER] Dropped malformed %s request: %s", stage, e.errors()[:1])
            return

        with Timer() as t:
            try:
                reply = await self.process(request)
            except asyncio.CancelledError:
                raise
            except Exception as e:
                logger.warning(
                    "[WORKER] %s failed for %s: %s", stage, request.correlation_id, e,
                )
                reply = self.reply_model(correlation_id=request.correlation_id, error=str(e) or type(e).__name__)

        logger.debug("[WORKER] %s for %s took %.1fms", stage, request.correlation_id, t.elapsed_ms)
        await self.bus.publish(self.definition.reply_channel, reply.model_dump(mode="json"))

    @abstractmethod
    async def process(self, request: Any) -> StageReply:
        ...


# ── Expansion ───────────────────────────────────────────────────────
class ExpansionWorker(StageWorker):
    request_model = ExpandRequest
    reply_model = ExpandReply

    def __init__(self, definition: StageDefinition, bus: MessageBus, expander: QueryExpander):
        super().__init__(definition, bus)
        self.expander = expander

    async def process(self, request: ExpandRequest) -> ExpandReply:
        variants = await self.expander.expand(request.query)
        return ExpandReply(correlation_id=request.correlation_id, variants=list(variants))


# ── Retrieval ───────────────────────────────────────────────────────
class RetrievalWorker(StageWorker):
    """
    Runs dense and sparse search concurrently and fuses the two orders
    with RRF.  If exactly one source fails, the survivor's list is used
    as-is (no fusion) and the failed source is reported back so the saga
    is flagged as degraded.  If both fail the request fails.
    """

    request_model = RetrieveRequest
    reply_model = RetrieveReply
    fallback = FallbackKind.SURVIVING_SOURCE

    def __init__(
        self,
        definition: StageDefinition,
        bus: MessageBus,
        dense: CandidateSearcher,
        sparse: CandidateSearcher,
        rrf_k: int = DEFAULT_RRF_K,
    ):
        super().__init__(definition, bus)
        self.dense = dense
        self.sparse = sparse
        self.rrf_k = rrf_k

    async def process(self, request: RetrieveRequest) -> RetrieveReply:
        searchers = (self.dense, self.sparse)
        results = await asyncio.gather(
            *(s.search(request.query, request.variants, request.top_k) for s in searchers),
            return_exceptions=True,
        )

        lists: list[list[Candidate]] = []
        failed: list[str] = []
        for searcher, result in zip(searchers, results):
            if isinstance(result, asyncio.CancelledError):
                raise result
            if isinstance(result, BaseException):
                logger.warning(
                    "[RETRIEVAL] %s search failed for %s: %s",
                    searcher.name, request.correlation_id, result,
                )
                failed.append(searcher.name)
            else:
                lists.append([_tag(c, searcher.name) for c in result])

        if not lists:
            raise RuntimeError(f"all retrieval sources failed: {', '.join(failed)}")

        if failed:
            candidates = lists[0][: request.top_k]
            logger.info(
                "[RETRIEVAL] %s: %s fallback, %d candidate(s) from surviving source",
                request.correlation_id, self.fallback.value, len(candidates),
            )
        else:
            candidates = fused_candidates(lists, request.top_k, k=self.rrf_k)

        return RetrieveReply(
            correlation_id=request.correlation_id,
            candidates=candidates,
            degraded_sources=failed,
        )


def _tag(candidate: Candidate, source: str) -> Candidate:
    if candidate.source:
        return candidate
    return candidate.model_copy(update={"source": source})


# ── Ranking ─────────────────────────────────────────────────────────
class RankingWorker(StageWorker):
    request_model = RankRequest
    reply_model = RankReply

    def __init__(self, definition: StageDefinition, bus: MessageBus, ranker: CandidateRanker):
        super().__init__(definition, bus)
        self.ranker = ranker

    async def process(self, request: RankRequest) -> RankReply:
        ranked = await self.ranker.rank(request.query, request.candidates)
        return RankReply(correlation_id=request.correlation_id, ranked=list(ranked))
