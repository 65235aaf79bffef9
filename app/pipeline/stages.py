"""
Stage definitions for the fixed expand → retrieve → rank sequence.

Each stage is described once: which status means "awaiting it", which
channels carry its request and reply, how its request is built from the
saga, how its reply is recorded, and which fallback policy applies when
the reply never comes or is unusable.  The coordinator only walks this
table; it has no per-stage branches of its own.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable

from pydantic import BaseModel

from app.core.config import Settings
from app.schemas.messages import (
    ExpandReply,
    ExpandRequest,
    RankReply,
    RankRequest,
    RetrieveReply,
    RetrieveRequest,
    Stage,
    StageMessage,
    StageReply,
)
from app.schemas.pipeline import PipelineState, SagaStatus
from app.schemas.search import RankedResult
from app.services.bus import MessageBus


# ── Fallback policies ───────────────────────────────────────────────
class FallbackKind(str, Enum):
    ECHO_QUERY = "echo_query"  # expansion: the original query is the only variant
    SURVIVING_SOURCE = "surviving_source"  # retrieval worker: keep the source that answered
    EMPTY_CANDIDATES = "empty_candidates"  # retrieval: nothing came back at all
    FUSED_ORDER = "fused_order"  # ranking: retrieval order, truncated, score 0


@dataclass(frozen=True)
class FallbackPolicy:
    kind: FallbackKind
    result_size: int | None = None

    def synthesize(self, state: PipelineState) -> StageReply:
        """Build the reply a stage would have sent, from saga state alone."""
        cid = state.correlation_id
        if self.kind is FallbackKind.ECHO_QUERY:
            return ExpandReply(correlation_id=cid, variants=[state.query])
        if self.kind is FallbackKind.EMPTY_CANDIDATES:
            return RetrieveReply(correlation_id=cid, candidates=[])
        if self.kind is FallbackKind.FUSED_ORDER:
            candidates = state.candidates or []
            if self.result_size is not None:
                candidates = candidates[: self.result_size]
            return RankReply(
                correlation_id=cid,
                ranked=[
                    RankedResult(id=c.id, content=c.content, score=0.0)
                    for c in candidates
                ],
            )
        raise ValueError(f"Fallback {self.kind.value} cannot be synthesized by the coordinator")


# ── Stage definitions ───────────────────────────────────────────────
@dataclass(frozen=True)
class StageDefinition:
    stage: Stage
    awaiting: SagaStatus
    request_channel: str
    reply_channel: str
    reply_model: type[StageReply]
    timeout_seconds: float
    fallback: FallbackPolicy
    build_request: Callable[[PipelineState], StageMessage]
    record: Callable[[PipelineState, Any], dict[str, Any]]

    def parse_reply(self, message: dict[str, Any] | BaseModel) -> StageReply:
        if isinstance(message, self.reply_model):
            return message
        if isinstance(message, BaseModel):
            message = message.model_dump()
        return self.reply_model.model_validate(message)


def build_stage_definitions(settings: Settings) -> list[StageDefinition]:
    """The fixed stage sequence, in dispatch order."""
    return [
        StageDefinition(
            stage=Stage.EXPAND,
            awaiting=SagaStatus.EXPANDING,
            request_channel=settings.expand_request_channel,
            reply_channel=settings.expand_reply_channel,
            reply_model=ExpandReply,
            timeout_seconds=settings.expand_timeout_seconds,
            fallback=FallbackPolicy(FallbackKind.ECHO_QUERY),
            build_request=lambda s: ExpandRequest(correlation_id=s.correlation_id, query=s.query),
            record=_record_variants,
        ),
        StageDefinition(
            stage=Stage.RETRIEVE,
            awaiting=SagaStatus.RETRIEVING,
            request_channel=settings.retrieve_request_channel,
            reply_channel=settings.retrieve_reply_channel,
            reply_model=RetrieveReply,
            timeout_seconds=settings.retrieve_timeout_seconds,
            fallback=FallbackPolicy(FallbackKind.EMPTY_CANDIDATES),
            build_request=lambda s: RetrieveRequest(
                correlation_id=s.correlation_id,
                query=s.query,
                variants=s.variants or [s.query],
                top_k=s.top_k,
            ),
            record=lambda s, reply: {"candidates": list(reply.candidates)},
        ),
        StageDefinition(
            stage=Stage.RANK,
            awaiting=SagaStatus.RANKING,
            request_channel=settings.rank_request_channel,
            reply_channel=settings.rank_reply_channel,
            reply_model=RankReply,
            timeout_seconds=settings.rank_timeout_seconds,
            fallback=FallbackPolicy(FallbackKind.FUSED_ORDER, result_size=settings.final_result_size),
            build_request=lambda s: RankRequest(
                correlation_id=s.correlation_id,
                query=s.query,
                candidates=s.candidates or [],
            ),
            record=lambda s, reply: {"ranked": list(reply.ranked)[: settings.final_result_size]},
        ),
    ]


def _record_variants(state: PipelineState, reply: ExpandReply) -> dict[str, Any]:
    variants = [v.strip() for v in reply.variants if v and v.strip()]
    # An expansion that drops the user's own wording still searches for it
    if state.query not in variants:
        variants.insert(0, state.query)
    return {"variants": variants}


# ── Stage clients ───────────────────────────────────────────────────
class StageClient(ABC):
    """
    Send side of a stage.  ``send`` publishes one request; exactly one
    reply with the same correlation id arrives later on the stage's reply
    channel, or none at all (timeout path).
    """

    def __init__(self, definition: StageDefinition):
        self.definition = definition

    @abstractmethod
    async def send(self, request: StageMessage) -> None:
        ...


class BusStageClient(StageClient):
    """Publishes stage requests on the stage's request channel."""

    def __init__(self, definition: StageDefinition, bus: MessageBus):
        super().__init__(definition)
        self.bus = bus

    async def send(self, request: StageMessage) -> None:
        await self.bus.publish(self.definition.request_channel, request.model_dump(mode="json"))
