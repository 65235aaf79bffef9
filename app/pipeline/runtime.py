"""
Wires the bus, coordinator, result router and any in-process stage
workers into one runtime with a start/stop lifecycle.

Stages whose collaborator is not supplied get no local worker: their
requests go unanswered here (they belong to another deployment) and the
coordinator's timeouts and fallbacks still resolve every search.
"""

from __future__ import annotations

from dataclasses import dataclass, field

from app.core.config import Settings, settings as default_settings
from app.pipeline.orchestrator import SearchOrchestrator
from app.pipeline.router import ResultRouter
from app.pipeline.workers import (
    CandidateRanker,
    CandidateSearcher,
    ExpansionWorker,
    QueryExpander,
    RankingWorker,
    RetrievalWorker,
    StageWorker,
)
from app.schemas.messages import Stage
from app.services.bus import MessageBus
from app.utils.logging import get_logger

logger = get_logger("searchsaga.pipeline.runtime")


@dataclass
class SearchRuntime:
    settings: Settings
    bus: MessageBus
    orchestrator: SearchOrchestrator
    router: ResultRouter
    workers: list[StageWorker] = field(default_factory=list)
    started: bool = False

    async def start(self) -> None:
        if self.started:
            return
        self.router.subscribe()
        for worker in self.workers:
            worker.subscribe()
        self.started = True
        logger.info(
            "[RUNTIME] Started | local stages=%s",
            [w.definition.stage.value for w in self.workers] or "none",
        )

    async def stop(self) -> None:
        if not self.started:
            return
        await self.orchestrator.close()
        await self.bus.close()
        self.started = False
        logger.info("[RUNTIME] Stopped")


def build_runtime(
    settings: Settings | None = None,
    *,
    bus: MessageBus | None = None,
    expander: QueryExpander | None = None,
    dense: CandidateSearcher | None = None,
    sparse: CandidateSearcher | None = None,
    ranker: CandidateRanker | None = None,
) -> SearchRuntime:
    settings = settings or default_settings
    bus = bus or MessageBus(workers_per_channel=settings.bus_workers_per_channel)
    orchestrator = SearchOrchestrator(bus, settings=settings)
    router = ResultRouter(orchestrator, bus)

    workers: list[StageWorker] = []
    if expander is not None:
        workers.append(ExpansionWorker(orchestrator.definition_for(Stage.EXPAND), bus, expander))
    if dense is not None and sparse is not None:
        workers.append(RetrievalWorker(
            orchestrator.definition_for(Stage.RETRIEVE), bus, dense, sparse, rrf_k=settings.rrf_k,
        ))
    elif dense is not None or sparse is not None:
        raise ValueError("Retrieval worker needs both a dense and a sparse searcher")
    if ranker is not None:
        workers.append(RankingWorker(orchestrator.definition_for(Stage.RANK), bus, ranker))

    return SearchRuntime(
        settings=settings,
        bus=bus,
        orchestrator=orchestrator,
        router=router,
        workers=workers,
    )
