"""
Pipeline Orchestrator (saga coordinator).

Issues the expand → retrieve → rank requests for every search over the
bus, one stage at a time, and resolves the caller once the last stage's
payload (real or fallback) is recorded.  Replies arrive through the
ResultRouter; timeouts arrive from the one timer armed per saga.  Both
end up in ``_deliver``, which runs the pure transition function under
the saga's lock so only one of them can ever apply for a given stage.
"""

from __future__ import annotations

import asyncio
import functools
from typing import Any, Generator

from app.core.config import Settings, settings as default_settings
from app.core.errors import SearchDispatchError, TransientStageFailure
from app.pipeline import saga
from app.pipeline.saga import SagaEvent, StageFailed, StageReplied, StageTimedOut, Transition
from app.pipeline.stages import BusStageClient, StageClient, StageDefinition, build_stage_definitions
from app.pipeline.state_store import InFlightStore, SagaEntry
from app.schemas.messages import Stage, StageReply
from app.schemas.pipeline import PipelineState
from app.schemas.search import SearchResponse
from app.services.bus import MessageBus
from app.utils.ids import new_correlation_id
from app.utils.logging import get_logger

logger = get_logger("searchsaga.pipeline.orchestrator")


class SearchHandle:
    """
    Caller's handle on one in-flight search.  Awaitable; cancelling it
    evicts the saga without telling any stage.
    """

    def __init__(self, correlation_id: str, future: asyncio.Future[SearchResponse]):
        self.correlation_id = correlation_id
        self._future = future

    def __await__(self) -> Generator[Any, None, SearchResponse]:
        return self._future.__await__()

    def cancel(self) -> bool:
        return self._future.cancel()


class SearchOrchestrator:
    def __init__(
        self,
        bus: MessageBus,
        settings: Settings | None = None,
        store: InFlightStore | None = None,
        clients: dict[Stage, StageClient] | None = None,
    ):
        self.settings = settings or default_settings
        self.definitions: list[StageDefinition] = build_stage_definitions(self.settings)
        self.store = store or InFlightStore(shards=self.settings.state_lock_shards)
        self.clients: dict[Stage, StageClient] = clients or {
            d.stage: BusStageClient(d, bus) for d in self.definitions
        }
        self._timeout_tasks: set[asyncio.Task] = set()

    def definition_for(self, stage: Stage) -> StageDefinition:
        for definition in self.definitions:
            if definition.stage is stage:
                return definition
        raise KeyError(f"Unknown stage: {stage}")

    def in_flight(self) -> int:
        return len(self.store)

    # ── Caller-facing ───────────────────────────────────────────────
    async def start(self, query: str, top_k: int | None = None) -> SearchHandle:
        """Create a saga, dispatch the expansion request and arm its timer."""
        loop = asyncio.get_running_loop()
        cid = new_correlation_id()
        future: asyncio.Future[SearchResponse] = loop.create_future()
        state = PipelineState(
            correlation_id=cid,
            query=query,
            top_k=self.settings.retrieval_top_k if top_k is None else top_k,
        )
        self.store.insert(SagaEntry(state=state, future=future))
        future.add_done_callback(functools.partial(self._on_caller_done, cid))

        logger.info("[SAGA] Started %s | query: %s", cid, query[:80])
        try:
            async with self.store.locked(cid) as entry:
                if entry is not None:
                    await self._apply(entry, saga.begin(entry.state, self.definitions))
        except asyncio.CancelledError:
            # Cancelled before the handle reached the caller; evict via _on_caller_done
            future.cancel()
            raise
        return SearchHandle(cid, future)

    async def search(self, query: str, top_k: int | None = None) -> SearchResponse:
        """
        Run one search end to end.  Raises SearchDispatchError only when a
        stage request could not be published at all.
        """
        handle = await self.start(query, top_k)
        try:
            return await handle
        except asyncio.CancelledError:
            handle.cancel()
            raise

    # ── Event entry points ──────────────────────────────────────────
    async def on_stage_reply(self, correlation_id: str, stage: Stage, reply: StageReply) -> bool:
        return await self._deliver(correlation_id, StageReplied(stage=stage, reply=reply))

    async def on_stage_failure(self, correlation_id: str, stage: Stage, reason: str) -> bool:
        return await self._deliver(correlation_id, StageFailed(stage=stage, reason=reason))

    async def on_stage_timeout(self, correlation_id: str, stage: Stage) -> bool:
        return await self._deliver(correlation_id, StageTimedOut(stage=stage))

    async def close(self) -> None:
        """Cancel every in-flight saga (shutdown path)."""
        for cid in self.store.correlation_ids():
            entry = self.store.get(cid)
            if entry is not None:
                entry.future.cancel()
        for task in list(self._timeout_tasks):
            task.cancel()
        await asyncio.gather(*self._timeout_tasks, return_exceptions=True)

    # ── Internals ───────────────────────────────────────────────────
    async def _deliver(self, correlation_id: str, event: SagaEvent) -> bool:
        async with self.store.locked(correlation_id) as entry:
            if entry is None:
                logger.info(
                    "[SAGA] Discarded %s for unknown saga %s",
                    _describe(event), correlation_id,
                )
                return False

            transition = saga.advance(entry.state, event, self.definitions)
            if not transition.applied:
                logger.info(
                    "[SAGA] Discarded stale %s for %s (status=%s)",
                    _describe(event), correlation_id, entry.state.status.value,
                )
                return False

            entry.cancel_timer()
            if transition.degraded_reason:
                failure = TransientStageFailure(event.stage.value, transition.degraded_reason)
                logger.warning("[SAGA] Degraded stage for %s: %s", correlation_id, failure)
            await self._apply(entry, transition)
            return True

    async def _apply(self, entry: SagaEntry, transition: Transition) -> None:
        """Commit a transition; caller holds the saga's lock."""
        entry.state = transition.state
        cid = entry.correlation_id

        if transition.completed:
            self.store.remove(cid, reason="completed")
            response = saga.to_response(entry.state)
            if not entry.future.done():
                entry.future.set_result(response)
            logger.info(
                "[SAGA] Done %s (%.2fs) | results=%d degraded=%s",
                cid, response.processing_time_seconds,
                len(response.results), response.degraded_stages or "—",
            )
            return

        definition = transition.next_stage
        if definition is None:
            return

        request = definition.build_request(entry.state)
        loop = asyncio.get_running_loop()
        entry.replace_timer(
            loop.call_later(definition.timeout_seconds, self._fire_timeout, cid, definition.stage)
        )
        try:
            await self.clients[definition.stage].send(request)
        except asyncio.CancelledError:
            self.store.remove(cid, reason="cancelled")
            entry.future.cancel()
            raise
        except Exception as e:
            self._fail(entry, SearchDispatchError(cid, definition.stage.value, e))
            return

        if cid not in self.store:
            # Caller went away while the request was being published
            entry.cancel_timer()
            return
        logger.debug("[SAGA] Dispatched %s for %s", definition.stage.value, cid)

    def _fail(self, entry: SagaEntry, error: SearchDispatchError) -> None:
        transition = saga.fail(entry.state, str(error))
        entry.state = transition.state
        self.store.remove(entry.correlation_id, reason="failed")
        if not entry.future.done():
            entry.future.set_exception(error)
        logger.error("[SAGA] Failed %s: %s", entry.correlation_id, error)

    def _fire_timeout(self, correlation_id: str, stage: Stage) -> None:
        task = asyncio.ensure_future(self.on_stage_timeout(correlation_id, stage))
        self._timeout_tasks.add(task)
        task.add_done_callback(self._timeout_tasks.discard)

    def _on_caller_done(self, correlation_id: str, future: asyncio.Future) -> None:
        if future.cancelled() and self.store.remove(correlation_id, reason="cancelled"):
            logger.info("[SAGA] Caller cancelled %s; saga evicted", correlation_id)


def _describe(event: SagaEvent) -> str:
    kind = {StageReplied: "reply", StageFailed: "failure", StageTimedOut: "timeout"}[type(event)]
    return f"{event.stage.value} {kind}"
