"""
In-flight saga store.

Maps correlation id → SagaEntry (pure saga state + the caller's future
+ the one live stage timer).  Transitions for a saga run under a lock
stripe chosen by correlation id, so a reply and a timeout for the same
saga serialize while unrelated sagas proceed on other stripes.
"""

from __future__ import annotations

import asyncio
import zlib
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from typing import AsyncIterator

from app.core.errors import DuplicateCorrelationIdError
from app.schemas.pipeline import PipelineState
from app.schemas.search import SearchResponse
from app.utils.logging import get_logger

logger = get_logger("searchsaga.pipeline.state_store")


@dataclass
class SagaEntry:
    state: PipelineState
    future: asyncio.Future[SearchResponse]
    timer: asyncio.TimerHandle | None = field(default=None, repr=False)

    @property
    def correlation_id(self) -> str:
        return self.state.correlation_id

    def replace_timer(self, handle: asyncio.TimerHandle | None) -> None:
        """Exactly one live timer per saga: arming a new one drops the old."""
        self.cancel_timer()
        self.timer = handle

    def cancel_timer(self) -> None:
        if self.timer is not None:
            self.timer.cancel()
            self.timer = None


class InFlightStore:
    """Concurrency-safe map of in-flight sagas with striped locks."""

    def __init__(self, shards: int = 64):
        self._entries: dict[str, SagaEntry] = {}
        self._locks = [asyncio.Lock() for _ in range(max(1, shards))]

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, correlation_id: object) -> bool:
        return correlation_id in self._entries

    def correlation_ids(self) -> list[str]:
        return list(self._entries)

    def get(self, correlation_id: str) -> SagaEntry | None:
        return self._entries.get(correlation_id)

    def insert(self, entry: SagaEntry) -> None:
        cid = entry.correlation_id
        if cid in self._entries:
            raise DuplicateCorrelationIdError(f"Saga {cid} is already in flight")
        self._entries[cid] = entry

    def remove(self, correlation_id: str, reason: str = "completed") -> SagaEntry | None:
        """Evict a saga and disarm its timer.  Safe to call more than once."""
        entry = self._entries.pop(correlation_id, None)
        if entry is not None:
            entry.cancel_timer()
            logger.debug("[STORE] Removed saga %s (%s)", correlation_id, reason)
        return entry

    def lock_for(self, correlation_id: str) -> asyncio.Lock:
        return self._locks[zlib.crc32(correlation_id.encode("utf-8")) % len(self._locks)]

    @asynccontextmanager
    async def locked(self, correlation_id: str) -> AsyncIterator[SagaEntry | None]:
        """
        Hold the saga's lock stripe and yield its entry, or ``None`` if the
        saga is no longer tracked once the lock is acquired.
        """
        async with self.lock_for(correlation_id):
            yield self._entries.get(correlation_id)
