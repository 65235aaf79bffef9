"""Shared fakes for the pipeline tests."""

from __future__ import annotations

import asyncio
from typing import Sequence

from app.core.config import Settings
from app.core.errors import BusClosedError
from app.pipeline.stages import StageClient
from app.schemas.messages import StageMessage
from app.schemas.search import Candidate, RankedResult


def fast_settings(**overrides) -> Settings:
    values = dict(
        expand_timeout_seconds=0.05,
        retrieve_timeout_seconds=0.05,
        rank_timeout_seconds=0.05,
        bus_workers_per_channel=2,
        state_lock_shards=8,
    )
    values.update(overrides)
    return Settings(**values)


def candidates(ids: Sequence[str], source: str = "") -> list[Candidate]:
    return [
        Candidate(id=i, content=f"content of {i}", score=1.0 - n * 0.1, source=source)
        for n, i in enumerate(ids)
    ]


class StaticExpander:
    def __init__(self, variants: Sequence[str] = ("rewritten query",)):
        self.variants = list(variants)
        self.calls = 0

    async def expand(self, query: str) -> list[str]:
        self.calls += 1
        return list(self.variants)


class FailingExpander:
    async def expand(self, query: str) -> list[str]:
        raise RuntimeError("llm unavailable")


class ListSearcher:
    def __init__(self, name: str, ids: Sequence[str], fail: bool = False):
        self.name = name
        self.ids = list(ids)
        self.fail = fail
        self.seen_variants: list[list[str]] = []

    async def search(self, query: str, variants: Sequence[str], top_k: int) -> list[Candidate]:
        self.seen_variants.append(list(variants))
        if self.fail:
            raise ConnectionError(f"{self.name} backend down")
        return candidates(self.ids[:top_k])


class ReverseRanker:
    """Ranks candidates in reverse retrieval order with descending scores."""

    async def rank(self, query: str, items: Sequence[Candidate]) -> list[RankedResult]:
        ordered = list(reversed(list(items)))
        return [
            RankedResult(id=c.id, content=c.content, score=float(len(ordered) - n))
            for n, c in enumerate(ordered)
        ]


class RecordingClient(StageClient):
    """Stage client that keeps requests instead of publishing them."""

    def __init__(self, definition):
        super().__init__(definition)
        self.sent: list[StageMessage] = []

    async def send(self, request: StageMessage) -> None:
        self.sent.append(request)


class FailingClient(StageClient):
    async def send(self, request: StageMessage) -> None:
        raise BusClosedError("transport unavailable")


async def wait_for(predicate, timeout: float = 1.0, interval: float = 0.005) -> None:
    async def _poll():
        while not predicate():
            await asyncio.sleep(interval)

    await asyncio.wait_for(_poll(), timeout)


class SlowClient(StageClient):
    """Stage client whose publish takes a while to complete."""

    def __init__(self, definition, delay: float = 0.2):
        super().__init__(definition)
        self.delay = delay
        self.sent: list[StageMessage] = []

    async def send(self, request: StageMessage) -> None:
        await asyncio.sleep(self.delay)
        self.sent.append(request)
