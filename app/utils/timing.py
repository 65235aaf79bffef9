"""
Stage timing helpers.

Usage:
    with Timer("rank_stage") as t:
        ...
    print(t.elapsed_ms)
"""

from __future__ import annotations

import time
from typing import Any

from app.utils.logging import get_logger

logger = get_logger("searchsaga.timing")


class Timer:
    """Simple context-manager timer (sync + async compatible)."""

    def __init__(self, label: str = ""):
        self.label = label
        self._start: float = 0.0
        self.elapsed_s: float = 0.0

    @property
    def elapsed_ms(self) -> float:
        return self.elapsed_s * 1000

    def __enter__(self) -> "Timer":
        self._start = time.perf_counter()
        return self

    def __exit__(self, *_: Any) -> None:
        self.elapsed_s = time.perf_counter() - self._start
        if self.label:
            logger.debug("%s completed in %.1fms", self.label, self.elapsed_ms)

    async def __aenter__(self) -> "Timer":
        return self.__enter__()

    async def __aexit__(self, *exc: Any) -> None:
        self.__exit__(*exc)

