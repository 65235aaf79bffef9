"""
PipelineState is the per-request saga carried through the stage sequence.

It holds only plain data so the transition function in
``app.pipeline.saga`` can stay pure.  Timer handles and the caller's
future live next to it in the state store entry.
"""

from __future__ import annotations

import time
from enum import Enum

from pydantic import BaseModel, Field

from app.schemas.messages import Stage
from app.schemas.search import Candidate, RankedResult


class SagaStatus(str, Enum):
    CREATED = "created"
    EXPANDING = "expanding"
    RETRIEVING = "retrieving"
    RANKING = "ranking"
    DONE = "done"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (SagaStatus.DONE, SagaStatus.FAILED)


class PipelineState(BaseModel):
    """
    Saga for one search request.

    Created in ``created`` and progressively enriched as each stage's
    payload (real or fallback) is recorded.
    """

    # ── Inputs ───────────────────────────────────────────────────────
    correlation_id: str
    query: str
    top_k: int = 20

    status: SagaStatus = SagaStatus.CREATED

    # ── Stage payloads (populated progressively) ────────────────────
    variants: list[str] | None = None
    candidates: list[Candidate] | None = None
    ranked: list[RankedResult] | None = None

    degraded_stages: list[Stage] = Field(default_factory=list)
    failure: str | None = None

    # ── Timing ──────────────────────────────────────────────────────
    start_time: float = Field(default_factory=time.time)
    stage_started_at: float = Field(default_factory=time.time)
    stage_timings: dict[str, float] = Field(default_factory=dict)

    @property
    def elapsed_seconds(self) -> float:
        return time.time() - self.start_time
