"""
Bus message contracts, one request/reply pair per stage.

Every message carries the correlation id of the saga it belongs to.
Replies may carry ``error`` when the stage ran but its collaborator
failed; the coordinator treats that like a timeout and falls back.
"""

from __future__ import annotations

from enum import Enum

from pydantic import BaseModel, Field

from app.schemas.search import Candidate, RankedResult


class Stage(str, Enum):
    EXPAND = "expand"
    RETRIEVE = "retrieve"
    RANK = "rank"


class StageMessage(BaseModel):
    correlation_id: str = Field(min_length=1)


class StageReply(StageMessage):
    error: str | None = None


# ── Expansion ───────────────────────────────────────────────────────
class ExpandRequest(StageMessage):
    query: str


class ExpandReply(StageReply):
    variants: list[str] = Field(default_factory=list)


# ── Retrieval ───────────────────────────────────────────────────────
class RetrieveRequest(StageMessage):
    query: str
    variants: list[str] = Field(default_factory=list)
    top_k: int = 20


class RetrieveReply(StageReply):
    candidates: list[Candidate] = Field(default_factory=list)
    degraded_sources: list[str] = Field(default_factory=list)


# ── Ranking ─────────────────────────────────────────────────────────
class RankRequest(StageMessage):
    query: str
    candidates: list[Candidate] = Field(default_factory=list)


class RankReply(StageReply):
    ranked: list[RankedResult] = Field(default_factory=list)
