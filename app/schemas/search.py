"""
Schemas for search results and the external API layer.

Candidate is what retrieval produces; RankedResult is what the caller
finally sees.  ApiResponse is the envelope every HTTP response uses.
"""

from __future__ import annotations

from typing import Generic, TypeVar

from pydantic import BaseModel, Field

T = TypeVar("T")


class Candidate(BaseModel):
    """One retrieved document.  ``id`` is unique only within one list."""
    id: str
    content: str = ""
    score: float = 0.0
    source: str = ""  # dense | sparse | fused


class RankedResult(BaseModel):
    """One entry of the final relevance order."""
    id: str
    content: str = ""
    score: float = 0.0


class SearchRequest(BaseModel):
    query: str = Field(min_length=1)
    top_k: int | None = Field(default=None, ge=1, le=200)


class SearchResponse(BaseModel):
    """
    Resolved saga.  ``degraded_stages`` lists every stage whose payload
    came from a fallback or a partially failed reply.
    """
    correlation_id: str
    query: str
    results: list[RankedResult] = Field(default_factory=list)
    degraded_stages: list[str] = Field(default_factory=list)
    processing_time_seconds: float = 0.0


class ApiResponse(BaseModel, Generic[T]):
    status: str
    message: str | None = None
    data: T | None = None

    @classmethod
    def success(cls, data: T, message: str | None = None) -> "ApiResponse[T]":
        return cls(status="success", message=message, data=data)

    @classmethod
    def error(cls, message: str) -> "ApiResponse[T]":
        return cls(status="error", message=message)
