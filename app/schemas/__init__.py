"""
Pydantic schemas for every pipeline boundary.
Each module covers bus messages, saga state, or the API layer.
"""

from app.schemas.search import (
    Candidate,
    RankedResult,
    SearchRequest,
    SearchResponse,
    ApiResponse,
)
from app.schemas.messages import (
    Stage,
    StageMessage,
    StageReply,
    ExpandRequest,
    ExpandReply,
    RetrieveRequest,
    RetrieveReply,
    RankRequest,
    RankReply,
)
from app.schemas.pipeline import PipelineState, SagaStatus

__all__ = [
    # Search / API
    "Candidate",
    "RankedResult",
    "SearchRequest",
    "SearchResponse",
    "ApiResponse",
    # Messages
    "Stage",
    "StageMessage",
    "StageReply",
    "ExpandRequest",
    "ExpandReply",
    "RetrieveRequest",
    "RetrieveReply",
    "RankRequest",
    "RankReply",
    # Saga
    "PipelineState",
    "SagaStatus",
]
