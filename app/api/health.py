"""
Health check and gateway fallback endpoints.
"""

from __future__ import annotations

from fastapi import APIRouter, Request, status
from fastapi.responses import JSONResponse

from app.core.constants import SERVICE_UNAVAILABLE
from app.schemas.search import ApiResponse

router = APIRouter(tags=["Health"])


@router.get("/health")
async def health_check(request: Request):
    """Basic health check."""
    runtime = request.app.state.runtime
    return {
        "status": "ok" if runtime.started else "starting",
        "service": "searchsaga",
        "in_flight": runtime.orchestrator.in_flight(),
    }


@router.get("/fallback")
async def fallback():
    """Target for an upstream gateway when this service is unreachable."""
    return JSONResponse(
        status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
        content=ApiResponse.error(SERVICE_UNAVAILABLE).model_dump(),
    )
