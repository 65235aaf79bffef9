"""
Thin API route for /search.

No business logic: validates the request, hands it to the saga
coordinator and wraps the result in the ApiResponse envelope.  A client
that disconnects mid-search has its saga evicted immediately.
"""

from __future__ import annotations

import asyncio

from fastapi import APIRouter, Depends, Request, status
from fastapi.responses import JSONResponse

from app.core.constants import (
    SEARCH_CANCELLED,
    SEARCH_COMPLETED,
    SEARCH_DEGRADED,
    SERVICE_UNAVAILABLE,
)
from app.core.errors import SearchDispatchError
from app.pipeline.orchestrator import SearchHandle, SearchOrchestrator
from app.schemas.search import ApiResponse, SearchRequest, SearchResponse
from app.utils.logging import get_logger

logger = get_logger("searchsaga.api.search")

router = APIRouter(tags=["Search"])

DISCONNECT_POLL_SECONDS = 0.25


def get_orchestrator(request: Request) -> SearchOrchestrator:
    return request.app.state.runtime.orchestrator


@router.post("/search", response_model=ApiResponse[SearchResponse])
async def search(
    body: SearchRequest,
    request: Request,
    orchestrator: SearchOrchestrator = Depends(get_orchestrator),
):
    q = body.query.strip()
    logger.info("[SEARCH] New query: %s%s", q[:80], "..." if len(q) > 80 else "")

    try:
        handle = await orchestrator.start(q, top_k=body.top_k)
        result = await _await_unless_disconnected(handle, request)
    except SearchDispatchError as e:
        logger.error("[SEARCH] Dispatch failed: %s", e)
        return JSONResponse(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            content=ApiResponse.error(SERVICE_UNAVAILABLE).model_dump(),
        )

    if result is None:
        logger.info("[SEARCH] Client disconnected; saga %s evicted", handle.correlation_id)
        return JSONResponse(status_code=499, content=ApiResponse.error(SEARCH_CANCELLED).model_dump())

    message = SEARCH_DEGRADED if result.degraded_stages else SEARCH_COMPLETED
    return ApiResponse[SearchResponse].success(result, message=message)


async def _await_unless_disconnected(handle: SearchHandle, request: Request) -> SearchResponse | None:
    """Wait for the saga; cancel it if the HTTP client goes away first."""
    waiter = asyncio.ensure_future(_resolve(handle))
    try:
        while True:
            done, _ = await asyncio.wait({waiter}, timeout=DISCONNECT_POLL_SECONDS)
            if done:
                return waiter.result()
            if await request.is_disconnected():
                handle.cancel()
                return None
    except asyncio.CancelledError:
        handle.cancel()
        raise
    finally:
        if not waiter.done():
            waiter.cancel()


async def _resolve(handle: SearchHandle) -> SearchResponse:
    return await handle
