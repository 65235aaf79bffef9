from __future__ import annotations

from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from app.core.config import settings
from app.utils.logging import get_logger, setup_logging

# Configure the handler before any module grabs its logger
setup_logging()

from app.pipeline.runtime import SearchRuntime, build_runtime  # noqa: E402
from app.api.search import router as search_router  # noqa: E402
from app.api.health import router as health_router  # noqa: E402

logger = get_logger("searchsaga.main")


def create_app(runtime: SearchRuntime | None = None) -> FastAPI:
    """
    Build the HTTP app around a search runtime.

    Stage collaborators are plugged in by whoever builds the runtime;
    the default runtime only runs the coordinator and relies on stage
    workers deployed elsewhere on the bus.
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        logger.info("Starting %s...", settings.app_name)
        await app.state.runtime.start()
        logger.info(
            "[OK] Coordinator ready | stage timeouts=%.1fs total",
            app.state.runtime.settings.total_timeout_seconds,
        )
        yield
        logger.info("Shutting down %s...", settings.app_name)
        await app.state.runtime.stop()
        logger.info("[OK] Shutdown complete")

    app = FastAPI(
        title=settings.app_name,
        description="Search coordinator: expand → retrieve → rank over an async message bus",
        version="1.0.0",
        lifespan=lifespan,
    )
    app.state.runtime = runtime or build_runtime(settings)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],  # In production, specify your frontend domain
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(search_router, prefix="/api/v1")  # /api/v1/search
    app.include_router(health_router, prefix="/api")  # /api/health, /api/fallback
    return app


app = create_app()
