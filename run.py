import uvicorn

from app.core.config import settings

if __name__ == "__main__":
    # In-flight sagas live in process memory: one worker per instance
    uvicorn.run(
        "app.main:app",
        host=settings.host,
        port=settings.port,
        reload=settings.environment == "development",
        log_level="info" if settings.environment == "development" else "warning",
    )
