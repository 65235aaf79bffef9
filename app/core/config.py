from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    app_name: str = "SearchSaga Coordinator"
    environment: str = "development"
    host: str = "127.0.0.1"
    port: int = 8000
    log_level: str = "INFO"

    # Per-stage reply deadlines (seconds). Their sum bounds every search.
    expand_timeout_seconds: float = 2.0
    retrieve_timeout_seconds: float = 3.0
    rank_timeout_seconds: float = 2.0

    # Retrieval / ranking sizes
    retrieval_top_k: int = 20  # Candidates requested from the retrieval stage
    final_result_size: int = 5  # Results returned per search, ranked or fallback
    rrf_k: int = 60  # Reciprocal Rank Fusion smoothing constant

    # Bus channels: one per stage request type and one per stage reply type
    expand_request_channel: str = "search.expand.request"
    expand_reply_channel: str = "search.expand.reply"
    retrieve_request_channel: str = "search.retrieve.request"
    retrieve_reply_channel: str = "search.retrieve.reply"
    rank_request_channel: str = "search.rank.request"
    rank_reply_channel: str = "search.rank.reply"

    # Concurrency
    bus_workers_per_channel: int = 4  # Consumer tasks draining each subscription
    state_lock_shards: int = 64  # Lock stripes guarding in-flight sagas

    class Config:
        env_file = ".env"
        extra = "ignore"  # Ignore extra environment variables that aren't in the Settings class

    @property
    def total_timeout_seconds(self) -> float:
        return (
            self.expand_timeout_seconds
            + self.retrieve_timeout_seconds
            + self.rank_timeout_seconds
        )


settings = Settings()
