"""Application configuration using pydantic-settings."""

from functools import lru_cache

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # JanusGraph script endpoint
    janusgraph_url: str = "http://localhost:8182"
    janusgraph_username: str = "admin"
    janusgraph_password: str = ""
    janusgraph_timeout: float = 30.0  # request timeout in seconds
    janusgraph_max_attempts: int = 1  # 1 = single attempt, no transport retry

    # Graph store
    graph_id: str = "souschef"
    serialize_edge_updates: bool = False
    recommendation_limit: int = 5

    # Logging
    log_level: str = "INFO"
    log_format: str = "text"  # text or json


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
