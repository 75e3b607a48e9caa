"""Runtime configuration for the SeekRAG client."""

from __future__ import annotations

from functools import lru_cache
from typing import Literal, Optional

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Environment-backed configuration model."""

    model_config = SettingsConfigDict(env_prefix="seekrag_", env_file=".env", case_sensitive=False)

    environment: Literal["dev", "test", "prod"] = "dev"

    # Knowledge service endpoints
    knowledge_base_url: str = "https://edge.flowith.net"
    seek_path: str = "/external/use/seek-knowledge"
    documents_path: str = "/external/documents"

    request_timeout_seconds: float = 30.0
    # Upper bound on waiting for a `final` event once a query is submitted
    stream_timeout_seconds: float = 120.0

    # Document status polling
    poll_initial_delay_seconds: float = 3.0
    poll_interval_seconds: float = 5.0
    poll_backoff_factor: float = 1.5
    poll_max_interval_seconds: float = 30.0
    poll_max_wait_seconds: float = 300.0

    # Query defaults
    default_model: str = "gpt-4o-mini"
    default_temperature: float = 0.7
    default_max_tokens: int = 2000
    default_response_format: str = "text"
    use_history: bool = True

    max_upload_size_mb: int = 25

    # CORS
    cors_allow_origins: tuple[str, ...] = ()
    cors_allow_credentials: bool = False
    cors_allow_methods: tuple[str, ...] = ("GET", "POST", "PATCH", "DELETE", "OPTIONS")
    cors_allow_headers: tuple[str, ...] = ("*",)

    @property
    def is_test(self) -> bool:
        return self.environment == "test"

    @property
    def seek_url(self) -> str:
        return f"{self.knowledge_base_url.rstrip('/')}/{self.seek_path.lstrip('/')}"

    @property
    def documents_url(self) -> str:
        return f"{self.knowledge_base_url.rstrip('/')}/{self.documents_path.lstrip('/')}"

    @property
    def max_upload_size_bytes(self) -> int:
        return self.max_upload_size_mb * 1024 * 1024


@lru_cache(maxsize=1)
def _cached_settings() -> Settings:
    return Settings()


def get_settings(override: Optional[dict[str, object]] = None) -> Settings:
    """Return settings, optionally overriding values without mutating cache."""

    if override:
        return Settings(**override)
    return _cached_settings()
