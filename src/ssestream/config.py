"""Client configuration via environment variables (SSESTREAM_ prefix) or defaults."""

from __future__ import annotations

from typing import Literal

from pydantic_settings import BaseSettings


class EventSourceConfig(BaseSettings):
    default_reconnection_time_ms: int = 3000
    max_backoff_exponent: int = 12  # caps backoff at 144 s
    retry_after_unit: Literal["ms", "s"] = "ms"
    connect_timeout_seconds: float = 10.0
    read_timeout_seconds: float | None = None  # streams stay idle for long periods
    follow_redirects: bool = True
    user_agent: str = "ssestream/0.1"
    extra_headers: dict[str, str] = {}
    error_body_limit: int = 1000
    log_dir: str | None = None
    log_level: str = "INFO"

    model_config = {"env_prefix": "SSESTREAM_"}
