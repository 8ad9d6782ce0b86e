"""
Server configuration for Sunny.
"""

import os
from dataclasses import dataclass, field
from typing import Optional, Set

from ..llm import DEFAULT_MAX_TOKENS, DEFAULT_MODEL

DEFAULT_DATABASE_URL = "sqlite:///./sunny.db"
DEFAULT_MAX_ITERATIONS = 8
DEFAULT_MAX_HISTORY_MESSAGES = 10


def _env_flag(name: str) -> bool:
    return os.environ.get(name, "").lower() in ("1", "true", "yes")


@dataclass
class ServerConfig:
    """Configuration for the Sunny server."""

    host: str = "0.0.0.0"
    port: int = 8000

    database_url: Optional[str] = None

    api_keys: Set[str] = field(default_factory=lambda: {"dev-sunny-key"})

    anthropic_api_key: Optional[str] = None
    model: str = DEFAULT_MODEL
    max_tokens: int = DEFAULT_MAX_TOKENS
    completion_backend: str = "http"

    max_iterations: int = DEFAULT_MAX_ITERATIONS
    max_history_messages: int = DEFAULT_MAX_HISTORY_MESSAGES
    parallel_tools: bool = False

    cors_origins: list = field(default_factory=lambda: ["*"])

    debug: bool = False

    log_level: str = "info"

    def __post_init__(self):
        if self.database_url is None:
            self.database_url = os.environ.get("DATABASE_URL", DEFAULT_DATABASE_URL)

        if self.anthropic_api_key is None:
            self.anthropic_api_key = os.environ.get("ANTHROPIC_API_KEY")

        env_keys = os.environ.get("SUNNY_API_KEYS")
        if env_keys:
            self.api_keys = {k.strip() for k in env_keys.split(",") if k.strip()}

    @classmethod
    def from_env(cls) -> "ServerConfig":
        """Create configuration from environment variables."""
        return cls(
            host=os.environ.get("SUNNY_HOST", "0.0.0.0"),
            port=int(os.environ.get("SUNNY_PORT", "8000")),
            database_url=os.environ.get("DATABASE_URL"),
            model=os.environ.get("SUNNY_MODEL", DEFAULT_MODEL),
            completion_backend=os.environ.get("SUNNY_COMPLETION_BACKEND", "http"),
            max_iterations=int(
                os.environ.get("SUNNY_MAX_ITERATIONS", str(DEFAULT_MAX_ITERATIONS))
            ),
            parallel_tools=_env_flag("SUNNY_PARALLEL_TOOLS"),
            debug=_env_flag("SUNNY_DEBUG"),
            log_level=os.environ.get("SUNNY_LOG_LEVEL", "info"),
        )
