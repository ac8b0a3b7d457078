"""
Gateway configuration definition.

Loads configuration from environment variables and provides a Pydantic model.
Uses pydantic-settings for type safety and defaults.
"""

import sys
from typing import Any, Dict, List, Optional

from pydantic import Field
from services.common.core.config import BaseAppConfig


class GatewayConfig(BaseAppConfig):
    """
    Configuration management for the function gateway.
    """

    # Server settings
    UVICORN_BIND_ADDR: str = Field(default="0.0.0.0:8170", description="Listen address")

    # Function discovery
    FUNCTIONS_ROOT: str = Field(default="/app/functions", description="Function files root")
    FUNCTIONS_IGNORE: List[str] = Field(
        default_factory=lambda: ["__pycache__", "*.pyc", ".*", "__init__.py"],
        description="Glob patterns excluded from function discovery",
    )

    # Invocation
    DEFAULT_TIMEOUT_MS: int = Field(default=30000, description="Invocation deadline (ms)")
    MAX_TIMEOUT_MS: int = Field(default=600000, description="Upper bound for deadlines (ms)")
    MAX_REQUEST_SIZE_MB: int = Field(default=128, description="Request body limit (MB)")

    # Execution modes / rendering
    DEBUG_ENABLED: bool = Field(default=True, description="Allow debug mode outside production")
    PRETTY_JSON: Optional[bool] = Field(
        default=None, description="Pretty-print JSON responses (default: on in development)"
    )

    # Platform keys exposed through context.platform: {ui: {"enabled": bool, key: value}}
    PLATFORM_KEYS: Dict[str, Dict[str, Any]] = Field(
        default_factory=dict, description="Platform keys by UI identifier"
    )

    # Hot reload
    CONFIG_RELOAD_ENABLED: bool = Field(default=False, description="Watch functions root")
    CONFIG_RELOAD_INTERVAL: float = Field(default=1.0, description="Watch interval (seconds)")

    LOG_CONFIG_PATH: str = Field(
        default="services/funcgate/logging.yml", description="Logging dictConfig YAML path"
    )

    # FastAPI settings
    root_path: str = Field(default="", description="API root path (for proxy)")

    @property
    def pretty_json(self) -> bool:
        if self.PRETTY_JSON is None:
            return not self.is_production
        return self.PRETTY_JSON

    @property
    def max_request_bytes(self) -> int:
        return self.MAX_REQUEST_SIZE_MB * 1024 * 1024


# Load config as a singleton.
# pydantic-settings reads environment variables during instantiation.
try:
    config = GatewayConfig()
except Exception as e:
    sys.stderr.write(f"Failed to load configuration: {e}\n")
    raise
