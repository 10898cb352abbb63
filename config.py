"""
Configuration loaded from environment variables. Fail-fast on invalid values.
"""

from pydantic_settings import BaseSettings
from pydantic import Field


class Config(BaseSettings):
    model_config = {"env_file": ".env", "env_file_encoding": "utf-8", "frozen": True, "extra": "ignore"}

    # API endpoints
    api_host: str = "https://bitredict-backend.fly.dev"
    # Empty = derive from api_host (http->ws, https->wss, append /ws)
    ws_url: str = ""

    # Real-time channel
    ws_reconnect_max: int = Field(default=5, ge=0)
    ws_reconnect_base_sec: float = Field(default=1.0, gt=0)
    # Ping interval. The server is not required to answer.
    ws_keepalive_sec: float = Field(default=30.0, gt=0)

    # Polling supplement
    poll_interval_sec: float = Field(default=30.0, gt=0)
    poll_enrichment: bool = True
    http_timeout_sec: float = Field(default=10.0, gt=0)
    user_slips_page_size: int = Field(default=50, ge=1, le=500)

    # Game constants. Observed as fixed in the contract, not queried.
    win_threshold: int = Field(default=7, ge=1, le=10)
    rollover_fee_bps: int = Field(default=500, ge=0, le=10_000)

    # Modes
    log_level: str = "INFO"


def load_config() -> Config:
    """Load and validate config from environment. Raises on invalid fields."""
    return Config()
