import os
from dataclasses import dataclass
from typing import Optional


def _flag(name: str) -> bool:
    return os.getenv(name, "0").strip().lower() in {"1", "true", "yes"}


@dataclass
class Settings:
    log_level: str = "INFO"
    api_key: Optional[str] = None
    allow_unauth_local: bool = False
    feed_max_buffer: int = 0
    strict_unsubscribe: bool = False
    keepalive_interval: float = 15
    keepalive_topic: str = "keepalive"


def get_settings() -> Settings:
    """Read settings from the environment (after .env has been loaded)."""
    return Settings(
        log_level=os.getenv("LOG_LEVEL", "INFO").upper(),
        api_key=os.getenv("LIVEFEED_API_KEY") or None,
        allow_unauth_local=os.getenv("ALLOW_UNAUTH_LOCAL") == "1",
        feed_max_buffer=int(os.getenv("FEED_MAX_BUFFER", "0")),
        strict_unsubscribe=_flag("STRICT_UNSUBSCRIBE"),
        keepalive_interval=float(os.getenv("KEEPALIVE_INTERVAL", "15")),
        keepalive_topic=os.getenv("KEEPALIVE_TOPIC", "keepalive"),
    )
