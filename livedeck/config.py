"""
Server configuration, frozen after creation.
"""
import os
from dataclasses import dataclass
from typing import Optional

from .errors import ConfigurationError

BACKENDS = ("memory", "redis")

# 30 days, matching how long a presenter stays logged in
DEFAULT_TOKEN_TTL = 60 * 60 * 24 * 30


@dataclass(frozen=True)
class Settings:
    """Configuration for a livedeck server.

    Attributes:
        host: Bind address.
        port: Bind port.
        backend: "memory" for a single-process dev server, "redis" for production.
        redis_url: Redis connection URL (required when backend is "redis").
        control_secret: Shared presenter secret. Also signs presenter tokens.
        heartbeat_interval: Seconds between keep-alive frames on a live stream.
        reaction_ttl: Seconds a reaction stays in the fallback queue.
        token_ttl: Lifetime of a presenter token in seconds.
        outbound_queue_size: Frames buffered per stream before the client is
            considered stalled and dropped.
        write_timeout: Seconds a single frame write may take.
        command_limit_per_minute: POST commands accepted per client address per minute.
    """

    host: str = "0.0.0.0"
    port: int = 3000
    backend: str = "memory"
    redis_url: Optional[str] = None
    control_secret: Optional[str] = None
    heartbeat_interval: float = 15.0
    reaction_ttl: float = 5.0
    token_ttl: int = DEFAULT_TOKEN_TTL
    outbound_queue_size: int = 256
    write_timeout: float = 10.0
    command_limit_per_minute: int = 120

    def __post_init__(self) -> None:
        if self.backend not in BACKENDS:
            raise ConfigurationError(
                f"Unknown backend {self.backend!r} (expected one of {', '.join(BACKENDS)})"
            )
        if self.heartbeat_interval <= 0:
            raise ConfigurationError("heartbeat_interval must be positive")

    @classmethod
    def from_env(cls, environ=None) -> "Settings":
        """Build settings from environment variables."""
        env = os.environ if environ is None else environ
        return cls(
            host=env.get("SERVER_HOST", "0.0.0.0"),
            port=int(env.get("PORT", 3000)),
            backend=env.get("LIVEDECK_BACKEND", "memory").lower(),
            redis_url=env.get("REDIS_URL") or env.get("KV_URL"),
            control_secret=env.get("LIVEDECK_CONTROL_SECRET") or None,
            heartbeat_interval=float(env.get("LIVEDECK_HEARTBEAT_SECONDS", 15.0)),
            reaction_ttl=float(env.get("LIVEDECK_REACTION_TTL_SECONDS", 5.0)),
        )
