# Lazily connected, opt-in Redis client shared by locks and the rate limiter.
# REDIS_ENABLED turns it on; REDIS_URL selects the server.
import logging
import os
from typing import Optional

import redis

_logger = logging.getLogger("gorentals.redis")

_TRUTHY = {"1", "true", "t", "yes", "y", "on"}

_client: Optional[redis.Redis] = None
_attempted = False


def env_flag(name: str, default: str = "false") -> bool:
    return os.getenv(name, default).strip().lower() in _TRUTHY


def is_redis_enabled() -> bool:
    return env_flag("REDIS_ENABLED")


def get_redis() -> Optional[redis.Redis]:
    """
    The shared client, or None when Redis is disabled or was unreachable.

    Connection is attempted once per process; a failed attempt keeps every
    caller in fail-open mode until restart.
    """
    global _client, _attempted
    if not is_redis_enabled():
        return None
    if _client is not None or _attempted:
        return _client

    _attempted = True
    url = os.getenv("REDIS_URL", "redis://localhost:6379/0")
    try:
        client = redis.Redis.from_url(url, socket_timeout=0.25, socket_connect_timeout=0.25)
        client.ping()
    except Exception as exc:
        _logger.warning("redis.unavailable url=%s: %s", url, exc)
        return None
    _client = client
    _logger.info("redis.connected url=%s", url)
    return _client


def reset_redis() -> None:
    """Forget the cached client (tests toggle REDIS_ENABLED between runs)."""
    global _client, _attempted
    _client = None
    _attempted = False
