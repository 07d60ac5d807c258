# Fixed-window, per-IP rate limiting for write endpoints, backed by Redis counters.
# Keys: rl:gorentals:{scope}:{ip}. Fails open when Redis is disabled or erroring.
import logging
import os
from typing import Callable, Dict, Literal

from fastapi import HTTPException, Request, status

from .redis_client import get_redis

logger = logging.getLogger("gorentals.rate_limit")

Scope = Literal["login", "signup", "booking", "write"]

# scope -> (env var, default cap per window)
_LIMITS: Dict[str, tuple] = {
    "login": ("RATE_LIMIT_LOGIN_PER_WINDOW", 10),
    "signup": ("RATE_LIMIT_SIGNUP_PER_WINDOW", 5),
    "booking": ("RATE_LIMIT_BOOKING_PER_WINDOW", 10),
    "write": ("RATE_LIMIT_WRITE_PER_WINDOW", 30),
}


def _env_int(name: str, default: int) -> int:
    try:
        return int(os.getenv(name, default))
    except ValueError:
        return default


def rate_limit(scope: Scope) -> Callable[[Request], None]:
    """
    FastAPI dependency factory capping requests per client IP and scope.

    Window: RATE_LIMIT_WINDOW_SECONDS (default 60). Cap: see _LIMITS.
    Exceeding the cap answers 429 with a retry_after hint.
    """
    window = _env_int("RATE_LIMIT_WINDOW_SECONDS", 60)
    env_name, default_cap = _LIMITS[scope]
    limit = _env_int(env_name, default_cap)

    def _dependency(request: Request) -> None:
        r = get_redis()
        if r is None:
            return

        ip = request.client.host if request.client and request.client.host else "unknown"
        key = f"rl:gorentals:{scope}:{ip}"
        try:
            current = r.incr(key)
            if current == 1:
                r.expire(key, window)
            if current <= limit:
                return
            ttl = r.ttl(key)
        except Exception as exc:
            logger.warning("rate_limit.fail_open scope=%s ip=%s: %s", scope, ip, exc)
            return

        raise HTTPException(
            status_code=status.HTTP_429_TOO_MANY_REQUESTS,
            detail={
                "error": "rate_limited",
                "scope": scope,
                "limit": limit,
                "window_seconds": window,
                "retry_after": ttl if isinstance(ttl, int) and ttl > 0 else window,
            },
        )

    return _dependency
