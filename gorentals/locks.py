# Short-lived Redis locks that serialize booking writes per vehicle, booking and coupon.
# Locks fail open: with Redis disabled or unreachable the critical section still runs.
from __future__ import annotations

import logging
from contextlib import contextmanager
from typing import Iterator
from uuid import uuid4

from .errors import Busy
from .redis_client import get_redis

logger = logging.getLogger("gorentals.locks")

# Token-checked release so an expired holder never deletes someone else's lock
_RELEASE_SCRIPT = """
if redis.call('get', KEYS[1]) == ARGV[1] then
    return redis.call('del', KEYS[1])
end
return 0
"""


@contextmanager
def redis_try_lock(key: str, ttl_ms: int = 5000) -> Iterator[bool]:
    """
    SET NX PX lock; yields whether the caller may proceed.

    - True when acquired, or when Redis is unavailable (fail-open)
    - False when another process holds the key
    """
    r = get_redis()
    if r is None:
        yield True
        return

    token = uuid4().hex
    try:
        acquired = bool(r.set(key, token, nx=True, px=ttl_ms))
    except Exception as exc:
        logger.warning("lock.error key=%s: %s", key, exc)
        yield True
        return

    try:
        yield acquired
    finally:
        if acquired:
            try:
                r.eval(_RELEASE_SCRIPT, 1, key, token)
            except Exception as exc:
                # Expires by TTL
                logger.debug("lock.release_error key=%s: %s", key, exc)


@contextmanager
def _guard(key: str, ttl_ms: int) -> Iterator[None]:
    with redis_try_lock(key, ttl_ms=ttl_ms) as locked:
        if not locked:
            logger.info("lock.busy", extra={"key": key})
            raise Busy()
        yield


def vehicle_lock(vehicle_id: str, ttl_ms: int = 5000):
    """Serializes availability checks and date blocking for one vehicle."""
    return _guard(f"lock:gorentals:vehicle:{vehicle_id}", ttl_ms)


def booking_lock(booking_id: str, ttl_ms: int = 10000):
    """Serializes settlement and cancellation of one booking."""
    return _guard(f"lock:gorentals:booking:{booking_id}", ttl_ms)


def coupon_lock(code: str, ttl_ms: int = 5000):
    """Serializes the usage-cap check and redemption of one coupon code."""
    return _guard(f"lock:gorentals:coupon:{code}", ttl_ms)
