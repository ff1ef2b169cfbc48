from __future__ import annotations

from contextlib import contextmanager
import logging
import threading
import time
from typing import Dict, Iterable, Iterator, List, Optional

from redis import Redis

from ..monitoring.prometheus_metrics import prometheus_metrics
from .config import settings
from .exceptions import BookingInProgressException, ExternalServiceException

logger = logging.getLogger(__name__)

_SYNC_REDIS: Optional[Redis] = None
_SYNC_REDIS_LOCK = threading.Lock()

_LOCAL_LOCKS: Dict[str, threading.Lock] = {}
_LOCAL_LOCKS_GUARD = threading.Lock()

_POLL_INTERVAL_SECONDS = 0.05


def instructor_key(instructor_id: str) -> str:
    return f"instructor:{instructor_id}"


def student_key(student_id: str) -> str:
    return f"student:{student_id}"


def booking_key(booking_id: str) -> str:
    return f"booking:{booking_id}"


def _namespaced_key(key: str) -> str:
    return f"{settings.booking_lock_namespace}:lock:{key}"


def _local_lock(key: str) -> threading.Lock:
    with _LOCAL_LOCKS_GUARD:
        lock = _LOCAL_LOCKS.get(key)
        if lock is None:
            lock = threading.Lock()
            _LOCAL_LOCKS[key] = lock
        return lock


def _get_sync_redis() -> Optional[Redis]:
    global _SYNC_REDIS
    if _SYNC_REDIS is not None:
        return _SYNC_REDIS
    with _SYNC_REDIS_LOCK:
        if _SYNC_REDIS is not None:
            return _SYNC_REDIS
        try:
            client = Redis.from_url(
                settings.redis_url,
                encoding="utf-8",
                decode_responses=True,
            )
            client.ping()
        except Exception as exc:
            logger.warning("booking_lock_sync_redis_unavailable: %s", exc)
            return None
        _SYNC_REDIS = client
        return _SYNC_REDIS


def _acquire_redis(client: Redis, key: str, ttl_s: int, deadline: float) -> None:
    """Spin on SET NX until acquired or the deadline passes."""
    token = str(time.time())
    while True:
        try:
            if client.set(_namespaced_key(key), token, nx=True, ex=ttl_s):
                return
        except Exception as exc:
            prometheus_metrics.record_booking_lock("acquire", "error")
            logger.warning(
                "booking_lock_redis_acquire_failed",
                extra={"key": key, "error": str(exc), "error_type": type(exc).__name__},
            )
            raise ExternalServiceException(
                "booking_lock", "Booking lock store is unavailable"
            ) from exc
        if time.monotonic() >= deadline:
            raise TimeoutError(key)
        time.sleep(_POLL_INTERVAL_SECONDS)


def _release_redis(client: Redis, key: str) -> None:
    try:
        deleted = client.delete(_namespaced_key(key))
        prometheus_metrics.record_booking_lock("release", "success" if deleted else "not_found")
    except Exception as exc:
        prometheus_metrics.record_booking_lock("release", "error")
        logger.warning(
            "booking_lock_redis_release_failed",
            extra={"key": key, "error": str(exc), "error_type": type(exc).__name__},
        )


@contextmanager
def booking_critical_section(
    keys: Iterable[str],
    *,
    wait_seconds: Optional[float] = None,
    ttl_s: Optional[int] = None,
) -> Iterator[List[str]]:
    """
    Serialize booking writes for a set of parties.

    Keys are acquired in sorted order so two requests sharing a party can
    never deadlock. Process-local locks are always taken; when
    ``booking_lock_redis_enabled`` is set a Redis SET NX lock is layered on
    top so multiple workers serialize too. An unreachable Redis fails the
    request rather than degrading to process-local locking.

    Raises:
        BookingInProgressException: If the keys cannot be acquired in time
        ExternalServiceException: If Redis locking is enabled but unavailable
    """
    ordered = sorted(set(keys))
    wait = settings.booking_lock_wait_seconds if wait_seconds is None else wait_seconds
    ttl = settings.booking_lock_ttl_seconds if ttl_s is None else ttl_s
    started = time.monotonic()
    deadline = started + wait

    held_local: List[threading.Lock] = []
    held_redis: List[str] = []
    client: Optional[Redis] = None
    if settings.booking_lock_redis_enabled:
        client = _get_sync_redis()
        if client is None:
            prometheus_metrics.record_booking_lock("acquire", "error")
            raise ExternalServiceException("booking_lock", "Booking lock store is unavailable")

    try:
        for key in ordered:
            lock = _local_lock(key)
            remaining = max(0.0, deadline - time.monotonic())
            if not lock.acquire(timeout=remaining):
                prometheus_metrics.record_booking_lock("acquire", "blocked")
                raise BookingInProgressException(ordered, time.monotonic() - started)
            held_local.append(lock)

            if client is not None:
                try:
                    _acquire_redis(client, key, ttl, deadline)
                    held_redis.append(key)
                except TimeoutError:
                    prometheus_metrics.record_booking_lock("acquire", "blocked")
                    raise BookingInProgressException(ordered, time.monotonic() - started)

        prometheus_metrics.record_booking_lock("acquire", "success")
        yield ordered
    finally:
        if client is not None:
            for key in reversed(held_redis):
                _release_redis(client, key)
        for lock in reversed(held_local):
            lock.release()
