"""
Per-expert booking mutex.

Booking is check-then-act: the overlap query and the insert must not
interleave with another booking for the same expert. Inside one process a
keyed ``threading.Lock`` serializes callers; when ``REDIS_URL`` is configured
a ``SET NX EX`` key extends the exclusion across workers.
"""

from __future__ import annotations

from contextlib import contextmanager
import logging
import threading
import time
from typing import Dict, Iterator, Optional
import uuid

from redis import Redis

from servitech.core.config import settings
from servitech.core.exceptions import LockUnavailableException
from servitech.monitoring.prometheus_metrics import prometheus_metrics

logger = logging.getLogger(__name__)

_SYNC_REDIS: Optional[Redis] = None
_SYNC_REDIS_LOCK = threading.Lock()

_LOCAL_LOCKS: Dict[str, threading.Lock] = {}
_LOCAL_LOCKS_GUARD = threading.Lock()

_POLL_INTERVAL_S = 0.05


def _lock_key(expert_id: str) -> str:
    return f"servitech:lock:expert:{expert_id}:booking"


def _get_sync_redis() -> Optional[Redis]:
    global _SYNC_REDIS
    if not settings.redis_url:
        return None
    if _SYNC_REDIS is not None:
        return _SYNC_REDIS
    with _SYNC_REDIS_LOCK:
        if _SYNC_REDIS is not None:
            return _SYNC_REDIS
        try:
            client = Redis.from_url(settings.redis_url, encoding="utf-8", decode_responses=True)
            client.ping()
        except Exception as exc:
            logger.warning("expert_lock_redis_unavailable: %s", exc)
            return None
        _SYNC_REDIS = client
        return _SYNC_REDIS


def _local_lock(expert_id: str) -> threading.Lock:
    with _LOCAL_LOCKS_GUARD:
        lock = _LOCAL_LOCKS.get(expert_id)
        if lock is None:
            lock = threading.Lock()
            _LOCAL_LOCKS[expert_id] = lock
        return lock


def _acquire_redis(client: Redis, expert_id: str, token: str, ttl_s: int, deadline: float) -> bool:
    key = _lock_key(expert_id)
    while True:
        if client.set(key, token, nx=True, ex=ttl_s):
            return True
        if time.monotonic() >= deadline:
            return False
        time.sleep(_POLL_INTERVAL_S)


def _release_redis(client: Redis, expert_id: str, token: str) -> None:
    key = _lock_key(expert_id)
    try:
        # Only remove the key we own; an expired lock may belong to someone else now
        if client.get(key) == token:
            client.delete(key)
            prometheus_metrics.record_expert_lock("release", "success")
        else:
            prometheus_metrics.record_expert_lock("release", "not_found")
    except Exception as exc:
        prometheus_metrics.record_expert_lock("release", "error")
        logger.warning(
            "expert_lock_release_failed",
            extra={"expert_id": expert_id, "error": str(exc), "error_type": type(exc).__name__},
        )


@contextmanager
def expert_lock(
    expert_id: str,
    *,
    wait_s: Optional[float] = None,
    ttl_s: Optional[int] = None,
) -> Iterator[None]:
    """
    Hold the booking mutex for ``expert_id`` for the duration of the block.

    Raises:
        LockUnavailableException: the lock could not be obtained within ``wait_s``
    """
    wait = settings.expert_lock_wait_seconds if wait_s is None else wait_s
    ttl = settings.expert_lock_ttl_seconds if ttl_s is None else ttl_s
    deadline = time.monotonic() + max(wait, 0.0)

    local = _local_lock(expert_id)
    if not local.acquire(timeout=max(wait, 0.0)):
        prometheus_metrics.record_expert_lock("acquire", "timeout")
        logger.warning("expert_lock_timeout", extra={"expert_id": expert_id, "scope": "local"})
        raise LockUnavailableException(expert_id)

    client = _get_sync_redis()
    token = uuid.uuid4().hex
    redis_held = False
    try:
        if client is not None:
            try:
                redis_held = _acquire_redis(client, expert_id, token, ttl, deadline)
            except Exception as exc:
                # Redis outage degrades to process-local exclusion plus the DB lock
                prometheus_metrics.record_expert_lock("acquire", "error")
                logger.warning(
                    "expert_lock_redis_failed",
                    extra={
                        "expert_id": expert_id,
                        "error": str(exc),
                        "error_type": type(exc).__name__,
                    },
                )
            else:
                if not redis_held:
                    prometheus_metrics.record_expert_lock("acquire", "blocked")
                    logger.warning(
                        "expert_lock_timeout", extra={"expert_id": expert_id, "scope": "redis"}
                    )
                    raise LockUnavailableException(expert_id)
        else:
            prometheus_metrics.record_expert_lock("acquire", "redis_unavailable")

        prometheus_metrics.record_expert_lock("acquire", "success")
        yield
    finally:
        if redis_held and client is not None:
            _release_redis(client, expert_id, token)
        local.release()
