"""
Named mutual-exclusion locks used to serialize bookings per office.

Two drivers are available, selected with the ``lock_driver`` setting:

* ``memory`` keeps one ``threading.Lock`` per name inside the process, for
  single-worker deployments and tests. The TTL is not enforced.
* ``redis`` uses redis-py's ``Lock`` so several workers share the same lock.
  The TTL is the key expiry.
"""
import logging
import threading
from contextlib import contextmanager
from typing import Dict, Iterator, List

import redis
from redis.exceptions import LockError

from .config import Settings
from .exceptions import LockTimeout

logger = logging.getLogger(__name__)


class MemoryLockProvider:
    """Entries are reference-counted and dropped once no caller holds or waits on them."""

    def __init__(self):
        self._locks: Dict[str, List] = {}
        self._guard = threading.Lock()

    def _checkout(self, name: str) -> threading.Lock:
        with self._guard:
            entry = self._locks.setdefault(name, [threading.Lock(), 0])
            entry[1] += 1
            return entry[0]

    def _checkin(self, name: str) -> None:
        with self._guard:
            entry = self._locks[name]
            entry[1] -= 1
            if entry[1] == 0:
                del self._locks[name]

    @contextmanager
    def lock(self, name: str, ttl: float, wait: float) -> Iterator[None]:
        lock = self._checkout(name)
        try:
            if not lock.acquire(timeout=wait):
                raise LockTimeout(name, wait)
            try:
                yield
            finally:
                lock.release()
        finally:
            self._checkin(name)


class RedisLockProvider:
    def __init__(self, client: redis.Redis):
        self._client = client

    @classmethod
    def from_url(cls, url: str) -> "RedisLockProvider":
        return cls(redis.Redis.from_url(url, socket_connect_timeout=5))

    @contextmanager
    def lock(self, name: str, ttl: float, wait: float) -> Iterator[None]:
        lock = self._client.lock(name, timeout=ttl, blocking_timeout=wait)
        if not lock.acquire():
            raise LockTimeout(name, wait)
        try:
            yield
        finally:
            try:
                lock.release()
            except LockError:
                # expired (TTL) and possibly taken by someone else already
                logger.warning("Lock %s expired before it was released", name)


def build_lock_provider(settings: Settings):
    if settings.lock_driver == "redis":
        logger.info("Using redis locks at %s", settings.redis_url)
        return RedisLockProvider.from_url(settings.redis_url)
    if settings.lock_driver != "memory":
        raise ValueError(f"Unknown lock driver: {settings.lock_driver}")
    return MemoryLockProvider()
