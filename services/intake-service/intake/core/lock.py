"""
Mutation lock serializing every ticket write (creation and update share it).

Usage:
    lock = MutationLock()
    with lock.hold():
        ...  # read last row, write row

`hold()` raises LockTimeoutError when the lock is not acquired within the
timeout; nothing inside the block has run at that point. Release happens on
every exit from the block, exceptions included.
"""
import threading
import time
from contextlib import contextmanager
from typing import Dict, Optional

import redis
from redis.exceptions import LockError

from intake.core.config import settings
from intake.core.errors import LockTimeoutError
from intake.core.logger import get_logger

logger = get_logger(__name__)

TICKET_MUTATION_LOCK = "ticket-mutation"

_local_locks: Dict[str, threading.Lock] = {}
_registry_mutex = threading.Lock()


def _local_lock(name: str) -> threading.Lock:
    with _registry_mutex:
        lock = _local_locks.get(name)
        if lock is None:
            lock = threading.Lock()
            _local_locks[name] = lock
        return lock


class MutationLock:
    def __init__(
        self,
        name: str = TICKET_MUTATION_LOCK,
        timeout: float = None,
        redis_client: Optional[redis.Redis] = None,
        lease: float = None,
    ):
        self.name = name
        self.timeout = settings.LOCK_TIMEOUT_SECONDS if timeout is None else timeout
        self.lease = settings.LOCK_LEASE_SECONDS if lease is None else lease
        self.redis_client = redis_client

    @contextmanager
    def hold(self):
        started = time.monotonic()
        release = self._acquire()
        waited = time.monotonic() - started
        if waited > 1:
            logger.info(f"Acquired lock {self.name} after waiting {waited:.2f}s")
        try:
            yield
        finally:
            release()

    def _acquire(self):
        if self.redis_client is not None:
            return self._acquire_redis()

        lock = _local_lock(self.name)
        if not lock.acquire(timeout=self.timeout):
            logger.warning(f"Timed out after {self.timeout}s waiting for lock {self.name}")
            raise LockTimeoutError(self.name, self.timeout)
        return lock.release

    def _acquire_redis(self):
        # The lease bounds how long a crashed holder can block the cluster
        lock = self.redis_client.lock(
            f"lock:{self.name}",
            timeout=self.lease,
            blocking_timeout=self.timeout,
        )
        if not lock.acquire(blocking=True):
            logger.warning(f"Timed out after {self.timeout}s waiting for redis lock {self.name}")
            raise LockTimeoutError(self.name, self.timeout)

        def release():
            try:
                lock.release()
            except LockError as e:
                logger.error(f"Lease on lock {self.name} expired before release: {e}")

        return release


def build_mutation_lock(name: str = TICKET_MUTATION_LOCK) -> MutationLock:
    if settings.LOCK_BACKEND == "redis":
        from intake.core.cache import get_redis_client
        return MutationLock(name, redis_client=get_redis_client())
    return MutationLock(name)
