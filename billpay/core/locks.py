"""Per-transaction mutual exclusion backed by Redis.

Every operation that changes a transaction (approve, reject, retry,
reconcile, proof upload) runs inside ``TransactionLocks.hold(code)``, so two
requests for the same code never interleave, while different codes proceed
in parallel. The lock is held across the gateway call.

Key format: ``lock:transaction:{code}``. Locks are redis-py ``Lock`` objects:
the value is a random token and release is a single compare-and-delete
script, so a holder whose TTL expired cannot release somebody else's lock.
"""

import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from redis.asyncio import Redis
from redis.asyncio.lock import Lock
from redis.exceptions import LockError, LockNotOwnedError

from billpay.exceptions import TransactionBusy

logger = logging.getLogger(__name__)


class TransactionLocks:
    """Redis lock, one per transaction code."""

    KEY_PREFIX = "lock:transaction"

    def __init__(
        self,
        redis: Redis,
        ttl: float = 60.0,
        wait: float = 10.0,
        poll_interval: float = 0.05,
    ):
        self.redis = redis
        self.ttl = ttl
        self.wait = wait
        self.poll_interval = poll_interval

    def _make_key(self, code: str) -> str:
        return f"{self.KEY_PREFIX}:{code}"

    def _lock(self, code: str) -> Lock:
        return self.redis.lock(
            self._make_key(code),
            timeout=self.ttl,
            sleep=self.poll_interval,
            blocking_timeout=self.wait,
            thread_local=False,
        )

    async def acquire(self, code: str) -> Lock | None:
        """Try once; return the held lock, ``None`` if somebody else has it."""
        lock = self._lock(code)
        if await lock.acquire(blocking=False):
            return lock
        return None

    async def release(self, lock: Lock) -> None:
        """Release *lock* if it still owns its key."""
        try:
            await lock.release()
        except LockNotOwnedError:
            logger.warning("Lock %s expired before release", lock.name)

    @asynccontextmanager
    async def hold(self, code: str) -> AsyncIterator[None]:
        """Wait up to ``wait`` seconds for the lock on *code*.

        Raises:
            TransactionBusy: If the lock could not be taken in time.
        """
        lock = self._lock(code)
        try:
            acquired = await lock.acquire()
        except LockError as exc:
            raise TransactionBusy(code) from exc
        if not acquired:
            raise TransactionBusy(code)

        try:
            yield
        finally:
            await self.release(lock)
