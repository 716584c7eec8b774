"""Per-user locks serializing ledger read-modify-write cycles."""

import asyncio
import contextlib
import logging
from collections import Counter
from collections.abc import AsyncIterator
from typing import Protocol

import redis.asyncio as redis
from redis.exceptions import LockError

from budget_recon.config import Settings, settings

logger = logging.getLogger(__name__)


class SyncInProgressError(Exception):
    """Another sync already holds the user's ledger."""

    def __init__(self, user_id: str):
        super().__init__(f"A sync is already running for user {user_id}")
        self.user_id = user_id


class SyncLock(Protocol):
    """Serializes syncs per user."""

    def hold(self, user_id: str) -> contextlib.AbstractAsyncContextManager[None]: ...


class LocalSyncLock:
    """asyncio locks, one per user. Only serializes within this process."""

    def __init__(self, wait_seconds: float | None = None):
        self.wait_seconds = wait_seconds if wait_seconds is not None else settings.sync_lock_wait_seconds
        self._locks: dict[str, asyncio.Lock] = {}
        # Holders plus waiters per user; the lock is dropped when it reaches zero
        self._users: Counter[str] = Counter()

    @contextlib.asynccontextmanager
    async def hold(self, user_id: str) -> AsyncIterator[None]:
        lock = self._locks.setdefault(user_id, asyncio.Lock())
        self._users[user_id] += 1
        try:
            try:
                await asyncio.wait_for(lock.acquire(), timeout=self.wait_seconds)
            except TimeoutError as e:
                raise SyncInProgressError(user_id) from e

            try:
                yield
            finally:
                lock.release()
        finally:
            self._users[user_id] -= 1
            if self._users[user_id] <= 0:
                del self._users[user_id]
                del self._locks[user_id]


class RedisSyncLock:
    """Redis locks shared by every worker talking to the same Redis."""

    KEY_PREFIX = "sync:ledger:"

    def __init__(
        self,
        client: redis.Redis,
        timeout_seconds: int | None = None,
        wait_seconds: float | None = None,
    ):
        self.client = client
        self.timeout_seconds = timeout_seconds or settings.sync_lock_timeout_seconds
        self.wait_seconds = wait_seconds if wait_seconds is not None else settings.sync_lock_wait_seconds

    @contextlib.asynccontextmanager
    async def hold(self, user_id: str) -> AsyncIterator[None]:
        lock = self.client.lock(
            f"{self.KEY_PREFIX}{user_id}",
            timeout=self.timeout_seconds,
            blocking_timeout=self.wait_seconds,
        )
        if not await lock.acquire():
            raise SyncInProgressError(user_id)

        try:
            yield
        finally:
            try:
                await lock.release()
            except LockError as e:
                # Lock expired while the sync was still running
                logger.warning(f"Sync lock for {user_id} was lost before release: {e}")


def build_sync_lock(config: Settings | None = None) -> SyncLock:
    """Create the sync lock backend selected in settings."""
    config = config or settings
    if config.sync_lock_backend == "redis":
        client = redis.Redis(
            host=config.redis_host,
            port=config.redis_port,
            password=config.redis_password or None,
            decode_responses=True,
        )
        return RedisSyncLock(
            client,
            timeout_seconds=config.sync_lock_timeout_seconds,
            wait_seconds=config.sync_lock_wait_seconds,
        )
    return LocalSyncLock(wait_seconds=config.sync_lock_wait_seconds)
