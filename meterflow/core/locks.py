"""Keyed mutual exclusion for unit claims, meter provisioning, cycle
transitions and pricing tier writes.

With ``LOCK_BACKEND=memory`` the lock only serializes coroutines of one
process; the unique constraints in the schema still reject whatever slips
through. ``LOCK_BACKEND=redis`` extends it across API workers.
"""

import asyncio
import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator
from weakref import WeakValueDictionary

from meterflow.config import settings
from meterflow.core.exceptions import DependencyError

logger = logging.getLogger(__name__)

_local_locks: "WeakValueDictionary[str, asyncio.Lock]" = WeakValueDictionary()


def lock_key(namespace: str, *parts) -> str:
	return ":".join(["meterflow", namespace, *("*" if p is None else str(p) for p in parts)])


@asynccontextmanager
async def _memory_lock(key: str) -> AsyncIterator[None]:
	lock = _local_locks.get(key)
	if lock is None:
		lock = asyncio.Lock()
		_local_locks[key] = lock
	async with lock:
		yield


@asynccontextmanager
async def _redis_lock(key: str) -> AsyncIterator[None]:
	from meterflow.core.redis import get_redis

	client = await get_redis()
	lock = client.lock(
		key,
		timeout=settings.LOCK_TIMEOUT_SECONDS,
		blocking_timeout=settings.LOCK_TIMEOUT_SECONDS,
	)
	acquired = await lock.acquire()
	if not acquired:
		raise DependencyError(f"Could not acquire lock {key}")
	try:
		yield
	finally:
		await lock.release()


@asynccontextmanager
async def keyed_lock(namespace: str, *parts) -> AsyncIterator[None]:
	"""Serialize critical sections sharing the same (namespace, parts) key."""
	key = lock_key(namespace, *parts)
	backend = _redis_lock if settings.LOCK_BACKEND == "redis" else _memory_lock
	async with backend(key):
		logger.debug(f"Lock acquired: {key}")
		yield
