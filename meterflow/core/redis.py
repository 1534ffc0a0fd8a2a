"""Shared Redis client for the distributed lock backend and health checks."""

import logging
from typing import Optional

import redis.asyncio as redis
from redis.exceptions import RedisError

from meterflow.config import settings
from meterflow.core.exceptions import DependencyError

logger = logging.getLogger(__name__)

_client: Optional[redis.Redis] = None


async def get_redis() -> redis.Redis:
	"""Lazily connected client; raises DependencyError when Redis is unreachable"""
	global _client

	if _client is None:
		client = redis.Redis.from_url(
			settings.REDIS_URL,
			decode_responses=True,
			health_check_interval=30,
		)
		try:
			await client.ping()
		except RedisError as e:
			await client.aclose()
			logger.error(f"Redis unreachable at {settings.REDIS_URL}: {e}")
			raise DependencyError("Redis is unavailable") from e
		_client = client
		logger.info("Redis client connected")
	return _client


async def close_redis() -> None:
	global _client

	if _client is not None:
		await _client.aclose()
		_client = None
		logger.info("Redis client closed")


async def check_redis_connection() -> bool:
	try:
		client = await get_redis()
		return bool(await client.ping())
	except (DependencyError, RedisError) as e:
		logger.warning(f"Redis health check failed: {e}")
		return False
