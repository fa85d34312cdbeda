from redis import asyncio as aioredis  # Async client
from redis.asyncio.connection import ConnectionPool as AsyncConnectionPool
from ..core.config import settings
import asyncio
import threading
from typing import Dict

# Per-event-loop async clients; a client awaited on a loop other than its own fails
_redis_async_by_loop: Dict[str, aioredis.Redis] = {}
_async_pool_by_loop: Dict[str, AsyncConnectionPool] = {}


def _current_loop_key() -> str:
	"""Key for the running event loop, or the thread when called from sync code."""
	try:
		loop = asyncio.get_running_loop()
		return f"loop-{id(loop)}"
	except RuntimeError:
		return f"thread-{threading.get_ident()}"


def get_redis() -> aioredis.Redis:
	"""Async Redis client bound to the current event loop (read cache, sync lock, health check)."""
	key = _current_loop_key()
	client = _redis_async_by_loop.get(key)
	if client is not None:
		return client

	pool = AsyncConnectionPool.from_url(
		settings.redis_url,
		decode_responses=True,
		max_connections=20,
		socket_connect_timeout=5,
		socket_timeout=5,
		retry_on_timeout=True,
	)
	client = aioredis.Redis(connection_pool=pool)
	_async_pool_by_loop[key] = pool
	_redis_async_by_loop[key] = client
	return client

