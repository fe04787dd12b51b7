from typing import cast

import redis
import redis.asyncio as aioredis

from shared.config import config
from shared.utils import setup_logging

logger = setup_logging("webhook-queue")

DEFAULT_QUEUE_KEY = "webhook_events:pending"


class QueueManager:
    """Redis list used to wake the reconciler when new webhook events arrive.

    Operations fail fast with ``ConnectionError``; callers on the request path
    log the failure and leave the event to the periodic sweep.
    """

    def __init__(self, redis_url: str | None = None, queue_key: str | None = None) -> None:
        self.redis_url = redis_url or config.get("redis_url", "redis://localhost:6379/0")
        self.queue_key = queue_key or config.get_pipeline_value("webhooks.queue_key", DEFAULT_QUEUE_KEY)
        timeout = float(config.get_pipeline_value("webhooks.queue_timeout_seconds", 1))
        self.redis = aioredis.Redis.from_url(
            self.redis_url,
            decode_responses=True,
            socket_connect_timeout=timeout,
            socket_timeout=timeout,
        )  # type: ignore[misc]
        logger.info(f"QueueManager initialized for '{self.queue_key}'")

    async def enqueue(self, value: str, key: str | None = None) -> None:
        key = key or self.queue_key
        try:
            await self.redis.rpush(key, value)
        except (redis.RedisError, OSError) as e:
            raise ConnectionError(f"Redis enqueue operation failed: {e}") from e
        logger.debug(f"Enqueued {value} on '{key}'")

    async def dequeue(self, key: str | None = None) -> str | None:
        try:
            result = await self.redis.lpop(key or self.queue_key)  # type: ignore[misc]
        except (redis.RedisError, OSError) as e:
            raise ConnectionError(f"Redis dequeue operation failed: {e}") from e
        if result is None:
            return None
        if isinstance(result, bytes):
            return result.decode("utf-8")
        return str(result)  # type: ignore[misc]

    async def get_length(self, key: str | None = None) -> int:
        try:
            result = await self.redis.llen(key or self.queue_key)  # type: ignore[misc]
        except (redis.RedisError, OSError) as e:
            raise ConnectionError(f"Redis length query failed: {e}") from e
        return cast(int, result)

    async def close(self) -> None:
        await self.redis.aclose()
