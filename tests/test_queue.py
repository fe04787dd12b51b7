import asyncio

import pytest
import redis

from services.webhooks.queue import QueueManager


@pytest.fixture
def queue():
    return QueueManager(queue_key="test_webhook_queue")


@pytest.mark.asyncio
async def test_enqueue_dequeue(queue):
    await queue.enqueue("event-1")
    await queue.enqueue("event-2")
    assert await queue.dequeue() == "event-1"
    assert await queue.dequeue() == "event-2"
    assert await queue.dequeue() is None


@pytest.mark.asyncio
async def test_queue_length(queue):
    key = "test_queue_len"
    await queue.enqueue("v1", key=key)
    await queue.enqueue("v2", key=key)
    assert await queue.get_length(key) == 2
    assert await queue.get_length() == 0
    await queue.dequeue(key)
    assert await queue.get_length(key) == 1
    await queue.dequeue(key)
    assert await queue.get_length(key) == 0


@pytest.mark.asyncio
async def test_enqueue_raises_connection_error_when_redis_is_down(queue, monkeypatch):
    async def failing_rpush(key, value):
        raise redis.ConnectionError("connection refused")

    monkeypatch.setattr(queue.redis, "rpush", failing_rpush)

    with pytest.raises(ConnectionError):
        await queue.enqueue("event-1")
    assert await queue.get_length() == 0


@pytest.mark.asyncio
async def test_slow_redis_does_not_block_the_event_loop(queue, monkeypatch):
    async def stalled_rpush(key, value):
        await asyncio.sleep(0.2)
        raise redis.TimeoutError("Timeout connecting to server")

    monkeypatch.setattr(queue.redis, "rpush", stalled_rpush)

    ticks = 0

    async def ticker():
        nonlocal ticks
        while True:
            await asyncio.sleep(0.01)
            ticks += 1

    ticking = asyncio.create_task(ticker())
    try:
        with pytest.raises(ConnectionError):
            await queue.enqueue("event-1")
    finally:
        ticking.cancel()

    assert ticks >= 10


@pytest.mark.asyncio
async def test_dequeue_raises_connection_error(queue, monkeypatch):
    async def failing_lpop(key):
        raise redis.ConnectionError("connection reset")

    monkeypatch.setattr(queue.redis, "lpop", failing_lpop)

    with pytest.raises(ConnectionError):
        await queue.dequeue()
