"""Cross-process board change notices over Redis pub/sub.

Celery workers cannot reach the web process's push connections. After a
worker commits a change it publishes a notice on ``board:{id}``; the web
process relays each notice to ``BoardPublisher.publish``, which re-reads the
board and pushes it to that board's clients.
"""

import asyncio
import json
import logging
from collections.abc import AsyncIterator
from datetime import UTC, datetime
from typing import TYPE_CHECKING

import redis
import redis.asyncio as aioredis

from feedboard.config import get_settings

if TYPE_CHECKING:
    from redis.asyncio.client import PubSub

    from feedboard.services.board_state import BoardPublisher

logger = logging.getLogger(__name__)
settings = get_settings()

BOARD_CHANNEL_PATTERN = "board:*"
RELAY_RETRY_DELAY = 1.0
RELAY_MAX_RETRY_DELAY = 30.0


def board_channel(board_id: str) -> str:
    return f"board:{board_id}"


# Synchronous Redis client for publishing from worker tasks
_sync_redis: redis.Redis | None = None


def get_sync_redis() -> redis.Redis:
    """Get synchronous Redis client for publishing."""
    global _sync_redis
    if _sync_redis is None:
        _sync_redis = redis.from_url(settings.redis_url)
    return _sync_redis


def publish_board_changed(board_id: str, reason: str = "") -> bool:
    """Announce that a board changed in the database.

    Called after the change has been committed.

    Args:
        board_id: The board that changed
        reason: Short label for logging, e.g. ``override_expired``

    Returns:
        True if the notice was published
    """
    try:
        message = {
            "type": "board_changed",
            "board_id": board_id,
            "reason": reason,
            "timestamp": datetime.now(UTC).isoformat(),
        }
        get_sync_redis().publish(board_channel(board_id), json.dumps(message))
        logger.debug(f"Published board change for {board_id} ({reason})")
        return True
    except Exception as e:
        # The change is committed; clients still get it on their next snapshot
        logger.error(f"Failed to publish board change: {e}")
        return False


class RealtimeService:
    """Async Redis subscriber for board change notices."""

    def __init__(self, redis_url: str | None = None) -> None:
        self._redis_url = redis_url or settings.redis_url
        self._redis: aioredis.Redis | None = None
        self._pubsub: PubSub | None = None

    async def _get_redis(self) -> aioredis.Redis:
        if self._redis is None:
            self._redis = aioredis.from_url(self._redis_url)
        return self._redis

    async def subscribe(self, pattern: str = BOARD_CHANNEL_PATTERN) -> AsyncIterator[dict]:
        """Subscribe to a channel pattern and yield decoded messages."""
        redis_conn = await self._get_redis()
        self._pubsub = redis_conn.pubsub()
        await self._pubsub.psubscribe(pattern)

        try:
            async for message in self._pubsub.listen():
                if message["type"] == "pmessage":
                    try:
                        yield json.loads(message["data"])
                    except json.JSONDecodeError:
                        logger.warning(f"Invalid JSON in pub/sub message: {message['data']}")
        finally:
            if self._pubsub:
                await self._pubsub.punsubscribe(pattern)

    async def relay(
        self,
        publisher: "BoardPublisher",
        *,
        retry_delay: float = RELAY_RETRY_DELAY,
        max_retry_delay: float = RELAY_MAX_RETRY_DELAY,
    ) -> None:
        """Push every announced board change to that board's clients.

        Runs until cancelled or the subscription ends cleanly. A lost
        subscription is logged and re-opened after an exponential backoff
        capped at ``max_retry_delay``.
        """
        delay = retry_delay
        while True:
            logger.info("Relaying board change notices from Redis")
            try:
                async for message in self.subscribe():
                    delay = retry_delay
                    board_id = message.get("board_id")
                    if not board_id:
                        continue
                    try:
                        await asyncio.to_thread(publisher.publish, board_id)
                    except Exception as e:
                        logger.error(f"Failed to relay change of board {board_id}: {e}", exc_info=True)
                return
            except asyncio.CancelledError:
                raise
            except Exception as e:
                logger.error(
                    f"Board change subscription lost, retrying in {delay:.1f}s: {e}", exc_info=True
                )
            await self._discard_pubsub()
            await asyncio.sleep(delay)
            delay = min(delay * 2, max_retry_delay)

    async def _discard_pubsub(self) -> None:
        pubsub, self._pubsub = self._pubsub, None
        if pubsub is None:
            return
        try:
            await pubsub.close()
        except Exception as e:
            logger.debug(f"Ignoring error closing a dead subscription: {e}")

    async def cleanup(self) -> None:
        """Clean up Redis connections."""
        if self._pubsub:
            await self._pubsub.close()
        if self._redis:
            await self._redis.close()
