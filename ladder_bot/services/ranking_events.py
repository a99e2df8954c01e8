"""
Realtime ranking-change events.

After every committed rank mutation the engine publishes a small JSON event
on the Redis pub/sub channel of the category. Subscribers (dashboards, other
bot instances) refresh their view; nothing in the engine waits on them.
"""

import json
import logging
from typing import Any, Dict, Optional

import redis.asyncio as redis

from ladder_bot.config import Config
from ladder_bot.utils.redis_utils import RedisUtils
from ladder_bot.utils.time_parser import utc_now

logger = logging.getLogger(__name__)


class RankingEventPublisher:
    """Publishes ranking-change events to Redis"""

    def __init__(self, client: Optional['redis.Redis'] = None):
        self._client = client
        self._connect_attempted = client is not None

    @staticmethod
    def channel_for(category_id: int) -> str:
        return f"{Config.RANKING_EVENT_CHANNEL_PREFIX}{category_id}"

    async def _get_client(self) -> Optional['redis.Redis']:
        if not self._connect_attempted:
            self._connect_attempted = True
            self._client = await RedisUtils.create_redis_client()
        return self._client

    async def publish(self, category_id: int, event_type: str, data: Optional[Dict[str, Any]] = None) -> bool:
        """
        Publish a ranking event; never raises.

        Args:
            category_id: Category whose ranking changed
            event_type: Mutation name (e.g. "swap_ranks", "match_result")
            data: Extra event fields (team ids, new ranks)

        Returns:
            True if the event reached Redis
        """
        client = await self._get_client()
        if client is None:
            logger.debug(f"No Redis client; skipped {event_type} event for category {category_id}")
            return False

        message = json.dumps({
            'category_id': category_id,
            'event': event_type,
            'data': data or {},
            'published_at': utc_now().isoformat(),
        })

        try:
            await client.publish(self.channel_for(category_id), message)
            return True
        except (redis.RedisError, OSError) as e:
            logger.warning(f"Failed to publish {event_type} event for category {category_id}: {e}")
            return False

    async def close(self):
        if self._client is not None:
            await self._client.aclose()
            self._client = None
