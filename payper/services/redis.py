import json
import logging
from typing import Optional, Any

import redis

from ..config import settings

logger = logging.getLogger(__name__)


class RedisClient:
    def __init__(self, client=None):
        # redis.from_url does not connect until the first command
        self.client = client if client is not None else redis.from_url(settings.REDIS_URL, decode_responses=True)

    def get(self, key: str) -> Optional[Any]:
        try:
            value = self.client.get(key)
        except redis.ConnectionError:
            logger.error("Redis unavailable while reading %s", key)
            return None
        if value:
            try:
                return json.loads(value)
            except (TypeError, ValueError):
                return value
        return None

    def set(self, key: str, value: Any, expire: Optional[int] = None):
        if isinstance(value, (dict, list)):
            value = json.dumps(value)
        if expire:
            self.client.setex(key, expire, value)
        else:
            self.client.set(key, value)

    def delete(self, *keys: str):
        if keys:
            self.client.delete(*keys)

    # Staff session hash
    def hset(self, name: str, mapping: dict):
        self.client.hset(name, mapping=mapping)

    def expire(self, key: str, seconds: int):
        self.client.expire(key, seconds)


redis_client = RedisClient()
