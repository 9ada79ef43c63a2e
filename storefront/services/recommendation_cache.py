import json
from typing import Optional

import redis
import structlog

logger = structlog.get_logger()

KEY_PREFIX = "rec"


class RecommendationCache:
    """
    Per-user recommendation results in Redis.

    Keys: rec:<user>:<context>:<limit>:<offset>[:<current product>]
    """

    def __init__(self, client: redis.Redis, ttl_seconds: int = 3600):
        self.client = client
        self.ttl_seconds = ttl_seconds

    @classmethod
    def from_url(cls, url: str, ttl_seconds: int = 3600) -> "RecommendationCache":
        return cls(redis.Redis.from_url(url, decode_responses=True), ttl_seconds)

    @staticmethod
    def cache_key(
        user_id: int,
        context: str,
        limit: int,
        offset: int,
        current_product_id: Optional[int] = None,
    ) -> str:
        parts = [str(user_id), context, str(limit), str(offset)]
        if current_product_id is not None:
            parts.append(str(current_product_id))
        return f"{KEY_PREFIX}:{':'.join(parts)}"

    def get(self, user_id: int, context: str, limit: int, offset: int,
            current_product_id: Optional[int] = None) -> Optional[dict]:
        raw = self.client.get(self.cache_key(user_id, context, limit, offset, current_product_id))
        return json.loads(raw) if raw else None

    def set(self, user_id: int, context: str, limit: int, offset: int, data: dict,
            current_product_id: Optional[int] = None) -> None:
        self.client.set(
            self.cache_key(user_id, context, limit, offset, current_product_id),
            json.dumps(data),
            ex=self.ttl_seconds,
        )

    def invalidate_user(self, user_id: int) -> int:
        keys = list(self.client.scan_iter(match=f"{KEY_PREFIX}:{user_id}:*"))
        if keys:
            self.client.delete(*keys)
        logger.info("recommendation_cache_invalidated", user_id=user_id, keys=len(keys))
        return len(keys)

    def invalidate_all(self) -> int:
        keys = list(self.client.scan_iter(match=f"{KEY_PREFIX}:*"))
        if keys:
            self.client.delete(*keys)
        return len(keys)
