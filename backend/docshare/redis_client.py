import redis.asyncio as redis
from typing import Optional

from .config import settings
from .logging_config import get_logger

logger = get_logger(__name__)

# Redis connection pool (connections are opened lazily)
pool = redis.ConnectionPool(
    host=settings.REDIS_HOST,
    port=settings.REDIS_PORT,
    db=settings.REDIS_DB,
    password=settings.REDIS_PASSWORD or None,
    decode_responses=True,
    max_connections=20
)

redis_client = redis.Redis(connection_pool=pool)


class RedisService:
    """Redis service for rate limiting public and owner endpoints."""

    RATE_LIMIT_PREFIX = "ratelimit:"
    RATE_LIMIT_TTL = 3600  # 1 hour

    @staticmethod
    async def check_rate_limit(scope: str, key: str, limit: int) -> tuple[bool, int]:
        """
        Check and increment a fixed-window counter.
        Returns (is_allowed, remaining_requests).
        """
        redis_key = f"{RedisService.RATE_LIMIT_PREFIX}{scope}:{key}"

        try:
            current = await redis_client.incr(redis_key)
            if current == 1:
                await redis_client.expire(redis_key, RedisService.RATE_LIMIT_TTL)

            if current > limit:
                return False, 0

            return True, limit - current

        except Exception as e:
            # If Redis fails, allow the request
            logger.warning(f"Rate limit check failed for {scope}: {e}")
            return True, limit

    @staticmethod
    async def health_check() -> bool:
        """Check Redis connection health."""
        try:
            return bool(await redis_client.ping())
        except Exception:
            return False

    @staticmethod
    async def close(client: Optional[redis.Redis] = None) -> None:
        try:
            await (client or redis_client).aclose()
        except Exception as e:
            logger.debug(f"Redis close failed: {e}")
