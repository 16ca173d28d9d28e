"""Redis client configuration and utilities."""

from typing import cast

import redis

from portal_scheduling.config import settings

# Global Redis client instance
_redis_client: redis.Redis | None = None


def get_redis_client() -> redis.Redis:
    """
    Get or create Redis client instance.

    Returns:
        Redis client instance
    """
    global _redis_client

    if _redis_client is None:
        _redis_client = redis.Redis(
            host=settings.redis_host,
            port=settings.redis_port,
            username=settings.redis_username,
            password=settings.redis_password or None,
            decode_responses=settings.redis_decode_responses,
            socket_connect_timeout=5,
            socket_keepalive=True,
            health_check_interval=30,
        )

    return _redis_client


async def check_redis_connection() -> bool:
    """
    Check if Redis connection is healthy.

    Returns:
        True if connection is healthy, False otherwise
    """
    try:
        client = get_redis_client()
        client.ping()
        return True
    except Exception:
        return False


def close_redis_connection() -> None:
    """Close Redis connection."""
    global _redis_client

    if _redis_client is not None:
        _redis_client.close()
        _redis_client = None


class ChannelPublisher:
    """Publishes JSON messages on a Redis pub/sub channel."""

    def __init__(self, redis_client: redis.Redis, channel: str):
        """Initialize publisher with Redis client and target channel."""
        self.redis = redis_client
        self.channel = channel

    def publish(self, message: str) -> int:
        """
        Publish a raw message.

        Args:
            message: Serialized payload

        Returns:
            Number of subscribers that received the message
        """
        return cast(int, self.redis.publish(self.channel, message))

