# backend/courtbook/redis_client.py

from redis import Redis

from .config import Settings

REDIS_SOCKET_TIMEOUT = 2.0


def build_redis_client(settings: Settings) -> Redis:
    """Create the Redis client for the slot cache (string responses)."""
    return Redis.from_url(
        settings.redis_url,
        decode_responses=True,
        socket_timeout=REDIS_SOCKET_TIMEOUT,
        socket_connect_timeout=REDIS_SOCKET_TIMEOUT,
    )
