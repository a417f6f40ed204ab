from functools import lru_cache

from redis import Redis
from onlyone.settings import settings


@lru_cache(maxsize=None)
def _client_for(url: str) -> Redis:
    return Redis.from_url(url, decode_responses=True)


def get_redis() -> Redis:
    """Shared client for the configured REDIS_URL; one connection pool per URL."""
    return _client_for(settings.REDIS_URL)
