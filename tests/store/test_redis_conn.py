from unittest.mock import patch

from onlyone.settings import settings
from onlyone.store import redis_conn


@patch("onlyone.store.redis_conn.Redis")
def test_client_reused_per_url(mock_redis):
    redis_conn._client_for.cache_clear()
    try:
        with patch.object(settings, "REDIS_URL", "redis://cache-a:6379/0"):
            first = redis_conn.get_redis()
            again = redis_conn.get_redis()
        with patch.object(settings, "REDIS_URL", "redis://cache-b:6379/0"):
            redis_conn.get_redis()
    finally:
        redis_conn._client_for.cache_clear()

    assert first is again
    assert mock_redis.from_url.call_count == 2
    mock_redis.from_url.assert_any_call("redis://cache-a:6379/0", decode_responses=True)
