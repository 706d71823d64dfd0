from typing import Optional

from redis import Redis
from paylite.settings import settings

_client: Optional[Redis] = None


def get_redis() -> Redis:
    """
    Process-wide client (one connection pool) shared by the transaction store,
    job ledger and metrics.
    """
    global _client
    if _client is None:
        _client = Redis.from_url(
            settings.REDIS_URL,
            decode_responses=True,
            socket_timeout=settings.REDIS_SOCKET_TIMEOUT_SEC,
            health_check_interval=30,
        )
    return _client
