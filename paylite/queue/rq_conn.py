from redis import Redis
from rq import Queue
from paylite.settings import settings


def get_queue() -> Queue:
    # RQ pickles job payloads, so this connection must not decode responses
    conn = Redis.from_url(settings.REDIS_URL)
    return Queue(
        settings.RQ_QUEUE_NAME,
        connection=conn,
        default_timeout=settings.RQ_JOB_TIMEOUT_SEC,
    )
