# payflow/db/redis.py
import redis
from payflow.core.config import settings


def get_redis_client():
    """
    Creates and returns a new Redis client instance.
    Celery tasks use this to get a fresh connection.
    """
    return redis.from_url(settings.REDIS_URL, decode_responses=True)


# Shared client for webhook processed-markers.
redis_client = get_redis_client()
