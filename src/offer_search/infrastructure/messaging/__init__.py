"""Message transport adapters feeding the sync worker pool."""
from offer_search.infrastructure.messaging.redis_stream import RedisStreamIngress

__all__ = ["RedisStreamIngress"]
