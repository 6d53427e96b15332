from .base import Channel, ChannelTransaction
from .memory import MemoryChannel, MemoryTransaction
from .models import Event

# RedisStreamsChannel lives in tablesink.channel.redis_streams
__all__ = [
    "Channel",
    "ChannelTransaction",
    "Event",
    "MemoryChannel",
    "MemoryTransaction",
]
