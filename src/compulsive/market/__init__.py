"""Market data sources."""

from .memory import InMemoryMarketSource
from .redis_stream import RedisStreamMarketSource

__all__ = ["InMemoryMarketSource", "RedisStreamMarketSource"]
