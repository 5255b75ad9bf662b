"""Service locators: in-process and Redis-backed registries."""

from .memory import InMemoryServiceLocator, InMemoryServiceRegistry
from .redis_registry import RedisServiceLocator, connect_redis_registry

__all__ = [
    "InMemoryServiceLocator",
    "InMemoryServiceRegistry",
    "RedisServiceLocator",
    "connect_redis_registry",
]
