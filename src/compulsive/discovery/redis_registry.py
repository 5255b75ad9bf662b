"""Service registry stored in a Redis hash.

Each field of ``settings.registry_key`` is a service name; its value is an
orjson-encoded :class:`~compulsive.core.types.ServiceRecord`::

    HSET services:registry portfolio
        '{"name": "portfolio", "kind": "rpc-proxy", "location": {"address": "portfolio:requests"}}'
    HSET services:registry market-data
        '{"name": "market-data", "kind": "stream-source", "location": {"stream": "market:quotes"}}'

Registration, health checks and expiry of records belong to the services
themselves; this module only reads.
"""

from __future__ import annotations

import asyncio
from typing import Any

import orjson
import redis.asyncio as aioredis
from pydantic import ValidationError
from redis.exceptions import RedisError

from compulsive.config import TraderSettings, settings as default_settings
from compulsive.core.contracts import ServiceHandle, ServiceLocator
from compulsive.core.errors import RegistryUnavailableError, ServiceNotFoundError
from compulsive.core.types import ServiceKind, ServiceRecord, ServiceRequest
from compulsive.logging import get_logger
from compulsive.market.redis_stream import RedisStreamMarketSource
from compulsive.portfolio.redis_proxy import RedisPortfolioProxy

logger = get_logger(__name__)


def decode_record(raw: Any) -> ServiceRecord | None:
    """Parse one registry value; ``None`` if it is not a valid record."""
    if isinstance(raw, str):
        raw = raw.encode()
    try:
        return ServiceRecord.model_validate(orjson.loads(raw))
    except (orjson.JSONDecodeError, ValidationError, TypeError) as e:
        logger.warning(f"Skipping malformed registry record: {e}")
        return None


class RedisServiceLocator(ServiceLocator):
    """Locator reading service records from a Redis hash.

    Every lookup re-reads the hash, so services that register after the
    locator was created are found.
    """

    def __init__(
        self,
        client: aioredis.Redis,
        *,
        registry_key: str = "services:registry",
        lookup_timeout_seconds: float = 10.0,
        rpc_timeout_seconds: float = 5.0,
        stream_block_ms: int = 1000,
        owns_client: bool = True,
    ) -> None:
        self._redis = client
        self._registry_key = registry_key
        self._lookup_timeout = lookup_timeout_seconds
        self._rpc_timeout = rpc_timeout_seconds
        self._stream_block_ms = stream_block_ms
        self._owns_client = owns_client
        self._closed = False

    async def lookup(self, request: ServiceRequest) -> ServiceHandle:
        if self._closed:
            raise RegistryUnavailableError("Service locator is closed")
        try:
            entries = await asyncio.wait_for(
                self._redis.hgetall(self._registry_key), timeout=self._lookup_timeout
            )
        except TimeoutError as e:
            raise RegistryUnavailableError(
                f"Lookup of '{request.name}' timed out after {self._lookup_timeout}s"
            ) from e
        except RedisError as e:
            raise RegistryUnavailableError(f"Registry read failed: {e}") from e

        for raw in entries.values():
            record = decode_record(raw)
            if record is not None and request.matches(record):
                logger.debug(f"Registry match for '{request.name}': {record.location}")
                return self._build_handle(record)

        raise ServiceNotFoundError(request.name, request.kind)

    def _build_handle(self, record: ServiceRecord) -> ServiceHandle:
        if record.kind is ServiceKind.RPC_PROXY:
            return RedisPortfolioProxy(record, self._redis, timeout_seconds=self._rpc_timeout)
        return RedisStreamMarketSource(record, self._redis, block_ms=self._stream_block_ms)

    async def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        if self._owns_client:
            await self._redis.aclose()
        logger.debug("Redis service locator closed")


async def connect_redis_registry(settings: TraderSettings | None = None) -> RedisServiceLocator:
    """Connect to the Redis registry named in ``settings``.

    Raises:
        RegistryUnavailableError: Redis could not be reached.
    """
    settings = settings or default_settings
    client = aioredis.from_url(
        settings.redis_url,
        decode_responses=False,
        socket_connect_timeout=5,
        socket_keepalive=True,
    )
    try:
        await client.ping()
    except (RedisError, OSError) as e:
        await client.aclose()
        raise RegistryUnavailableError(
            f"Cannot reach service registry at {settings.redis_url}: {e}"
        ) from e

    logger.info(f"Connected to service registry at {settings.redis_url}")
    return RedisServiceLocator(
        client,
        registry_key=settings.registry_key,
        lookup_timeout_seconds=settings.lookup_timeout_seconds,
        rpc_timeout_seconds=settings.portfolio_rpc_timeout_seconds,
        stream_block_ms=settings.stream_block_ms,
    )
