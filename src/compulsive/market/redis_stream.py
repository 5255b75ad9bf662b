"""Market source backed by a Redis Stream of exchange quotes."""

from __future__ import annotations

import asyncio
from collections.abc import AsyncIterator
from typing import Any

import orjson
import redis.asyncio as aioredis
from pydantic import ValidationError
from redis.exceptions import RedisError

from compulsive.core.contracts import MarketSourceHandle
from compulsive.core.errors import ServiceNotFoundError, SubscriptionError
from compulsive.core.types import MarketTick, ServiceRecord
from compulsive.logging import get_logger

logger = get_logger(__name__)


class RedisStreamMarketSource(MarketSourceHandle):
    """Reads quotes from the stream named by ``location["stream"]``.

    Each entry carries an orjson quote in its ``data`` field. A stream opened
    here starts after the newest entry present at open time: history is never
    replayed. Transient Redis errors are logged and reading resumes from the
    last entry seen.
    """

    def __init__(
        self,
        record: ServiceRecord,
        client: aioredis.Redis,
        *,
        block_ms: int = 1000,
        count: int = 50,
    ) -> None:
        super().__init__(record)
        stream = record.location.get("stream")
        if not stream:
            raise ServiceNotFoundError(
                record.name, record.kind, reason="record has no 'stream' location"
            )
        self._stream = str(stream)
        self._redis = client
        self._block_ms = block_ms
        self._count = count

    @property
    def stream(self) -> str:
        return self._stream

    async def open_stream(self) -> AsyncIterator[MarketTick]:
        if self.released:
            raise SubscriptionError(f"Market source {self.record.name!r} was released")
        try:
            newest = await self._redis.xrevrange(self._stream, count=1)
        except RedisError as e:
            raise SubscriptionError(f"Cannot read stream {self._stream!r}: {e}") from e
        last_id: Any = newest[0][0] if newest else b"0-0"
        logger.debug(f"Opening stream {self._stream} after {last_id!r}")
        return self._iterate(last_id)

    async def _iterate(self, last_id: Any) -> AsyncIterator[MarketTick]:
        while not self.released:
            try:
                messages = await self._redis.xread(
                    {self._stream: last_id}, count=self._count, block=self._block_ms
                )
            except RedisError as e:
                logger.warning(f"Market stream {self._stream} read error: {e}")
                await asyncio.sleep(1)
                continue

            for _stream, entries in messages or []:
                for msg_id, fields in entries:
                    last_id = msg_id
                    tick = self.decode_entry(fields)
                    if tick is not None:
                        yield tick

    @staticmethod
    def decode_entry(fields: dict[Any, Any]) -> MarketTick | None:
        data = fields.get(b"data") or fields.get("data")
        if not data:
            return None
        if isinstance(data, str):
            data = data.encode()
        try:
            return MarketTick.from_quote(orjson.loads(data))
        except (orjson.JSONDecodeError, ValidationError, TypeError, ValueError) as e:
            logger.debug(f"Skipping undecodable quote: {e}")
            return None
