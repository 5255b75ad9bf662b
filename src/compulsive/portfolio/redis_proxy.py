"""Portfolio ledger proxy speaking request/reply over Redis lists.

A request is pushed onto the service's ``location["address"]`` list::

    {"id": "...", "action": "buy", "args": {...}, "reply_to": "<address>:reply:<id>"}

and the ledger answers on ``reply_to`` with ``{"ok": true, "result": ...}`` or
``{"ok": false, "error": "..."}``.
"""

from __future__ import annotations

import uuid
from typing import Any

import orjson
import redis.asyncio as aioredis
from redis.exceptions import RedisError

from compulsive.core.contracts import PortfolioHandle
from compulsive.core.errors import PortfolioCallError, ServiceNotFoundError
from compulsive.core.types import MarketTick, ServiceRecord
from compulsive.logging import get_logger

logger = get_logger(__name__)


class RedisPortfolioProxy(PortfolioHandle):
    """Remote portfolio reached through a Redis request queue."""

    def __init__(
        self,
        record: ServiceRecord,
        client: aioredis.Redis,
        *,
        timeout_seconds: float = 5.0,
    ) -> None:
        super().__init__(record)
        address = record.location.get("address")
        if not address:
            raise ServiceNotFoundError(
                record.name, record.kind, reason="record has no 'address' location"
            )
        self._address = str(address)
        self._redis = client
        self._timeout = timeout_seconds

    @property
    def address(self) -> str:
        return self._address

    async def buy(self, symbol: str, quantity: int, quote: MarketTick | None = None) -> dict[str, Any]:
        return await self._call("buy", self._order_args(symbol, quantity, quote))

    async def sell(self, symbol: str, quantity: int, quote: MarketTick | None = None) -> dict[str, Any]:
        return await self._call("sell", self._order_args(symbol, quantity, quote))

    async def positions(self) -> dict[str, int]:
        result = await self._call("positions", {})
        shares = result.get("shares", result) if isinstance(result, dict) else {}
        return {str(symbol): int(count) for symbol, count in shares.items()}

    @staticmethod
    def _order_args(symbol: str, quantity: int, quote: MarketTick | None) -> dict[str, Any]:
        return {
            "symbol": symbol,
            "amount": quantity,
            "quote": quote.model_dump(mode="json") if quote is not None else None,
        }

    async def _call(self, action: str, args: dict[str, Any]) -> Any:
        if self.released:
            raise PortfolioCallError(action, "portfolio handle was released")

        request_id = uuid.uuid4().hex
        reply_to = f"{self._address}:reply:{request_id}"
        request = orjson.dumps(
            {"id": request_id, "action": action, "args": args, "reply_to": reply_to}
        )
        try:
            await self._redis.lpush(self._address, request)
            reply = await self._redis.blpop([reply_to], timeout=self._timeout)
        except RedisError as e:
            raise PortfolioCallError(action, str(e)) from e

        if reply is None:
            raise PortfolioCallError(action, f"no reply within {self._timeout}s")

        _, raw = reply
        try:
            body = orjson.loads(raw)
        except orjson.JSONDecodeError as e:
            raise PortfolioCallError(action, f"malformed reply: {e}") from e

        if not body.get("ok"):
            raise PortfolioCallError(action, str(body.get("error") or "request rejected"))
        logger.debug(f"Portfolio {action} {request_id} ok")
        return body.get("result") or {}
