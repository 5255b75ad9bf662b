"""In-process market source for local runs and tests."""

import asyncio
from collections.abc import AsyncIterator

from compulsive.core.contracts import MarketSourceHandle
from compulsive.core.errors import SubscriptionError
from compulsive.core.types import MarketTick, ServiceKind, ServiceRecord
from compulsive.logging import get_logger

logger = get_logger(__name__)

_END = object()


class InMemoryMarketSource(MarketSourceHandle):
    """Fan published ticks out to every open stream.

    Streams only see ticks published after they were opened. ``end()`` ends
    every open stream and refuses new ones.
    """

    def __init__(self, record: ServiceRecord | None = None, name: str = "market-data") -> None:
        super().__init__(record or ServiceRecord(name=name, kind=ServiceKind.STREAM_SOURCE))
        self._queues: list[asyncio.Queue[object]] = []
        self._ended = False

    @property
    def subscriber_count(self) -> int:
        return len(self._queues)

    @property
    def ended(self) -> bool:
        return self._ended

    async def open_stream(self) -> AsyncIterator[MarketTick]:
        if self._ended or self.released:
            raise SubscriptionError(f"Market source {self.record.name!r} is closed")
        queue: asyncio.Queue[object] = asyncio.Queue()
        self._queues.append(queue)
        return self._iterate(queue)

    async def _iterate(self, queue: asyncio.Queue[object]) -> AsyncIterator[MarketTick]:
        try:
            while True:
                item = await queue.get()
                if item is _END:
                    return
                assert isinstance(item, MarketTick)
                yield item
        finally:
            if queue in self._queues:
                self._queues.remove(queue)

    def publish(self, tick: MarketTick) -> int:
        """Deliver ``tick`` to every open stream. Returns the number of streams."""
        if self._ended:
            logger.debug(f"Dropping tick for {tick.symbol}: source ended")
            return 0
        for queue in self._queues:
            queue.put_nowait(tick)
        return len(self._queues)

    def end(self) -> None:
        if self._ended:
            return
        self._ended = True
        for queue in self._queues:
            queue.put_nowait(_END)

    async def _on_release(self) -> None:
        self.end()
