"""Trading callback boundary."""

from abc import ABC, abstractmethod
from collections.abc import Awaitable, Callable
from dataclasses import dataclass

from compulsive.core.contracts import PortfolioHandle
from compulsive.core.types import MarketTick

TradingCallbackFn = Callable[[str, int, PortfolioHandle, MarketTick], Awaitable[None] | None]


class TradingStrategy(ABC):
    """Base class for trading strategies.

    ``on_tick`` runs on the dispatch loop, once per tick, and must return
    quickly: long remote calls should be handed off to their own tasks.
    """

    strategy_id: str = "strategy"

    @abstractmethod
    async def on_tick(
        self, company: str, share_count: int, portfolio: PortfolioHandle, tick: MarketTick
    ) -> None:
        """React to one tick."""

    async def close(self) -> None:
        """Release anything the strategy started (pending orders, timers)."""


@dataclass(frozen=True)
class BoundTradingCallback:
    """A strategy with the trader's company, share count and portfolio fixed.

    Built once, when the trader subscribes; the dispatch loop only ever
    passes the tick.
    """

    strategy: TradingStrategy | TradingCallbackFn
    company: str
    share_count: int
    portfolio: PortfolioHandle

    def __call__(self, tick: MarketTick) -> Awaitable[None] | None:
        if isinstance(self.strategy, TradingStrategy):
            return self.strategy.on_tick(self.company, self.share_count, self.portfolio, tick)
        return self.strategy(self.company, self.share_count, self.portfolio, tick)

    async def close(self) -> None:
        if isinstance(self.strategy, TradingStrategy):
            await self.strategy.close()
