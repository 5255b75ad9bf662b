"""Compulsive strategy: trade the chosen company on every quote, at random."""

import asyncio
import random

from compulsive.core.contracts import PortfolioHandle
from compulsive.core.types import MarketTick
from compulsive.logging import get_logger
from compulsive.strategies.base import TradingStrategy

logger = get_logger(__name__)


class CompulsiveStrategy(TradingStrategy):
    """Buy or sell a fixed number of shares on every quote of one company.

    Each quote for the configured company triggers a coin flip: heads sells,
    tails buys. Orders are sent as independent tasks so a slow ledger never
    holds up the dispatch loop; their results are only logged.
    """

    strategy_id = "compulsive"

    def __init__(self, rng: random.Random | None = None) -> None:
        self._rng = rng or random.Random()
        self._orders: set[asyncio.Task[None]] = set()
        self.orders_sent = 0

    @property
    def pending_orders(self) -> int:
        return len(self._orders)

    def time_to_sell(self) -> bool:
        return self._rng.random() < 0.5

    async def on_tick(
        self, company: str, share_count: int, portfolio: PortfolioHandle, tick: MarketTick
    ) -> None:
        if tick.company.casefold() != company.casefold():
            return

        action = "sell" if self.time_to_sell() else "buy"
        logger.info(f"Trying to {action} {share_count} {company}")
        task = asyncio.create_task(
            self._place(action, company, share_count, portfolio, tick),
            name=f"{action}-{tick.symbol}",
        )
        self._orders.add(task)
        task.add_done_callback(self._orders.discard)
        self.orders_sent += 1

    async def _place(
        self,
        action: str,
        company: str,
        share_count: int,
        portfolio: PortfolioHandle,
        tick: MarketTick,
    ) -> None:
        try:
            if action == "sell":
                await portfolio.sell(tick.symbol, share_count, tick)
                logger.info(f"Sold {share_count} of {company}!")
            else:
                await portfolio.buy(tick.symbol, share_count, tick)
                logger.info(f"Bought {share_count} of {company}!")
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.warning(f"D'oh, failed to {action} {share_count} of {company}: {e}")

    async def wait_idle(self) -> None:
        """Wait for every order sent so far to finish."""
        if self._orders:
            await asyncio.wait(set(self._orders))

    async def close(self) -> None:
        orders = list(self._orders)
        for task in orders:
            task.cancel()
        if orders:
            await asyncio.gather(*orders, return_exceptions=True)
        self._orders.clear()
