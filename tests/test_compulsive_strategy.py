"""Tests for the compulsive trading strategy."""

import asyncio
import logging
from unittest.mock import AsyncMock, MagicMock

from helpers import make_tick

from compulsive.core.contracts import PortfolioHandle
from compulsive.portfolio.paper import PaperPortfolio
from compulsive.strategies.base import BoundTradingCallback
from compulsive.strategies.compulsive import CompulsiveStrategy


def _coin(*flips: float) -> MagicMock:
    """RNG stub: values below 0.5 mean sell."""
    rng = MagicMock()
    rng.random.side_effect = list(flips)
    return rng


def _mock_portfolio() -> MagicMock:
    portfolio = MagicMock(spec=PortfolioHandle)
    portfolio.buy = AsyncMock(return_value={})
    portfolio.sell = AsyncMock(return_value={})
    return portfolio


class TestCompulsiveStrategy:
    async def test_ignores_other_companies(self):
        strategy = CompulsiveStrategy(rng=_coin())
        portfolio = _mock_portfolio()
        await strategy.on_tick("MacroHard", 3, portfolio, make_tick(symbol="DVN", name="Divinator"))
        assert strategy.orders_sent == 0
        portfolio.buy.assert_not_called()
        portfolio.sell.assert_not_called()

    async def test_company_match_is_case_insensitive(self):
        strategy = CompulsiveStrategy(rng=_coin(0.9))
        portfolio = _mock_portfolio()
        await strategy.on_tick("macrohard", 2, portfolio, make_tick(name="MacroHard"))
        await strategy.wait_idle()
        assert strategy.orders_sent == 1

    async def test_heads_sells_tails_buys(self):
        strategy = CompulsiveStrategy(rng=_coin(0.1, 0.9))
        portfolio = _mock_portfolio()
        first, second = make_tick(price=10.0), make_tick(price=11.0)

        await strategy.on_tick("MacroHard", 4, portfolio, first)
        await strategy.on_tick("MacroHard", 4, portfolio, second)
        await strategy.wait_idle()

        portfolio.sell.assert_awaited_once_with("MCH", 4, first)
        portfolio.buy.assert_awaited_once_with("MCH", 4, second)
        assert strategy.pending_orders == 0

    async def test_on_tick_does_not_wait_for_the_ledger(self):
        gate = asyncio.Event()

        async def slow_buy(*_args):
            await gate.wait()
            return {}

        portfolio = _mock_portfolio()
        portfolio.buy = AsyncMock(side_effect=slow_buy)
        strategy = CompulsiveStrategy(rng=_coin(0.9))

        await asyncio.wait_for(
            strategy.on_tick("MacroHard", 1, portfolio, make_tick()), timeout=0.5
        )
        assert strategy.pending_orders == 1
        gate.set()
        await strategy.wait_idle()
        assert strategy.pending_orders == 0

    async def test_rejected_order_is_logged(self, caplog):
        strategy = CompulsiveStrategy(rng=_coin(0.1))
        ledger = PaperPortfolio(cash=0.0)

        with caplog.at_level(logging.WARNING, logger="compulsive.strategies.compulsive"):
            await strategy.on_tick("MacroHard", 5, ledger, make_tick())
            await strategy.wait_idle()

        assert "D'oh, failed to sell 5 of MacroHard" in caplog.text

    async def test_fills_against_paper_ledger(self, caplog):
        strategy = CompulsiveStrategy(rng=_coin(0.9, 0.1))
        ledger = PaperPortfolio(cash=1_000.0)

        with caplog.at_level(logging.INFO, logger="compulsive.strategies.compulsive"):
            await strategy.on_tick("MacroHard", 2, ledger, make_tick(price=100.0))
            await strategy.wait_idle()
            await strategy.on_tick("MacroHard", 2, ledger, make_tick(price=100.0))
            await strategy.wait_idle()

        assert "Bought 2 of MacroHard!" in caplog.text
        assert "Sold 2 of MacroHard!" in caplog.text
        assert await ledger.positions() == {}

    async def test_close_cancels_pending_orders(self):
        never = asyncio.Event()

        async def hang(*_args):
            await never.wait()

        portfolio = _mock_portfolio()
        portfolio.sell = AsyncMock(side_effect=hang)
        strategy = CompulsiveStrategy(rng=_coin(0.1))
        await strategy.on_tick("MacroHard", 1, portfolio, make_tick())
        assert strategy.pending_orders == 1

        await strategy.close()
        assert strategy.pending_orders == 0


class TestBoundTradingCallback:
    async def test_binds_company_shares_and_portfolio(self):
        seen = []
        portfolio = _mock_portfolio()
        callback = BoundTradingCallback(
            strategy=lambda *args: seen.append(args),
            company="Black Coat",
            share_count=7,
            portfolio=portfolio,
        )
        tick = make_tick(symbol="BCT", name="Black Coat")
        assert callback(tick) is None
        assert seen == [("Black Coat", 7, portfolio, tick)]
        await callback.close()

    async def test_strategy_object_is_awaitable(self):
        strategy = CompulsiveStrategy(rng=_coin(0.9))
        portfolio = _mock_portfolio()
        callback = BoundTradingCallback(strategy, "MacroHard", 1, portfolio)
        await callback(make_tick())
        await strategy.wait_idle()
        portfolio.buy.assert_awaited_once()
        await callback.close()
