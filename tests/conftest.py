"""Shared test fixtures."""

import pytest
from helpers import ScriptedLocator

from compulsive.config import TraderSettings
from compulsive.discovery.memory import InMemoryServiceRegistry
from compulsive.market.memory import InMemoryMarketSource
from compulsive.observability.strategy_errors import strategy_error_telemetry
from compulsive.portfolio.paper import PaperPortfolio


@pytest.fixture(autouse=True)
def _reset_strategy_error_telemetry():
    """Clear the module-level telemetry singleton between tests."""
    strategy_error_telemetry.reset()
    yield
    strategy_error_telemetry.reset()


@pytest.fixture
def trader_settings() -> TraderSettings:
    return TraderSettings(
        redis_url="redis://localhost:6379/0",
        companies=["MacroHard", "Divinator", "Black Coat"],
        min_shares=1,
        max_shares=9,
    )


@pytest.fixture
def scripted_locator() -> ScriptedLocator:
    return ScriptedLocator()


@pytest.fixture
def market() -> InMemoryMarketSource:
    return InMemoryMarketSource(name="market-data")


@pytest.fixture
def portfolio() -> PaperPortfolio:
    return PaperPortfolio(cash=10_000.0, name="portfolio")


@pytest.fixture
def registry(market: InMemoryMarketSource, portfolio: PaperPortfolio) -> InMemoryServiceRegistry:
    reg = InMemoryServiceRegistry()
    reg.publish(portfolio.record, lambda _record: portfolio)
    reg.publish(market.record, lambda _record: market)
    return reg
