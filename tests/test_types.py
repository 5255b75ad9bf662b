"""Tests for core value types and the error taxonomy."""

import random
from datetime import UTC, datetime

import pytest
from pydantic import ValidationError

from compulsive.core.errors import (
    PortfolioCallError,
    RegistryUnavailableError,
    ServiceNotFoundError,
    StrategyError,
    TraderError,
)
from compulsive.core.types import (
    MarketTick,
    ServiceKind,
    ServiceRecord,
    ServiceRequest,
    StartupFailure,
    StartupSuccess,
    TraderConfig,
    pick_trader_config,
)


class TestServiceRequest:
    def test_matches_case_insensitively(self):
        request = ServiceRequest("Portfolio", ServiceKind.RPC_PROXY)
        assert request.matches(ServiceRecord(name="portfolio", kind=ServiceKind.RPC_PROXY))

    def test_kind_must_match(self):
        request = ServiceRequest("portfolio", ServiceKind.RPC_PROXY)
        assert not request.matches(ServiceRecord(name="portfolio", kind=ServiceKind.STREAM_SOURCE))

    def test_down_records_never_match(self):
        request = ServiceRequest("market-data", ServiceKind.STREAM_SOURCE)
        record = ServiceRecord(name="market-data", kind=ServiceKind.STREAM_SOURCE, status="DOWN")
        assert not record.is_up
        assert not request.matches(record)


class TestMarketTick:
    def test_extra_fields_kept(self):
        tick = MarketTick(symbol="MCH", price=1.0, timestamp=datetime.now(UTC), exchange="vert")
        assert tick.model_extra == {"exchange": "vert"}

    def test_empty_symbol_rejected(self):
        with pytest.raises(ValidationError):
            MarketTick(symbol="  ", price=1.0, timestamp=datetime.now(UTC))

    def test_frozen(self):
        tick = MarketTick(symbol="MCH", price=1.0, timestamp=datetime.now(UTC))
        with pytest.raises(ValidationError):
            tick.price = 2.0

    def test_company_falls_back_to_symbol(self):
        tick = MarketTick(symbol="MCH", price=1.0, timestamp=datetime.now(UTC))
        assert tick.company == "MCH"
        named = tick.model_copy(update={"name": "MacroHard"})
        assert named.company == "MacroHard"

    def test_from_quote_uses_mid_price(self):
        tick = MarketTick.from_quote({"symbol": "DVN", "name": "Divinator", "bid": 9.0, "ask": 11.0})
        assert tick.price == pytest.approx(10.0)
        assert tick.company == "Divinator"

    def test_from_quote_single_side(self):
        tick = MarketTick.from_quote({"symbol": "DVN", "ask": 11.0})
        assert tick.price == pytest.approx(11.0)

    def test_from_quote_epoch_millis(self):
        tick = MarketTick.from_quote({"symbol": "BCT", "price": 5.0, "ts": 1_700_000_000_000})
        assert tick.timestamp == datetime.fromtimestamp(1_700_000_000, tz=UTC)

    def test_from_quote_defaults_timestamp(self):
        before = datetime.now(UTC)
        tick = MarketTick.from_quote({"symbol": "BCT", "price": 5.0})
        assert tick.timestamp >= before

    def test_from_quote_without_price_rejected(self):
        with pytest.raises(ValidationError):
            MarketTick.from_quote({"symbol": "BCT"})


class TestTraderConfig:
    def test_share_count_must_be_positive(self):
        with pytest.raises(ValidationError):
            TraderConfig(company="MacroHard", share_count=0)

    def test_company_must_be_non_empty(self):
        with pytest.raises(ValidationError):
            TraderConfig(company="", share_count=1)

    def test_pick_within_bounds(self):
        rng = random.Random(7)
        companies = ["MacroHard", "Divinator", "Black Coat"]
        for _ in range(50):
            config = pick_trader_config(companies, 1, 9, rng)
            assert config.company in companies
            assert 1 <= config.share_count <= 9

    def test_pick_is_reproducible_with_seed(self):
        companies = ["MacroHard", "Divinator", "Black Coat"]
        assert pick_trader_config(companies, rng=random.Random(3)) == pick_trader_config(
            companies, rng=random.Random(3)
        )

    def test_pick_rejects_empty_catalog(self):
        with pytest.raises(ValueError):
            pick_trader_config([])


class TestStartupOutcome:
    def test_success_flag(self):
        assert StartupSuccess().succeeded is True

    def test_failure_carries_cause(self):
        cause = RegistryUnavailableError("down")
        failure = StartupFailure(cause)
        assert failure.succeeded is False
        assert failure.cause is cause


class TestErrors:
    def test_all_errors_share_base(self):
        for exc in (
            RegistryUnavailableError("x"),
            ServiceNotFoundError("x"),
            StrategyError("x"),
            PortfolioCallError("buy", "x"),
        ):
            assert isinstance(exc, TraderError)

    def test_service_not_found_message(self):
        err = ServiceNotFoundError("portfolio", ServiceKind.RPC_PROXY, reason="gone")
        assert str(err) == "No service found for 'portfolio' (rpc-proxy): gone"
        assert err.name == "portfolio"
        assert err.kind is ServiceKind.RPC_PROXY

    def test_portfolio_call_error_message(self):
        err = PortfolioCallError("sell", "timeout")
        assert err.action == "sell"
        assert str(err) == "Portfolio sell failed: timeout"
