"""Tests for the in-process registry, locator and market source."""

import pytest
from helpers import make_tick

from compulsive.core.errors import RegistryUnavailableError, ServiceNotFoundError
from compulsive.core.types import ServiceKind, ServiceRecord, ServiceRequest
from compulsive.discovery.memory import InMemoryServiceRegistry
from compulsive.market.memory import InMemoryMarketSource
from compulsive.portfolio.paper import PaperPortfolio


class TestInMemoryRegistry:
    async def test_lookup_builds_handle_per_call(self):
        registry = InMemoryServiceRegistry()
        record = ServiceRecord(name="portfolio", kind=ServiceKind.RPC_PROXY)
        registry.publish(record, lambda r: PaperPortfolio(record=r))

        locator = await registry.connect()
        request = ServiceRequest("PORTFOLIO", ServiceKind.RPC_PROXY)
        first = await locator.lookup(request)
        second = await locator.lookup(request)
        assert isinstance(first, PaperPortfolio)
        assert first is not second
        assert first.record is record

    async def test_lookup_miss(self, registry):
        locator = registry.locator()
        with pytest.raises(ServiceNotFoundError) as info:
            await locator.lookup(ServiceRequest("portfolio", ServiceKind.STREAM_SOURCE))
        assert info.value.kind is ServiceKind.STREAM_SOURCE

    async def test_down_record_not_found(self):
        registry = InMemoryServiceRegistry()
        record = ServiceRecord(name="portfolio", kind=ServiceKind.RPC_PROXY, status="DOWN")
        registry.publish(record, lambda r: PaperPortfolio(record=r))
        with pytest.raises(ServiceNotFoundError):
            await registry.locator().lookup(ServiceRequest("portfolio", ServiceKind.RPC_PROXY))

    async def test_unpublish(self, registry):
        assert registry.unpublish("portfolio") is True
        assert registry.unpublish("portfolio") is False
        assert [r.name for r in registry.records()] == ["market-data"]

    async def test_closed_locator_is_unavailable(self, registry):
        locator = registry.locator()
        await locator.close()
        assert locator.closed
        with pytest.raises(RegistryUnavailableError):
            await locator.lookup(ServiceRequest("portfolio", ServiceKind.RPC_PROXY))


class TestInMemoryMarketSource:
    async def test_fan_out_to_every_stream(self):
        source = InMemoryMarketSource()
        first = await source.open_stream()
        second = await source.open_stream()
        tick = make_tick()
        assert source.publish(tick) == 2
        assert await first.__anext__() is tick
        assert await second.__anext__() is tick
        await first.aclose()
        await second.aclose()
        assert source.subscriber_count == 0

    async def test_end_finishes_streams(self):
        source = InMemoryMarketSource()
        stream = await source.open_stream()
        source.publish(make_tick(price=1.0))
        source.end()
        assert [tick.price async for tick in stream] == [1.0]
        assert source.publish(make_tick()) == 0

    async def test_release_ends_source(self):
        source = InMemoryMarketSource()
        await source.release()
        assert source.ended
