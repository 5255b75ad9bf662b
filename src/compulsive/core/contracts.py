"""Core contracts consumed by the trader.

These abstract base classes describe the external collaborators the trader
depends on: the service locator, the portfolio ledger, and the market-data
source. Concrete transports (Redis, in-memory) live in ``compulsive.discovery``,
``compulsive.portfolio`` and ``compulsive.market``; the state machine in
``compulsive.core.trader`` depends only on what is declared here.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import AsyncIterator
from typing import Any

from compulsive.core.types import MarketTick, ServiceRecord, ServiceRequest


class ServiceHandle(ABC):
    """Opaque reference to a resolved remote capability.

    A handle is owned by whoever resolved it and must be released exactly
    once when no longer needed. ``release()`` is idempotent.
    """

    def __init__(self, record: ServiceRecord) -> None:
        self.record = record
        self._released = False

    @property
    def released(self) -> bool:
        return self._released

    async def release(self) -> None:
        """Free any resources bound to this handle."""
        if self._released:
            return
        self._released = True
        await self._on_release()

    async def _on_release(self) -> None:
        """Hook for subclasses holding connections or subscriptions."""

    def __repr__(self) -> str:
        return f"{type(self).__name__}(name={self.record.name!r})"


class PortfolioHandle(ServiceHandle):
    """Remote proxy to the portfolio ledger.

    Call semantics (fills, cash checks, rejections) belong to the ledger; a
    failed call raises ``PortfolioCallError``.
    """

    @abstractmethod
    async def buy(self, symbol: str, quantity: int, quote: MarketTick | None = None) -> dict[str, Any]:
        """Buy ``quantity`` shares of ``symbol``. Returns the ledger's portfolio view."""

    @abstractmethod
    async def sell(self, symbol: str, quantity: int, quote: MarketTick | None = None) -> dict[str, Any]:
        """Sell ``quantity`` shares of ``symbol``. Returns the ledger's portfolio view."""

    @abstractmethod
    async def positions(self) -> dict[str, int]:
        """Current share count per symbol."""


class MarketSourceHandle(ServiceHandle):
    """A resolved market-data source."""

    @abstractmethod
    async def open_stream(self) -> AsyncIterator[MarketTick]:
        """Open a live, unbounded stream of ticks.

        The returned iterator yields ticks in source order, starting from the
        moment it is opened (no replay). It ends when the source ends. Raises
        ``SubscriptionError`` if the stream cannot be opened.
        """


class ServiceLocator(ABC):
    """Resolves capability requests against a service registry."""

    @abstractmethod
    async def lookup(self, request: ServiceRequest) -> ServiceHandle:
        """Resolve ``request`` to exactly one handle.

        Completes exactly once: either returns a handle or raises
        (``ServiceNotFoundError`` when nothing matches). Any timeout policy
        is the locator's own.
        """

    async def close(self) -> None:
        """Release the locator's connection to the registry."""
