"""Error taxonomy for trader startup and steady-state operation.

Startup errors (``RegistryUnavailableError``, ``ServiceNotFoundError``,
``SubscriptionError``, ``StartupCancelledError``) are never raised to the code
that starts a trader; they travel inside ``StartupFailure``. ``StrategyError``
is recovered at the dispatch boundary and only ever reaches logs and telemetry.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from compulsive.core.types import ServiceKind


class TraderError(Exception):
    """Base class for every error raised by this package."""


class RegistryUnavailableError(TraderError):
    """The service registry (and therefore the locator) could not be obtained."""


class ServiceNotFoundError(TraderError):
    """No registered service matches a requested name and kind."""

    def __init__(self, name: str, kind: ServiceKind | None = None, reason: str | None = None) -> None:
        self.name = name
        self.kind = kind
        self.reason = reason
        message = f"No service found for {name!r}"
        if kind is not None:
            message += f" ({kind.value})"
        if reason:
            message += f": {reason}"
        super().__init__(message)


class SubscriptionError(TraderError):
    """A resolved market source could not be turned into a live stream."""


class StrategyError(TraderError):
    """Raised by (or on behalf of) a trading callback while processing a tick."""

    def __init__(self, message: str, *, symbol: str | None = None) -> None:
        self.symbol = symbol
        super().__init__(message)


class StartupCancelledError(TraderError):
    """The trader was stopped before startup finished."""


class PortfolioCallError(TraderError):
    """A remote call to the portfolio ledger failed or timed out."""

    def __init__(self, action: str, message: str) -> None:
        self.action = action
        super().__init__(f"Portfolio {action} failed: {message}")
