"""Trader lifecycle: discovery, parallel resolution, join, subscribe.

::

    IDLE -> LOCATING_REGISTRY -> RESOLVING_DEPENDENCIES -> JOINING
         -> SUBSCRIBING -> RUNNING -> STOPPED

Any state before RUNNING may fall into FAILED. The startup outcome is reported
exactly once through ``TraderController.startup``; nothing is retried here.
"""

import asyncio
import random
import uuid
from collections.abc import Awaitable, Callable
from typing import Any, TypeVar

from compulsive.config import TraderSettings, settings as default_settings
from compulsive.core.completion import StartupSignal
from compulsive.core.contracts import (
    MarketSourceHandle,
    PortfolioHandle,
    ServiceHandle,
    ServiceLocator,
)
from compulsive.core.errors import (
    RegistryUnavailableError,
    ServiceNotFoundError,
    StartupCancelledError,
    TraderError,
)
from compulsive.core.join import ReadinessJoin
from compulsive.core.subscription import SubscriptionHandle, subscribe
from compulsive.core.types import (
    ServiceKind,
    ServiceRequest,
    StartupOutcome,
    TraderConfig,
    TraderState,
    pick_trader_config,
)
from compulsive.logging import get_logger, log_exception, set_trader_context
from compulsive.observability.strategy_errors import StrategyErrorTelemetry
from compulsive.strategies.base import BoundTradingCallback, TradingCallbackFn, TradingStrategy

logger = get_logger(__name__)

RegistryConnector = Callable[[], Awaitable[ServiceLocator]]

H = TypeVar("H", bound=ServiceHandle)

_ALLOWED_TRANSITIONS: dict[TraderState, frozenset[TraderState]] = {
    TraderState.IDLE: frozenset({TraderState.LOCATING_REGISTRY, TraderState.FAILED}),
    TraderState.LOCATING_REGISTRY: frozenset(
        {TraderState.RESOLVING_DEPENDENCIES, TraderState.FAILED}
    ),
    TraderState.RESOLVING_DEPENDENCIES: frozenset({TraderState.JOINING, TraderState.FAILED}),
    TraderState.JOINING: frozenset({TraderState.SUBSCRIBING, TraderState.FAILED}),
    TraderState.SUBSCRIBING: frozenset({TraderState.RUNNING, TraderState.FAILED}),
    TraderState.RUNNING: frozenset({TraderState.STOPPED}),
    TraderState.FAILED: frozenset(),
    TraderState.STOPPED: frozenset(),
}


class TraderController:
    """Drives one trader from discovery to a live tick subscription.

    Args:
        connect_registry: coroutine factory returning the service locator.
        strategy: trading callback, either a ``TradingStrategy`` or a plain
            ``(company, share_count, portfolio, tick)`` callable.
        config: company and share count; picked at random from the settings'
            catalog when omitted.
        settings: service names and catalog; defaults to the global settings.
        trader_id: identifier used in logs and telemetry.
        telemetry: sink for strategy errors; defaults to the global one.
        rng: random source for picking the config.
    """

    def __init__(
        self,
        connect_registry: RegistryConnector,
        strategy: TradingStrategy | TradingCallbackFn,
        *,
        config: TraderConfig | None = None,
        settings: TraderSettings | None = None,
        trader_id: str | None = None,
        telemetry: StrategyErrorTelemetry | None = None,
        rng: random.Random | None = None,
    ) -> None:
        self._settings = settings or default_settings
        self._config = config or pick_trader_config(
            self._settings.companies,
            self._settings.min_shares,
            self._settings.max_shares,
            rng,
        )
        self._connect_registry = connect_registry
        self._strategy = strategy
        self._telemetry = telemetry
        self.trader_id = trader_id or uuid.uuid4().hex[:8]

        self._portfolio_request = ServiceRequest(
            self._settings.portfolio_service_name, ServiceKind.RPC_PROXY
        )
        self._market_request = ServiceRequest(
            self._settings.market_service_name, ServiceKind.STREAM_SOURCE
        )

        self._state = TraderState.IDLE
        self._history: list[TraderState] = [TraderState.IDLE]
        self.startup = StartupSignal()
        self._inert = asyncio.Event()

        self._startup_task: asyncio.Task[None] | None = None
        self._locator: ServiceLocator | None = None
        self._portfolio: PortfolioHandle | None = None
        self._market: MarketSourceHandle | None = None
        self._callback: BoundTradingCallback | None = None
        self._subscription: SubscriptionHandle | None = None

    # ------------------------------------------------------------------
    # Introspection
    # ------------------------------------------------------------------

    @property
    def config(self) -> TraderConfig:
        return self._config

    @property
    def state(self) -> TraderState:
        return self._state

    @property
    def state_history(self) -> tuple[TraderState, ...]:
        return tuple(self._history)

    @property
    def running(self) -> bool:
        return self._state is TraderState.RUNNING

    @property
    def portfolio(self) -> PortfolioHandle | None:
        return self._portfolio

    @property
    def market_source(self) -> MarketSourceHandle | None:
        return self._market

    @property
    def subscription(self) -> SubscriptionHandle | None:
        return self._subscription

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def start(self) -> StartupOutcome:
        """Start the trader and wait for its startup outcome.

        Never raises for startup failures: they come back as
        ``StartupFailure``. The same outcome is delivered to ``startup``.
        """
        if self._state is not TraderState.IDLE:
            raise RuntimeError(f"Trader {self.trader_id} already started ({self._state.value})")

        self._transition(TraderState.LOCATING_REGISTRY)
        self._startup_task = asyncio.create_task(
            self._run_startup(), name=f"trader-{self.trader_id}-startup"
        )
        try:
            return await self.startup.wait()
        except asyncio.CancelledError:
            self._startup_task.cancel()
            raise

    async def stop(self) -> None:
        """Shut the trader down from any state. Idempotent.

        Before RUNNING this cancels the pending lookups and reports
        ``StartupCancelledError``. Once it returns, the strategy is never
        invoked again and every handle has been released.
        """
        if self._state in (TraderState.FAILED, TraderState.STOPPED):
            await self._inert.wait()
            return

        if self._state is TraderState.IDLE:
            self._transition(TraderState.FAILED)
            self.startup.fail(StartupCancelledError("Trader stopped before it was started"))
            self._inert.set()
            return

        if self._state is not TraderState.RUNNING:
            task = self._startup_task
            assert task is not None
            if task.cancelling() == 0:
                task.cancel()
            await asyncio.wait({task})
            if not self.startup.fired:
                # Cancelled before the startup task got to run.
                await self._abort(StartupCancelledError("Trader stopped during startup"))
            await self._inert.wait()
            return

        logger.info(f"Stopping trader {self.trader_id}")
        self._transition(TraderState.STOPPED)
        await self._teardown()
        logger.info(f"Trader {self.trader_id} stopped")

    async def wait_closed(self) -> None:
        """Wait until the market stream ends or the trader is shut down."""
        if self._subscription is not None:
            await self._subscription.wait_closed()
        else:
            await self._inert.wait()

    # ------------------------------------------------------------------
    # Startup sequence
    # ------------------------------------------------------------------

    async def _run_startup(self) -> None:
        set_trader_context(trader_id=self.trader_id, symbol=self._config.company)
        logger.info(
            f"Compulsive trader configured for company {self._config.company} "
            f"and shares {self._config.share_count}"
        )
        try:
            await self._startup_sequence()
        except asyncio.CancelledError:
            await self._abort(StartupCancelledError("Trader stopped during startup"))
        except TraderError as e:
            await self._abort(e)
        except Exception as e:
            log_exception(logger, e, {"trader_id": self.trader_id, "state": self._state.value})
            await self._abort(e)

    async def _startup_sequence(self) -> None:
        self._locator = await self._obtain_locator()

        self._transition(TraderState.RESOLVING_DEPENDENCIES)
        join = ReadinessJoin(
            self._lookup(self._locator, self._portfolio_request, PortfolioHandle),
            self._lookup(self._locator, self._market_request, MarketSourceHandle),
            discard=self._release_quietly,
        )

        self._transition(TraderState.JOINING)
        self._portfolio, self._market = await join.wait()

        self._transition(TraderState.SUBSCRIBING)
        callback = BoundTradingCallback(
            strategy=self._strategy,
            company=self._config.company,
            share_count=self._config.share_count,
            portfolio=self._portfolio,
        )
        self._subscription = await subscribe(
            self._market,
            callback,
            trader_id=self.trader_id,
            telemetry=self._telemetry,
        )
        self._callback = callback

        self._transition(TraderState.RUNNING)
        self.startup.succeed()
        logger.info(f"Trader {self.trader_id} running")

    async def _obtain_locator(self) -> ServiceLocator:
        try:
            return await self._connect_registry()
        except TraderError:
            raise
        except Exception as e:
            raise RegistryUnavailableError(f"Service registry unavailable: {e}") from e

    async def _lookup(
        self, locator: ServiceLocator, request: ServiceRequest, expected: type[H]
    ) -> H:
        handle = await locator.lookup(request)
        if not isinstance(handle, expected):
            await self._release_quietly(handle)
            raise ServiceNotFoundError(
                request.name,
                request.kind,
                reason=f"resolved to {type(handle).__name__}, expected {expected.__name__}",
            )
        logger.info(f"Resolved service '{request.name}' ({request.kind.value})")
        return handle

    async def _abort(self, cause: BaseException) -> None:
        if self._state not in (TraderState.FAILED, TraderState.STOPPED):
            self._transition(TraderState.FAILED)
        await self._teardown()
        if self.startup.fail(cause):
            logger.error(f"Trader {self.trader_id} failed to start: {cause!r}")

    async def _teardown(self) -> None:
        # Every step runs even if the caller is cancelled part way through.
        try:
            subscription, self._subscription = self._subscription, None
            if subscription is not None:
                await subscription.cancel()

            callback, self._callback = self._callback, None
            if callback is not None:
                try:
                    await callback.close()
                except Exception as e:
                    logger.warning(f"Strategy close failed: {e}")
        finally:
            try:
                await self._release_resources()
            finally:
                self._inert.set()

    async def _release_resources(self) -> None:
        market, self._market = self._market, None
        portfolio, self._portfolio = self._portfolio, None
        try:
            for handle in (market, portfolio):
                if handle is not None:
                    await self._release_quietly(handle)
        finally:
            locator, self._locator = self._locator, None
            if locator is not None:
                try:
                    await locator.close()
                except Exception as e:
                    logger.warning(f"Closing service locator failed: {e}")

    @staticmethod
    async def _release_quietly(handle: Any) -> None:
        if not isinstance(handle, ServiceHandle):
            return
        try:
            await handle.release()
        except Exception as e:
            logger.warning(f"Releasing {handle!r} failed: {e}")

    def _transition(self, new_state: TraderState) -> None:
        if new_state not in _ALLOWED_TRANSITIONS[self._state]:
            raise RuntimeError(
                f"Illegal trader transition {self._state.value} -> {new_state.value}"
            )
        logger.debug(f"Trader {self.trader_id}: {self._state.value} -> {new_state.value}")
        self._state = new_state
        self._history.append(new_state)
