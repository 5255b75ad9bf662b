"""Market stream subscription and the per-tick dispatch loop."""

import asyncio
import inspect
from collections.abc import AsyncIterator, Awaitable, Callable

from compulsive.core.contracts import MarketSourceHandle
from compulsive.core.errors import StrategyError, SubscriptionError
from compulsive.core.types import MarketTick
from compulsive.logging import get_logger
from compulsive.observability.strategy_errors import (
    StrategyErrorTelemetry,
    strategy_error_telemetry,
)

logger = get_logger(__name__)

TickHandler = Callable[[MarketTick], Awaitable[None] | None]


class SubscriptionHandle:
    """Live registration of a tick handler against one market stream.

    A single dispatch task pulls ticks off the stream and hands them to the
    handler one at a time, in arrival order. An async handler is awaited
    before the next tick is pulled, so the handler never runs concurrently
    with itself; a slow handler stalls delivery.

    Exceptions from the handler are wrapped in ``StrategyError``, logged and
    recorded, and dispatch continues with the next tick. Once ``cancel()``
    has returned the handler is never invoked again.
    """

    def __init__(
        self,
        stream: AsyncIterator[MarketTick],
        on_tick: TickHandler,
        *,
        name: str = "market",
        trader_id: str | None = None,
        telemetry: StrategyErrorTelemetry | None = None,
    ) -> None:
        self._stream = stream
        self._on_tick = on_tick
        self._name = name
        self._trader_id = trader_id
        self._telemetry = telemetry or strategy_error_telemetry
        self._cancelled = False
        self._ticks_dispatched = 0
        self._strategy_errors = 0
        self._error: BaseException | None = None
        self._task: asyncio.Task[None] = asyncio.create_task(
            self._dispatch_loop(), name=f"dispatch-{name}"
        )

    @property
    def active(self) -> bool:
        return not self._cancelled and not self._task.done()

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    @property
    def ticks_dispatched(self) -> int:
        return self._ticks_dispatched

    @property
    def strategy_errors(self) -> int:
        return self._strategy_errors

    @property
    def error(self) -> BaseException | None:
        """Exception that terminated the stream itself, if any."""
        return self._error

    async def wait_closed(self) -> None:
        """Wait until the stream ends or the subscription is cancelled."""
        await asyncio.wait({self._task})

    async def cancel(self) -> None:
        """Stop dispatching. Idempotent.

        Called from inside the handler itself, it only marks the subscription
        cancelled; the loop stops before the next tick.
        """
        self._cancelled = True
        current = asyncio.current_task()
        if current is self._task:
            return
        # The caller may already be unwinding from an earlier cancellation.
        cancelling_before = current.cancelling() if current is not None else 0
        if not self._task.done():
            self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            # Only swallow the cancellation we caused ourselves.
            if current is not None and current.cancelling() > cancelling_before:
                raise

    async def _dispatch_loop(self) -> None:
        try:
            async for tick in self._stream:
                if self._cancelled:
                    break
                await self._dispatch(tick)
            else:
                logger.info(f"Market stream '{self._name}' ended")
        except asyncio.CancelledError:
            logger.debug(f"Dispatch loop for '{self._name}' cancelled")
            raise
        except Exception as e:
            self._error = e
            logger.error(f"Market stream '{self._name}' failed: {e}", exc_info=True)
        finally:
            aclose = getattr(self._stream, "aclose", None)
            if aclose is not None:
                try:
                    await aclose()
                except Exception as e:
                    logger.debug(f"Closing stream '{self._name}' raised: {e}")

    async def _dispatch(self, tick: MarketTick) -> None:
        self._ticks_dispatched += 1
        try:
            result = self._on_tick(tick)
            if inspect.isawaitable(result):
                await result
        except Exception as e:
            self._strategy_errors += 1
            error = e if isinstance(e, StrategyError) else StrategyError(
                f"Trading callback failed on {tick.symbol}: {e}", symbol=tick.symbol
            )
            if error is not e:
                error.__cause__ = e
            self._telemetry.record(error, trader_id=self._trader_id, symbol=tick.symbol)
            logger.error(f"{error}", exc_info=(type(e), e, e.__traceback__))


async def subscribe(
    handle: MarketSourceHandle,
    on_tick: TickHandler,
    *,
    trader_id: str | None = None,
    telemetry: StrategyErrorTelemetry | None = None,
) -> SubscriptionHandle:
    """Open ``handle``'s stream and start dispatching its ticks to ``on_tick``.

    Raises:
        SubscriptionError: the handle could not produce a live stream.
    """
    if handle.released:
        raise SubscriptionError(f"Market source {handle.record.name!r} was already released")
    try:
        stream = await handle.open_stream()
    except SubscriptionError:
        raise
    except Exception as e:
        raise SubscriptionError(
            f"Could not open market stream {handle.record.name!r}: {e}"
        ) from e

    subscription = SubscriptionHandle(
        stream,
        on_tick,
        name=handle.record.name,
        trader_id=trader_id,
        telemetry=telemetry,
    )
    logger.info(f"Subscribed to market stream '{handle.record.name}'")
    return subscription
