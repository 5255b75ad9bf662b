"""All-or-nothing join over independent asynchronous resolutions."""

import asyncio
import inspect
from collections.abc import Awaitable, Callable
from typing import Any

from compulsive.logging import get_logger

logger = get_logger(__name__)

DiscardHook = Callable[[Any], Awaitable[None] | None]


def _is_failure(task: asyncio.Future[Any]) -> bool:
    return task.done() and (task.cancelled() or task.exception() is not None)


class ReadinessJoin:
    """Wait on a fixed set of resolutions; succeed only if every one succeeds.

    All inputs are scheduled as soon as the join is built, so their latencies
    overlap. ``wait()`` returns every result, in input order, once all inputs
    have succeeded. The first input to fail (in completion order) ends the
    join with that input's exception; the other inputs are cancelled when
    ``cancel_pending`` is set and their outcomes are ignored. An input
    cancelled from outside counts as a failure and ends the join at once
    with ``CancelledError``.

    A successful result that the join drops (it completed before the failure,
    or it straggled in afterwards) is handed to ``discard`` so that resources
    such as service handles can be released.

    Usage::

        portfolio, market = await ReadinessJoin(
            locator.lookup(portfolio_request),
            locator.lookup(market_request),
            discard=release_handle,
        ).wait()
    """

    def __init__(
        self,
        *aws: Awaitable[Any],
        cancel_pending: bool = True,
        discard: DiscardHook | None = None,
    ) -> None:
        if not aws:
            raise ValueError("ReadinessJoin needs at least one awaitable")
        self._cancel_pending = cancel_pending
        self._discard = discard
        # Resolved by the first failed input, or once every input succeeded.
        self._settled: asyncio.Future[None] = asyncio.get_running_loop().create_future()
        self._tasks: list[asyncio.Future[Any]] = [asyncio.ensure_future(aw) for aw in aws]
        self._completion_order: list[asyncio.Future[Any]] = []
        self._abandoned = False
        self._reaped: set[asyncio.Future[Any]] = set()
        self._background: set[asyncio.Task[None]] = set()
        for task in self._tasks:
            task.add_done_callback(self._on_done)

    @property
    def tasks(self) -> tuple[asyncio.Future[Any], ...]:
        return tuple(self._tasks)

    async def wait(self) -> tuple[Any, ...]:
        try:
            await self._settled
        except asyncio.CancelledError:
            self._abandon()
            raise

        failed = self._first_failure()
        if failed is None:
            return tuple(task.result() for task in self._tasks)

        self._abandon()
        if self._background:
            # Release what the join already holds before reporting the failure.
            await asyncio.gather(*self._background, return_exceptions=True)
        if failed.cancelled():
            # An input was cancelled by someone else: propagate as cancellation.
            raise asyncio.CancelledError()
        cause = failed.exception()
        assert cause is not None
        logger.debug(
            "Readiness join failed on input %d of %d: %r",
            self._tasks.index(failed) + 1,
            len(self._tasks),
            cause,
        )
        raise cause

    def _first_failure(self) -> asyncio.Future[Any] | None:
        for task in self._completion_order:
            if _is_failure(task):
                return task
        # Done-callbacks of the last tasks to finish may still be queued.
        for task in self._tasks:
            if _is_failure(task):
                return task
        return None

    def _on_done(self, task: asyncio.Future[Any]) -> None:
        self._completion_order.append(task)
        if self._abandoned:
            self._reap(task)
            return
        if self._settled.done():
            return
        if _is_failure(task) or all(t.done() for t in self._tasks):
            self._settled.set_result(None)

    def _abandon(self) -> None:
        self._abandoned = True
        for task in self._tasks:
            if task.done():
                self._reap(task)
            elif self._cancel_pending:
                task.cancel()

    def _reap(self, task: asyncio.Future[Any]) -> None:
        if task in self._reaped:
            return
        self._reaped.add(task)
        if task.cancelled():
            return
        # Retrieving the exception keeps asyncio from reporting it as unhandled.
        if task.exception() is not None:
            return
        if self._discard is not None:
            self._run_discard(task.result())

    def _run_discard(self, value: Any) -> None:
        assert self._discard is not None
        try:
            result = self._discard(value)
        except Exception as e:
            logger.error(f"Discarding {value!r} failed: {e}", exc_info=True)
            return
        if inspect.isawaitable(result):
            bg = asyncio.ensure_future(result)
            self._background.add(bg)
            bg.add_done_callback(self._on_discard_done)

    def _on_discard_done(self, task: asyncio.Task[None]) -> None:
        self._background.discard(task)
        if not task.cancelled() and task.exception() is not None:
            logger.error("Discard hook failed: %r", task.exception())


async def join_all(
    *aws: Awaitable[Any],
    cancel_pending: bool = True,
    discard: DiscardHook | None = None,
) -> tuple[Any, ...]:
    """Shortcut for ``await ReadinessJoin(*aws, ...).wait()``."""
    return await ReadinessJoin(*aws, cancel_pending=cancel_pending, discard=discard).wait()
