"""Single-fire startup completion signal."""

import asyncio
from collections.abc import Callable, Generator
from typing import Any

from compulsive.core.types import StartupFailure, StartupOutcome, StartupSuccess
from compulsive.logging import get_logger

logger = get_logger(__name__)

OutcomeListener = Callable[[StartupOutcome], Any]


class StartupSignal:
    """Carries a trader's startup outcome to whoever started it.

    The first ``complete()`` wins; later calls are ignored and return ``False``.
    Observers can ``await`` the signal or register listeners, which are called
    once with the outcome (immediately if it already fired).
    """

    def __init__(self) -> None:
        self._outcome: StartupOutcome | None = None
        self._fired = asyncio.Event()
        self._listeners: list[OutcomeListener] = []

    @property
    def fired(self) -> bool:
        return self._outcome is not None

    @property
    def outcome(self) -> StartupOutcome | None:
        return self._outcome

    def complete(self, outcome: StartupOutcome) -> bool:
        """Fire the signal. Returns ``False`` if it had already fired."""
        if self._outcome is not None:
            logger.debug("Ignoring late startup outcome %r", outcome)
            return False
        self._outcome = outcome
        self._fired.set()
        listeners, self._listeners = self._listeners, []
        for listener in listeners:
            self._notify(listener, outcome)
        return True

    def succeed(self) -> bool:
        return self.complete(StartupSuccess())

    def fail(self, cause: BaseException) -> bool:
        return self.complete(StartupFailure(cause))

    def add_listener(self, listener: OutcomeListener) -> None:
        if self._outcome is not None:
            self._notify(listener, self._outcome)
        else:
            self._listeners.append(listener)

    async def wait(self) -> StartupOutcome:
        await self._fired.wait()
        assert self._outcome is not None
        return self._outcome

    def __await__(self) -> Generator[Any, None, StartupOutcome]:
        return self.wait().__await__()

    @staticmethod
    def _notify(listener: OutcomeListener, outcome: StartupOutcome) -> None:
        try:
            listener(outcome)
        except Exception as e:
            logger.error(f"Startup listener {listener!r} raised: {e}", exc_info=True)
