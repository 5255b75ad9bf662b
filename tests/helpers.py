"""Test doubles and polling helpers shared across test modules."""

import asyncio
from collections.abc import Callable
from datetime import UTC, datetime

from compulsive.core.contracts import ServiceHandle, ServiceLocator
from compulsive.core.types import MarketTick, ServiceRequest


class ScriptedLocator(ServiceLocator):
    """Locator whose lookups stay pending until the test settles them.

    Lookups wait on a shielded future, so a cancelled lookup leaves the future
    open and the test can still "answer" it late, like a straggling registry.
    """

    def __init__(self) -> None:
        self.requests: list[ServiceRequest] = []
        self.closed = False
        self._answers: dict[str, asyncio.Future[ServiceHandle]] = {}
        self._started: dict[str, asyncio.Event] = {}

    def _answer(self, name: str) -> asyncio.Future[ServiceHandle]:
        if name not in self._answers:
            self._answers[name] = asyncio.get_running_loop().create_future()
        return self._answers[name]

    def _started_event(self, name: str) -> asyncio.Event:
        return self._started.setdefault(name, asyncio.Event())

    async def lookup(self, request: ServiceRequest) -> ServiceHandle:
        self.requests.append(request)
        answer = self._answer(request.name)
        self._started_event(request.name).set()
        return await asyncio.shield(answer)

    async def wait_started(self, *names: str) -> None:
        for name in names:
            await asyncio.wait_for(self._started_event(name).wait(), timeout=1.0)

    def resolve(self, name: str, handle: ServiceHandle) -> None:
        answer = self._answer(name)
        if not answer.done():
            answer.set_result(handle)

    def fail(self, name: str, error: BaseException) -> None:
        answer = self._answer(name)
        if not answer.done():
            answer.set_exception(error)

    def is_settled(self, name: str) -> bool:
        return name in self._answers and self._answers[name].done()

    async def close(self) -> None:
        self.closed = True


def make_tick(
    symbol: str = "MCH",
    price: float = 100.0,
    name: str | None = "MacroHard",
    **extra: object,
) -> MarketTick:
    return MarketTick(
        symbol=symbol,
        name=name,
        price=price,
        bid=price - 0.5,
        ask=price + 0.5,
        timestamp=datetime.now(UTC),
        **extra,
    )


async def wait_until(predicate: Callable[[], bool], timeout: float = 1.0) -> None:
    """Poll ``predicate`` on the event loop until it holds."""
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("condition not met before timeout")
        await asyncio.sleep(0.001)
