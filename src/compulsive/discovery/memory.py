"""In-process service registry."""

from collections.abc import Callable

from compulsive.core.contracts import ServiceHandle, ServiceLocator
from compulsive.core.errors import RegistryUnavailableError, ServiceNotFoundError
from compulsive.core.types import ServiceRecord, ServiceRequest
from compulsive.logging import get_logger

logger = get_logger(__name__)

HandleFactory = Callable[[ServiceRecord], ServiceHandle]


class InMemoryServiceRegistry:
    """Service records kept in a dict, each with a factory building its handle.

    The factory runs once per successful lookup, so every consumer owns the
    handle it gets back.
    """

    def __init__(self) -> None:
        self._entries: dict[str, tuple[ServiceRecord, HandleFactory]] = {}

    def publish(self, record: ServiceRecord, factory: HandleFactory) -> None:
        self._entries[record.name] = (record, factory)
        logger.debug(f"Published service '{record.name}' ({record.kind.value})")

    def unpublish(self, name: str) -> bool:
        return self._entries.pop(name, None) is not None

    def records(self) -> list[ServiceRecord]:
        return [record for record, _ in self._entries.values()]

    def locator(self) -> "InMemoryServiceLocator":
        return InMemoryServiceLocator(self)

    async def connect(self) -> "InMemoryServiceLocator":
        """Registry connector usable as ``TraderController(connect_registry=...)``."""
        return self.locator()

    def _find(self, request: ServiceRequest) -> tuple[ServiceRecord, HandleFactory] | None:
        for record, factory in self._entries.values():
            if request.matches(record):
                return record, factory
        return None


class InMemoryServiceLocator(ServiceLocator):
    """Locator over an ``InMemoryServiceRegistry``."""

    def __init__(self, registry: InMemoryServiceRegistry) -> None:
        self._registry = registry
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    async def lookup(self, request: ServiceRequest) -> ServiceHandle:
        if self._closed:
            raise RegistryUnavailableError("Service locator is closed")
        found = self._registry._find(request)
        if found is None:
            raise ServiceNotFoundError(request.name, request.kind)
        record, factory = found
        return factory(record)

    async def close(self) -> None:
        self._closed = True
