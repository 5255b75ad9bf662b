"""Value types shared by the trader core."""

import random
from collections.abc import Sequence
from dataclasses import dataclass
from datetime import UTC, datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator


class ServiceKind(str, Enum):
    """Kind of capability a registry record exposes."""

    RPC_PROXY = "rpc-proxy"
    STREAM_SOURCE = "stream-source"


class ServiceRecord(BaseModel):
    """A service as published in the registry."""

    name: str
    kind: ServiceKind
    location: dict[str, Any] = Field(default_factory=dict)
    metadata: dict[str, Any] = Field(default_factory=dict)
    status: str = "UP"

    @property
    def is_up(self) -> bool:
        return self.status.upper() == "UP"


@dataclass(frozen=True)
class ServiceRequest:
    """Typed capability request: which service, and what kind of handle."""

    name: str
    kind: ServiceKind

    def matches(self, record: ServiceRecord) -> bool:
        """Case-insensitive name match on a live record of the same kind."""
        return (
            record.is_up
            and record.kind == self.kind
            and record.name.casefold() == self.name.casefold()
        )


class MarketTick(BaseModel):
    """One market-data event for a symbol.

    Unknown fields from the feed are kept as-is for the strategy.
    """

    model_config = ConfigDict(frozen=True, extra="allow")

    symbol: str
    price: float
    timestamp: datetime
    name: str | None = None
    bid: float | None = None
    ask: float | None = None
    volume: float | None = None

    @field_validator("symbol")
    @classmethod
    def validate_symbol(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("symbol must not be empty")
        return v

    @property
    def company(self) -> str:
        """Company display name, falling back to the ticker symbol."""
        return self.name or self.symbol

    @classmethod
    def from_quote(cls, quote: dict[str, Any]) -> "MarketTick":
        """Build a tick from a raw exchange quote.

        ``price`` falls back to the bid/ask midpoint, then to whichever side is
        present. ``ts`` is epoch milliseconds; ``timestamp`` may be an ISO
        string or epoch seconds. Missing times default to now (UTC).
        """
        payload = dict(quote)
        if payload.get("price") is None:
            bid, ask = payload.get("bid"), payload.get("ask")
            if bid is not None and ask is not None:
                payload["price"] = (float(bid) + float(ask)) / 2
            elif bid is not None or ask is not None:
                payload["price"] = bid if bid is not None else ask

        if payload.get("timestamp") is None:
            ts = payload.pop("ts", None)
            if ts is not None:
                payload["timestamp"] = datetime.fromtimestamp(float(ts) / 1000, tz=UTC)
            else:
                payload["timestamp"] = datetime.now(UTC)
        return cls.model_validate(payload)


class TraderConfig(BaseModel):
    """Which company a trader trades, and how many shares per order."""

    model_config = ConfigDict(frozen=True)

    company: str = Field(min_length=1)
    share_count: int = Field(gt=0)


def pick_trader_config(
    companies: Sequence[str],
    min_shares: int = 1,
    max_shares: int = 9,
    rng: random.Random | None = None,
) -> TraderConfig:
    """Pick a random company from the catalog and a random share count."""
    if not companies:
        raise ValueError("companies must not be empty")
    rng = rng or random.Random()
    return TraderConfig(
        company=rng.choice(list(companies)),
        share_count=rng.randint(min_shares, max_shares),
    )


class TraderState(str, Enum):
    """Lifecycle states of a trader."""

    IDLE = "idle"
    LOCATING_REGISTRY = "locating_registry"
    RESOLVING_DEPENDENCIES = "resolving_dependencies"
    JOINING = "joining"
    SUBSCRIBING = "subscribing"
    RUNNING = "running"
    FAILED = "failed"
    STOPPED = "stopped"


@dataclass(frozen=True)
class StartupSuccess:
    """The trader reached RUNNING."""

    succeeded = True


@dataclass(frozen=True)
class StartupFailure:
    """Startup halted; ``cause`` is the first real failure observed."""

    cause: BaseException
    succeeded = False


StartupOutcome = StartupSuccess | StartupFailure
