"""Strategy error telemetry - where failing trading callbacks are reported.

A strategy that raises never stops the dispatch loop; the error is recorded
here instead so that recurring failures stay visible:
- Total and per-trader / per-symbol error counts
- Recent error history for debugging
"""

from __future__ import annotations

from collections import defaultdict, deque
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any

from compulsive.logging import get_logger

logger = get_logger(__name__)


@dataclass
class StrategyErrorEvent:
    """A single failed tick dispatch."""

    timestamp: datetime
    trader_id: str | None
    symbol: str | None
    error_type: str
    message: str
    details: dict[str, Any] = field(default_factory=dict)


class StrategyErrorTelemetry:
    """Counts and remembers strategy errors raised during tick dispatch."""

    def __init__(self, history_size: int = 500) -> None:
        """Initialize the telemetry sink.

        Args:
            history_size: Maximum number of recent errors to keep
        """
        self._recent: deque[StrategyErrorEvent] = deque(maxlen=history_size)
        self._total = 0
        self._by_trader: defaultdict[str, int] = defaultdict(int)
        self._by_symbol: defaultdict[str, int] = defaultdict(int)
        self._by_type: defaultdict[str, int] = defaultdict(int)

    def record(
        self,
        error: BaseException,
        trader_id: str | None = None,
        symbol: str | None = None,
        details: dict[str, Any] | None = None,
    ) -> StrategyErrorEvent:
        """Record a strategy error.

        The reported type is that of the underlying cause when ``error`` wraps
        one, so ``StrategyError`` wrappers do not hide what actually failed.
        """
        root = error.__cause__ or error
        event = StrategyErrorEvent(
            timestamp=datetime.now(UTC),
            trader_id=trader_id,
            symbol=symbol,
            error_type=type(root).__name__,
            message=str(root),
            details=details or {},
        )
        self._recent.append(event)
        self._total += 1
        self._by_type[event.error_type] += 1
        if trader_id:
            self._by_trader[trader_id] += 1
        if symbol:
            self._by_symbol[symbol] += 1

        logger.debug(
            f"[STRATEGY TELEMETRY] {event.error_type}: trader={trader_id}, symbol={symbol}"
        )
        return event

    @property
    def total(self) -> int:
        return self._total

    def count_for_trader(self, trader_id: str) -> int:
        return self._by_trader.get(trader_id, 0)

    def recent(self, limit: int = 50) -> list[StrategyErrorEvent]:
        return list(self._recent)[-limit:]

    def snapshot(self) -> dict[str, Any]:
        """Summary suitable for a health endpoint or a periodic log line."""
        return {
            "total": self._total,
            "by_trader": dict(self._by_trader),
            "by_symbol": dict(self._by_symbol),
            "by_type": dict(self._by_type),
        }

    def reset(self) -> None:
        self._recent.clear()
        self._total = 0
        self._by_trader.clear()
        self._by_symbol.clear()
        self._by_type.clear()


# Global telemetry instance
strategy_error_telemetry = StrategyErrorTelemetry()
