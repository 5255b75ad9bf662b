"""Observability module -- strategy error telemetry."""

from .strategy_errors import StrategyErrorTelemetry, strategy_error_telemetry

__all__ = [
    "StrategyErrorTelemetry",
    "strategy_error_telemetry",
]
