"""Trading strategies pluggable into a trader."""

from .base import BoundTradingCallback, TradingCallbackFn, TradingStrategy
from .compulsive import CompulsiveStrategy

__all__ = [
    "BoundTradingCallback",
    "CompulsiveStrategy",
    "TradingCallbackFn",
    "TradingStrategy",
]
