"""Structured logging setup with trader-context support.

Two output formats are supported, controlled by the ``LOG_FORMAT`` environment
variable (mapped to ``settings.log_format``):

- ``text`` (default): human-readable console output for local development.
  Format: ``2024-01-01 12:00:00 | INFO     | compulsive.core.trader
           [trader=3f2a1b] [sym=MacroHard] | message``

- ``json``: structured JSON for log aggregators. Each line is a valid JSON
  object with fields ``timestamp``, ``level``, ``logger``, ``message``,
  ``trader_id``, ``trading_symbol``, ``service`` and (on exceptions)
  ``exc_type``/``exc_value``/``exc_trace``.

Context propagation:
  The ContextVars below are asyncio-native and are copied into every task
  spawned after they are set. A trader binds its id and company once at the
  start of its startup task, so every line emitted by lookups, the join, and
  the dispatch loop carries them.
"""

import json
import logging
import sys
import traceback
from contextvars import ContextVar
from datetime import UTC, datetime
from typing import Any

# ---------------------------------------------------------------------------
# Context variables: one per async task (propagated via asyncio.Task copy)
# ---------------------------------------------------------------------------

trader_id_var: ContextVar[str | None] = ContextVar("trader_id", default=None)
symbol_var: ContextVar[str | None] = ContextVar("trading_symbol", default=None)

_SERVICE_NAME = "compulsive-traders"


# ---------------------------------------------------------------------------
# Filters
# ---------------------------------------------------------------------------

class TraderContextFilter(logging.Filter):
    """Inject trader id and trading symbol into every log record.

    Both fields are empty strings when not set so that text output can omit
    them and JSON consumers can filter with ``trader_id != ""``.
    """

    def filter(self, record: logging.LogRecord) -> bool:
        record.trader_id = trader_id_var.get() or ""
        record.trading_symbol = symbol_var.get() or ""
        return True


# ---------------------------------------------------------------------------
# Formatters
# ---------------------------------------------------------------------------

class JSONFormatter(logging.Formatter):
    """Emit one JSON object per log line.

    Non-serialisable values are coerced to ``str`` via ``default=str``.
    """

    def format(self, record: logging.LogRecord) -> str:
        ts = datetime.fromtimestamp(record.created, tz=UTC).isoformat()

        payload: dict[str, Any] = {
            "timestamp": ts,
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "trader_id": getattr(record, "trader_id", ""),
            "trading_symbol": getattr(record, "trading_symbol", ""),
            "service": _SERVICE_NAME,
        }

        if record.exc_info and record.exc_info[0] is not None:
            exc_type, exc_value, exc_tb = record.exc_info
            payload["exc_type"] = exc_type.__name__ if exc_type else None
            payload["exc_value"] = str(exc_value)
            payload["exc_trace"] = traceback.format_exception(exc_type, exc_value, exc_tb)

        return json.dumps(payload, default=str)


class _TraderTextFormatter(logging.Formatter):
    """Human-readable formatter that appends trader context only when set.

    ::

        2024-01-01 12:00:00 | INFO     | compulsive.core.trader [trader=3f2a1b] [sym=MacroHard] | Running
    """

    _BASE_FMT = "%(asctime)s | %(levelname)-8s | %(name)s"
    _DATE_FMT = "%Y-%m-%d %H:%M:%S"

    def __init__(self) -> None:
        super().__init__(fmt=self._BASE_FMT, datefmt=self._DATE_FMT)

    def format(self, record: logging.LogRecord) -> str:
        base = super().format(record)

        tokens: list[str] = []
        trader = getattr(record, "trader_id", "")
        sym = getattr(record, "trading_symbol", "")
        if trader:
            tokens.append(f"[trader={trader}]")
        if sym:
            tokens.append(f"[sym={sym}]")

        context_part = (" " + " ".join(tokens)) if tokens else ""
        line = f"{base}{context_part} | {record.getMessage()}"
        if record.exc_info:
            line = f"{line}\n{self.formatException(record.exc_info)}"
        return line


# ---------------------------------------------------------------------------
# Public setup function
# ---------------------------------------------------------------------------

def setup_logging() -> None:
    """Configure application logging based on ``settings.log_format``.

    Call once at process startup. Calling it again only adjusts the level; no
    duplicate handler is added.
    """
    # Settings are imported lazily so tests can import this module with a
    # broken environment.
    try:
        from compulsive.config import settings as _settings
        log_level_str = _settings.log_level.upper()
        log_format = _settings.log_format.lower()
    except Exception:
        log_level_str = "INFO"
        log_format = "text"

    log_level = getattr(logging, log_level_str, logging.INFO)

    root_logger = logging.getLogger()

    if root_logger.handlers:
        root_logger.setLevel(log_level)
        return

    root_logger.setLevel(log_level)

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setLevel(log_level)
    console_handler.addFilter(TraderContextFilter())

    if log_format == "json":
        console_handler.setFormatter(JSONFormatter())
    else:
        console_handler.setFormatter(_TraderTextFormatter())

    root_logger.addHandler(console_handler)

    logging.getLogger("redis").setLevel(logging.WARNING)
    logging.getLogger("asyncio").setLevel(logging.WARNING)

    logging.getLogger(__name__).info(
        "Logging initialised (level=%s, format=%s)", log_level_str, log_format
    )


# ---------------------------------------------------------------------------
# Trader-context helpers
# ---------------------------------------------------------------------------

def set_trader_context(trader_id: str | None = None, symbol: str | None = None) -> None:
    """Bind trader context into the current async context.

    Omitted arguments leave the corresponding ContextVar unchanged.
    """
    if trader_id is not None:
        trader_id_var.set(trader_id)
    if symbol is not None:
        symbol_var.set(symbol)


def clear_trader_context() -> None:
    """Clear the trader ContextVars in the current async context."""
    trader_id_var.set(None)
    symbol_var.set(None)


# ---------------------------------------------------------------------------
# Logger factory
# ---------------------------------------------------------------------------

def get_logger(name: str) -> logging.Logger:
    """Return a standard ``logging.Logger`` for the given module name.

    Usage::

        from compulsive.logging import get_logger
        logger = get_logger(__name__)
        logger.info("Component started")
    """
    return logging.getLogger(name)


# ---------------------------------------------------------------------------
# Exception helper
# ---------------------------------------------------------------------------

def log_exception(
    logger: logging.Logger,
    exc: BaseException,
    context: dict[str, Any] | None = None,
) -> None:
    """Log an exception with optional structured context.

    Args:
        logger:  Logger instance obtained from ``get_logger()``.
        exc:     The exception to log.
        context: Optional dict of key/value pairs added to the message.
    """
    context_str = f" | context={context}" if context else ""
    logger.error(
        "Exception: %s%s",
        exc,
        context_str,
        exc_info=(type(exc), exc, exc.__traceback__),
    )
