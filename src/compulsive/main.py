"""Process entrypoint for a compulsive trader."""

import argparse
import asyncio
import random
import signal
import sys
from datetime import UTC, datetime

from compulsive.config import TraderSettings, settings
from compulsive.core.trader import RegistryConnector, TraderController
from compulsive.core.types import MarketTick, StartupFailure, TraderConfig
from compulsive.discovery.memory import InMemoryServiceLocator, InMemoryServiceRegistry
from compulsive.discovery.redis_registry import connect_redis_registry
from compulsive.logging import get_logger, setup_logging
from compulsive.market.memory import InMemoryMarketSource
from compulsive.observability.strategy_errors import strategy_error_telemetry
from compulsive.portfolio.paper import PaperPortfolio
from compulsive.strategies.compulsive import CompulsiveStrategy

logger = get_logger(__name__)


async def run_trader(
    connect_registry: RegistryConnector,
    *,
    config: TraderConfig | None = None,
    trader_settings: TraderSettings | None = None,
    shutdown_event: asyncio.Event | None = None,
) -> int:
    """Start one trader and keep it running until shutdown or stream end.

    Returns the process exit code: 1 when startup failed, 0 otherwise.
    """
    shutdown_event = shutdown_event or asyncio.Event()
    trader = TraderController(
        connect_registry,
        CompulsiveStrategy(),
        config=config,
        settings=trader_settings or settings,
    )

    outcome = await trader.start()
    if isinstance(outcome, StartupFailure):
        logger.error(f"Trader startup failed: {outcome.cause}")
        return 1

    stream_closed = asyncio.create_task(trader.wait_closed())
    shutdown = asyncio.create_task(shutdown_event.wait())
    try:
        await asyncio.wait({stream_closed, shutdown}, return_when=asyncio.FIRST_COMPLETED)
    finally:
        stream_closed.cancel()
        shutdown.cancel()
        await trader.stop()
        logger.info(f"Strategy errors: {strategy_error_telemetry.snapshot()}")
    return 0


async def _simulate_quotes(
    source: InMemoryMarketSource,
    companies: list[str],
    ticks: int,
    interval: float,
    rng: random.Random,
) -> None:
    prices = {company: rng.uniform(50.0, 150.0) for company in companies}
    for _ in range(ticks):
        await asyncio.sleep(interval)
        company = rng.choice(companies)
        price = max(1.0, prices[company] * (1 + rng.uniform(-0.02, 0.02)))
        prices[company] = price
        source.publish(
            MarketTick(
                symbol=company[:3].upper(),
                name=company,
                price=round(price, 2),
                bid=round(price - 0.05, 2),
                ask=round(price + 0.05, 2),
                timestamp=datetime.now(UTC),
            )
        )
    source.end()


async def run_demo(ticks: int, interval: float, config: TraderConfig | None) -> int:
    """Run a trader against an in-process registry, ledger and quote feed."""
    market = InMemoryMarketSource(name=settings.market_service_name)
    portfolio = PaperPortfolio(name=settings.portfolio_service_name)
    registry = InMemoryServiceRegistry()
    registry.publish(portfolio.record, lambda _record: portfolio)
    registry.publish(market.record, lambda _record: market)

    feed: asyncio.Task[None] | None = None

    async def connect() -> InMemoryServiceLocator:
        nonlocal feed
        locator = await registry.connect()
        feed = asyncio.create_task(
            _simulate_quotes(market, list(settings.companies), ticks, interval, random.Random())
        )
        return locator

    try:
        code = await run_trader(connect, config=config)
    finally:
        if feed is not None:
            feed.cancel()
    logger.info(f"Final paper portfolio: {portfolio.view()}")
    return code


def _install_signal_handlers(shutdown_event: asyncio.Event) -> None:
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, shutdown_event.set)
        except NotImplementedError:
            # Windows event loops do not support signal handlers.
            pass


async def _run_redis(config: TraderConfig | None) -> int:
    shutdown_event = asyncio.Event()
    _install_signal_handlers(shutdown_event)
    return await run_trader(
        connect_redis_registry, config=config, shutdown_event=shutdown_event
    )


def _positive_int(value: str) -> int:
    try:
        number = int(value)
    except ValueError:
        raise argparse.ArgumentTypeError(f"invalid int value: {value!r}") from None
    if number < 1:
        raise argparse.ArgumentTypeError(f"must be at least 1, got {number}")
    return number


def _config_from_args(args: argparse.Namespace) -> TraderConfig | None:
    if args.company is None and args.shares is None:
        return None
    rng = random.Random()
    return TraderConfig(
        company=args.company or rng.choice(settings.companies),
        share_count=(
            args.shares
            if args.shares is not None
            else rng.randint(settings.min_shares, settings.max_shares)
        ),
    )


def main() -> None:
    """Main entrypoint."""
    parser = argparse.ArgumentParser(description="Compulsive trader")
    subparsers = parser.add_subparsers(dest="command", help="Command to run")

    run_parser = subparsers.add_parser("run", help="Run a trader against the Redis service registry")
    demo_parser = subparsers.add_parser(
        "demo", help="Run a trader against an in-process registry and simulated quotes"
    )
    demo_parser.add_argument("--ticks", type=int, default=50, help="Number of quotes to simulate")
    demo_parser.add_argument(
        "--interval", type=float, default=0.1, help="Seconds between simulated quotes"
    )
    for sub in (run_parser, demo_parser):
        sub.add_argument("--company", type=str, default=None, help="Company to trade")
        sub.add_argument("--shares", type=_positive_int, default=None, help="Shares per order")

    args = parser.parse_args()
    if args.command is None:
        parser.print_help()
        sys.exit(2)

    setup_logging()
    config = _config_from_args(args)

    try:
        if args.command == "demo":
            code = asyncio.run(run_demo(args.ticks, args.interval, config))
        else:
            code = asyncio.run(_run_redis(config))
    except KeyboardInterrupt:
        code = 0
    sys.exit(code)


if __name__ == "__main__":
    main()
