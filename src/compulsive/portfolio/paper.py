"""In-memory paper ledger implementing the portfolio capability."""

from typing import Any

from compulsive.core.contracts import PortfolioHandle
from compulsive.core.errors import PortfolioCallError
from compulsive.core.types import MarketTick, ServiceKind, ServiceRecord
from compulsive.logging import get_logger

logger = get_logger(__name__)


class PaperPortfolio(PortfolioHandle):
    """A cash-and-shares ledger kept in process.

    Buys fill at the quote's ask (or price), sells at its bid (or price).
    Orders without a quote fill at ``default_price``.
    """

    def __init__(
        self,
        cash: float = 10_000.0,
        *,
        record: ServiceRecord | None = None,
        name: str = "portfolio",
        default_price: float = 0.0,
    ) -> None:
        super().__init__(record or ServiceRecord(name=name, kind=ServiceKind.RPC_PROXY))
        self.cash = cash
        self.default_price = default_price
        self._shares: dict[str, int] = {}
        self.history: list[dict[str, Any]] = []

    async def buy(self, symbol: str, quantity: int, quote: MarketTick | None = None) -> dict[str, Any]:
        self._check_order("buy", quantity)
        price = self._fill_price(quote, "ask")
        cost = price * quantity
        if cost > self.cash:
            raise PortfolioCallError(
                "buy", f"cannot afford {quantity} {symbol} ({cost:.2f} > {self.cash:.2f})"
            )
        self.cash -= cost
        self._shares[symbol] = self._shares.get(symbol, 0) + quantity
        return self._record("buy", symbol, quantity, price)

    async def sell(self, symbol: str, quantity: int, quote: MarketTick | None = None) -> dict[str, Any]:
        self._check_order("sell", quantity)
        owned = self._shares.get(symbol, 0)
        if owned < quantity:
            raise PortfolioCallError("sell", f"holding {owned} {symbol}, cannot sell {quantity}")
        price = self._fill_price(quote, "bid")
        self.cash += price * quantity
        remaining = owned - quantity
        if remaining:
            self._shares[symbol] = remaining
        else:
            del self._shares[symbol]
        return self._record("sell", symbol, quantity, price)

    async def positions(self) -> dict[str, int]:
        return dict(self._shares)

    def view(self) -> dict[str, Any]:
        return {"cash": self.cash, "shares": dict(self._shares)}

    def _check_order(self, action: str, quantity: int) -> None:
        if self.released:
            raise PortfolioCallError(action, "portfolio handle was released")
        if quantity <= 0:
            raise PortfolioCallError(action, f"quantity must be positive, got {quantity}")

    def _fill_price(self, quote: MarketTick | None, side: str) -> float:
        if quote is None:
            return self.default_price
        side_price = getattr(quote, side)
        return float(side_price) if side_price is not None else quote.price

    def _record(self, action: str, symbol: str, quantity: int, price: float) -> dict[str, Any]:
        self.history.append(
            {"action": action, "symbol": symbol, "quantity": quantity, "price": price}
        )
        logger.debug(f"Paper {action} {quantity} {symbol} @ {price:.2f}")
        return self.view()
