"""Unit price lookup used to value pool reserves."""

from __future__ import annotations

from decimal import Decimal
from typing import Mapping, Protocol

from tokenlock.config.settings import DEFAULT_PRICES


class PriceUnavailableError(LookupError):
    def __init__(self, symbol: str):
        self.symbol = symbol
        super().__init__(f"No price available for symbol {symbol!r}")


class PriceLookup(Protocol):
    async def get_price(self, symbol: str) -> Decimal:
        ...


class StaticPriceTable:
    """In-memory symbol -> price table. A miss raises instead of returning None."""

    def __init__(self, prices: Mapping[str, Decimal | int | str] | None = None):
        source = DEFAULT_PRICES if prices is None else prices
        self._prices = {str(k): Decimal(str(v)) for k, v in source.items()}
        for symbol, price in self._prices.items():
            if not price.is_finite():
                raise ValueError(f"Price for {symbol!r} must be finite, got {price}")

    @property
    def symbols(self) -> list[str]:
        return sorted(self._prices)

    async def get_price(self, symbol: str) -> Decimal:
        try:
            return self._prices[symbol]
        except KeyError:
            raise PriceUnavailableError(symbol) from None
