from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from decimal import Decimal
from typing import Any, Optional, Protocol

from construct import Bytes, ConstructError, Int64ul, Struct
from solders.pubkey import Pubkey

from tokenlock.services.prices import PriceLookup, StaticPriceTable

logger = logging.getLogger("tokenlock.pool_reader")


POOL_LAYOUT = Struct(
    "base_reserve" / Int64ul,
    "quote_reserve" / Int64ul,
    "base_mint" / Bytes(32),
    "quote_mint" / Bytes(32),
)
POOL_RECORD_SIZE = POOL_LAYOUT.sizeof()  # 80

# prices are truncated to 6 decimals before multiplying
PRICE_SCALE = 1_000_000


class PoolValueError(Exception):
    """Base class for every way a pool valuation can fail."""


class PoolNotFoundError(PoolValueError):
    def __init__(self, address: str):
        self.address = address
        super().__init__(f"Pool account {address} not found")


class PoolDecodeError(PoolValueError):
    def __init__(self, message: str, *, address: str | None = None, size: int | None = None):
        self.address = address
        self.size = size
        super().__init__(message)


class AccountSource(Protocol):
    async def get_account_data(self, address: Pubkey) -> Optional[bytes]:
        ...


@dataclass(frozen=True)
class PoolRecord:
    base_reserve: int
    quote_reserve: int
    base_mint: Pubkey
    quote_mint: Pubkey

    def to_dict(self) -> dict[str, Any]:
        return {
            "base_reserve": self.base_reserve,
            "quote_reserve": self.quote_reserve,
            "base_mint": str(self.base_mint),
            "quote_mint": str(self.quote_mint),
        }


@dataclass(frozen=True)
class PoolValuation:
    address: str
    record: PoolRecord
    base_symbol: str
    quote_symbol: str
    base_price: Decimal
    quote_price: Decimal
    base_value: int
    quote_value: int

    @property
    def total(self) -> int:
        return self.base_value + self.quote_value

    def to_dict(self) -> dict[str, Any]:
        return {
            "address": self.address,
            "record": self.record.to_dict(),
            "base_symbol": self.base_symbol,
            "quote_symbol": self.quote_symbol,
            "base_price": str(self.base_price),
            "quote_price": str(self.quote_price),
            "base_value": self.base_value,
            "quote_value": self.quote_value,
            "total": self.total,
        }


def parse_address(address: str) -> Pubkey:
    try:
        return Pubkey.from_string(address)
    except ValueError as exc:
        raise PoolDecodeError(f"Invalid account address {address!r}", address=address) from exc


def decode_pool_record(data: bytes) -> PoolRecord:
    """
    Decode the fixed 80-byte prefix of a pool account.

    Trailing bytes are ignored. Short input raises PoolDecodeError; there is
    no partial result.
    """
    if len(data) < POOL_RECORD_SIZE:
        raise PoolDecodeError(
            f"Pool record needs {POOL_RECORD_SIZE} bytes, got {len(data)}",
            size=len(data),
        )

    try:
        parsed = POOL_LAYOUT.parse(bytes(data[:POOL_RECORD_SIZE]))
    except ConstructError as exc:
        raise PoolDecodeError(f"Malformed pool record: {exc}", size=len(data)) from exc

    return PoolRecord(
        base_reserve=int(parsed.base_reserve),
        quote_reserve=int(parsed.quote_reserve),
        base_mint=Pubkey.from_bytes(parsed.base_mint),
        quote_mint=Pubkey.from_bytes(parsed.quote_mint),
    )


def price_to_fixed6(price: Decimal) -> int:
    price = Decimal(price)
    if not price.is_finite():
        raise ValueError(f"Price must be finite, got {price}")
    if price < 0:
        raise ValueError(f"Price must be non-negative, got {price}")
    return math.floor(price * PRICE_SCALE)


def reserve_value(reserve: int, price: Decimal) -> int:
    return reserve * price_to_fixed6(price) // PRICE_SCALE


async def estimate_pool_value(
    address: str,
    *,
    ledger: AccountSource,
    prices: PriceLookup | None = None,
    base_symbol: str = "SOL",
    quote_symbol: str = "USDC",
) -> PoolValuation:
    pubkey = parse_address(address)
    lookup = prices if prices is not None else StaticPriceTable()

    data = await ledger.get_account_data(pubkey)
    if data is None:
        raise PoolNotFoundError(address)

    try:
        record = decode_pool_record(data)
    except PoolDecodeError as exc:
        exc.address = address
        raise

    logger.debug(
        "pool decoded | %s | base=%s quote=%s | base_mint=%s quote_mint=%s",
        address,
        record.base_reserve,
        record.quote_reserve,
        record.base_mint,
        record.quote_mint,
    )

    base_price = await lookup.get_price(base_symbol)
    quote_price = await lookup.get_price(quote_symbol)

    valuation = PoolValuation(
        address=address,
        record=record,
        base_symbol=base_symbol,
        quote_symbol=quote_symbol,
        base_price=base_price,
        quote_price=quote_price,
        base_value=reserve_value(record.base_reserve, base_price),
        quote_value=reserve_value(record.quote_reserve, quote_price),
    )
    logger.info("pool market cap | %s | total=%s", address, valuation.total)
    return valuation


async def estimate_aggregate_value(
    address: str,
    *,
    ledger: AccountSource,
    prices: PriceLookup | None = None,
    base_symbol: str = "SOL",
    quote_symbol: str = "USDC",
) -> int:
    valuation = await estimate_pool_value(
        address,
        ledger=ledger,
        prices=prices,
        base_symbol=base_symbol,
        quote_symbol=quote_symbol,
    )
    return valuation.total
