from __future__ import annotations

from pydantic import BaseModel, Field


class PoolRecordOut(BaseModel):
    """Decoded fixed prefix of a pool account."""

    base_reserve: int = Field(..., ge=0)
    quote_reserve: int = Field(..., ge=0)
    base_mint: str
    quote_mint: str


class PoolMarketCap(BaseModel):
    """Aggregate value of both pool reserves at the configured unit prices."""

    address: str
    record: PoolRecordOut
    base_symbol: str
    quote_symbol: str
    base_price: str
    quote_price: str
    base_value: int
    quote_value: int
    total: int

