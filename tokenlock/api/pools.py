# tokenlock/api/pools.py
from __future__ import annotations

from typing import Any

from fastapi import APIRouter
from fastapi.responses import JSONResponse

from tokenlock.config.settings import get_settings
from tokenlock.schemas.pool import PoolMarketCap
from tokenlock.services.ledger import LedgerGateway, LedgerUnavailableError
from tokenlock.services.pool_reader import (
    PoolDecodeError,
    PoolNotFoundError,
    estimate_pool_value,
)
from tokenlock.services.prices import PriceUnavailableError, StaticPriceTable
from tokenlock.utils.cache import get_cache, set_cache


router = APIRouter(prefix="/pools", tags=["pools"])

CACHE_TTL = 30  # seconds

# swapped out in tests
ledger_factory = LedgerGateway.from_settings


def _error_response(
    *,
    code: str,
    message: str,
    status_code: int = 400,
    details: dict[str, Any] | None = None,
) -> JSONResponse:
    payload: dict[str, Any] = {"error": {"code": code, "message": message}}
    if details:
        payload["error"]["details"] = details
    return JSONResponse(status_code=status_code, content=payload)


@router.get("/{address}/market-cap", response_model=PoolMarketCap)
async def get_pool_market_cap(address: str):
    cache_key = f"market_cap:{address}"
    cached = get_cache(cache_key, CACHE_TTL)
    if cached is not None:
        return cached

    s = get_settings()
    try:
        async with ledger_factory(s) as ledger:
            valuation = await estimate_pool_value(
                address,
                ledger=ledger,
                prices=StaticPriceTable(s.PRICE_TABLE),
                base_symbol=s.BASE_SYMBOL,
                quote_symbol=s.QUOTE_SYMBOL,
            )
    except PoolNotFoundError as exc:
        return _error_response(
            code="pool_not_found",
            message=str(exc),
            status_code=404,
            details={"address": address},
        )
    except PoolDecodeError as exc:
        return _error_response(
            code="pool_malformed",
            message=str(exc),
            status_code=422,
            details={"address": address, "size": exc.size},
        )
    except PriceUnavailableError as exc:
        return _error_response(
            code="price_unavailable",
            message=str(exc),
            status_code=503,
            details={"symbol": exc.symbol},
        )
    except LedgerUnavailableError as exc:
        return _error_response(
            code="ledger_unavailable",
            message=str(exc),
            status_code=502,
            details={"operation": exc.operation},
        )

    result = PoolMarketCap(**valuation.to_dict())
    set_cache(cache_key, result)
    return result
