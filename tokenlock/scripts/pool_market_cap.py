# tokenlock/scripts/pool_market_cap.py
from __future__ import annotations

import argparse
import asyncio
import json
import logging
from typing import Any, Dict

from tokenlock.config.settings import Settings, get_settings
from tokenlock.services.ledger import LedgerGateway, LedgerUnavailableError
from tokenlock.services.pool_reader import PoolValueError, estimate_pool_value
from tokenlock.services.prices import PriceUnavailableError, StaticPriceTable


def _failure(address: str, exc: Exception) -> Dict[str, Any]:
    return {
        "address": address,
        "error": {"type": type(exc).__name__, "message": str(exc)},
    }


async def run(address: str, settings: Settings, ledger_factory=LedgerGateway.from_settings) -> Dict[str, Any]:
    async with ledger_factory(settings) as ledger:
        valuation = await estimate_pool_value(
            address,
            ledger=ledger,
            prices=StaticPriceTable(settings.PRICE_TABLE),
            base_symbol=settings.BASE_SYMBOL,
            quote_symbol=settings.QUOTE_SYMBOL,
        )
    return valuation.to_dict()


def main() -> None:
    settings = get_settings()
    parser = argparse.ArgumentParser(description="Estimate a pool's market cap from its reserves")
    parser.add_argument("--address", default=settings.POOL_ID)
    args = parser.parse_args()

    logging.basicConfig(level=settings.LOG_LEVEL, format="%(asctime)s %(levelname)s %(name)s | %(message)s")

    try:
        out = asyncio.run(run(args.address, settings))
    except (PoolValueError, PriceUnavailableError, LedgerUnavailableError) as exc:
        print(json.dumps(_failure(args.address, exc)))
        raise SystemExit(1)

    print(json.dumps(out))


if __name__ == "__main__":
    main()
