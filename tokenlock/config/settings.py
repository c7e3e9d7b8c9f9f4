from __future__ import annotations

import json
import os
from dataclasses import dataclass
from decimal import Decimal
from typing import Any, Dict


DEFAULT_RPC_URL = "https://api.mainnet-beta.solana.com"
DEFAULT_PROGRAM_ID = "GbwQKqr9T1vqJFctV5x6pQiGym61VfzyQ3Smsa42A59J"
DEFAULT_POOL_ID = "8sLbNZoA1cfnvMJLPfp98ZLAnFSYCFApfJKMbiXNLwxj"


def parse_int(value: str | None, default: int) -> int:
    if value is None or value.strip() == "":
        return default
    return int(value)


def parse_float(value: str | None, default: float) -> float:
    if value is None or value.strip() == "":
        return default
    return float(value)


def _parse_price(raw: Any) -> Decimal:
    price = Decimal(str(raw).strip())
    if not price.is_finite():
        raise ValueError(f"Bad PRICE_TABLE price: {raw}")
    return price


def parse_price_table(value: str | None, default: Dict[str, Decimal]) -> Dict[str, Decimal]:
    """
    Supports:
      - JSON: {"SOL": 20, "USDC": 1}
      - CSV map: "SOL=20,USDC=1"
    Prices go through str() so "0.1" stays exact.
    """
    if not value:
        return dict(default)

    v = value.strip()
    if v.startswith("{"):
        data = json.loads(v)
        return {str(k): _parse_price(p) for k, p in data.items()}

    out: Dict[str, Decimal] = {}
    for part in v.split(","):
        part = part.strip()
        if not part:
            continue
        if "=" not in part:
            raise ValueError(f"Bad PRICE_TABLE part: {part}")
        k, price = part.split("=", 1)
        out[k.strip()] = _parse_price(price)
    return out


DEFAULT_PRICES: Dict[str, Decimal] = {"SOL": Decimal(20), "USDC": Decimal(1)}


@dataclass(frozen=True)
class Settings:
    RPC_URL: str
    RPC_COMMITMENT: str
    PROGRAM_ID: str
    POOL_ID: str
    WALLET_PATH: str
    BASE_SYMBOL: str
    QUOTE_SYMBOL: str
    PRICE_TABLE: Dict[str, Decimal]
    INITIAL_CAP: int
    QUANTUM: int
    TOKEN_DECIMALS: int
    MINT_AMOUNT_TOKENS: int
    TRANSFER_AMOUNT_TOKENS: int
    AIRDROP_LAMPORTS: int
    LOCK_PERCENT: int
    BURN_DELAY_SECONDS: float
    CAP_SCALE: int
    LOG_LEVEL: str

    @staticmethod
    def from_env() -> "Settings":
        return Settings(
            RPC_URL=os.getenv("RPC_URL", DEFAULT_RPC_URL),
            RPC_COMMITMENT=os.getenv("RPC_COMMITMENT", "confirmed"),
            PROGRAM_ID=os.getenv("PROGRAM_ID", DEFAULT_PROGRAM_ID),
            POOL_ID=os.getenv("POOL_ID", DEFAULT_POOL_ID),
            WALLET_PATH=os.path.expanduser(os.getenv("WALLET_PATH", "~/.config/solana/id.json")),
            BASE_SYMBOL=os.getenv("BASE_SYMBOL", "SOL"),
            QUOTE_SYMBOL=os.getenv("QUOTE_SYMBOL", "USDC"),
            PRICE_TABLE=parse_price_table(os.getenv("PRICE_TABLE"), DEFAULT_PRICES),
            INITIAL_CAP=parse_int(os.getenv("INITIAL_CAP"), 10_000_000),
            QUANTUM=parse_int(os.getenv("QUANTUM"), 1_000_000),
            TOKEN_DECIMALS=parse_int(os.getenv("TOKEN_DECIMALS"), 9),
            MINT_AMOUNT_TOKENS=parse_int(os.getenv("MINT_AMOUNT_TOKENS"), 1000),
            TRANSFER_AMOUNT_TOKENS=parse_int(os.getenv("TRANSFER_AMOUNT_TOKENS"), 500),
            AIRDROP_LAMPORTS=parse_int(os.getenv("AIRDROP_LAMPORTS"), 1_000_000_000),
            LOCK_PERCENT=parse_int(os.getenv("LOCK_PERCENT"), 30),
            BURN_DELAY_SECONDS=parse_float(os.getenv("BURN_DELAY_SECONDS"), 120.0),
            CAP_SCALE=parse_int(os.getenv("CAP_SCALE"), 1_000_000),
            LOG_LEVEL=os.getenv("LOG_LEVEL", "INFO").upper(),
        )


_settings: Settings | None = None


def get_settings() -> Settings:
    global _settings
    if _settings is None:
        _settings = Settings.from_env()
    return _settings
