from __future__ import annotations

from decimal import Decimal

import pytest

from tokenlock.config.settings import Settings, parse_price_table
from tokenlock.services.prices import PriceUnavailableError, StaticPriceTable


@pytest.mark.asyncio
async def test_default_table_has_exactly_two_entries():
    table = StaticPriceTable()
    assert table.symbols == ["SOL", "USDC"]
    assert await table.get_price("SOL") == Decimal(20)
    assert await table.get_price("USDC") == Decimal(1)


@pytest.mark.asyncio
async def test_lookup_miss_raises_instead_of_returning_none():
    with pytest.raises(PriceUnavailableError):
        await StaticPriceTable().get_price("sol")


def test_parse_price_table_csv_and_json():
    assert parse_price_table("SOL=21.5, USDC=1", {}) == {"SOL": Decimal("21.5"), "USDC": Decimal("1")}
    assert parse_price_table('{"SOL": 0.1}', {}) == {"SOL": Decimal("0.1")}
    assert parse_price_table(None, {"X": Decimal(2)}) == {"X": Decimal(2)}


def test_parse_price_table_rejects_bad_part():
    with pytest.raises(ValueError):
        parse_price_table("SOL20", {})


@pytest.mark.parametrize("value", ["SOL=NaN", "SOL=20,USDC=Infinity", '{"SOL": NaN}', '{"USDC": -Infinity}'])
def test_parse_price_table_rejects_non_finite_price(value):
    with pytest.raises(ValueError, match="Bad PRICE_TABLE price"):
        parse_price_table(value, {})


@pytest.mark.parametrize("raw", ["NaN", "Infinity"])
def test_static_table_rejects_non_finite_price(raw):
    with pytest.raises(ValueError, match="SOL"):
        StaticPriceTable({"SOL": raw, "USDC": 1})


def test_settings_defaults(monkeypatch):
    for name in ("BURN_DELAY_SECONDS", "INITIAL_CAP", "QUANTUM", "LOCK_PERCENT", "PRICE_TABLE", "CAP_SCALE"):
        monkeypatch.delenv(name, raising=False)
    s = Settings.from_env()
    assert s.BURN_DELAY_SECONDS == 120.0
    assert s.INITIAL_CAP == 10_000_000
    assert s.QUANTUM == 1_000_000
    assert s.LOCK_PERCENT == 30
    assert s.CAP_SCALE == 1_000_000
    assert s.PRICE_TABLE == {"SOL": Decimal(20), "USDC": Decimal(1)}


def test_settings_read_env(monkeypatch):
    monkeypatch.setenv("BURN_DELAY_SECONDS", "2.5")
    monkeypatch.setenv("PRICE_TABLE", "SOL=30")
    monkeypatch.setenv("LOG_LEVEL", "debug")
    s = Settings.from_env()
    assert s.BURN_DELAY_SECONDS == 2.5
    assert s.PRICE_TABLE == {"SOL": Decimal(30)}
    assert s.LOG_LEVEL == "DEBUG"
