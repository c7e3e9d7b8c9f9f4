from __future__ import annotations

from types import SimpleNamespace
from typing import Dict, Iterable, Optional

import pytest
from solders.hash import Hash
from solders.pubkey import Pubkey
from solders.signature import Signature

from tokenlock.jobs import scheduler
from tokenlock.utils.cache import clear_cache


def _u64(value: int) -> bytes:
    return value.to_bytes(8, "little")


def build_pool_data(
    base_reserve: int,
    quote_reserve: int,
    base_mint: Pubkey | None = None,
    quote_mint: Pubkey | None = None,
    trailing: bytes = b"",
) -> bytes:
    base_mint = base_mint or Pubkey.new_unique()
    quote_mint = quote_mint or Pubkey.new_unique()
    return _u64(base_reserve) + _u64(quote_reserve) + bytes(base_mint) + bytes(quote_mint) + trailing


class FakeLedger:
    """In-process stand-in for LedgerGateway; records every submitted instruction."""

    def __init__(
        self,
        accounts: Optional[Dict[Pubkey, bytes]] = None,
        *,
        default_balance: int = 0,
        connected: bool = True,
        fail_on: Iterable[bytes] = (),
    ):
        self.accounts = dict(accounts or {})
        self.default_balance = default_balance
        self.connected = connected
        self.fail_on = set(fail_on)
        self.sent = []
        self.airdrops = []
        self.closed = False

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc, tb):
        self.closed = True
        return False

    async def is_connected(self) -> bool:
        return self.connected

    async def get_account_data(self, address: Pubkey) -> Optional[bytes]:
        return self.accounts.get(address)

    async def token_balance(self, token_account: Pubkey) -> int:
        return self.default_balance

    async def airdrop(self, recipient: Pubkey, lamports: int) -> Signature:
        self.airdrops.append((recipient, lamports))
        return Signature.default()

    async def send_instructions(self, instructions, payer, signers=()) -> Signature:
        for ix in instructions:
            if bytes(ix.data[:8]) in self.fail_on:
                raise RuntimeError("custom program error: 0x1773")
        self.sent.append((list(instructions), payer, list(signers)))
        return Signature.default()


@pytest.fixture
def make_pool_data():
    return build_pool_data


@pytest.fixture
def fake_ledger_cls():
    return FakeLedger


@pytest.fixture(autouse=True)
def _isolate_module_state():
    scheduler.reset_scheduler()
    clear_cache()
    yield
    scheduler.reset_scheduler()
    clear_cache()


class StubRpcClient:
    """AsyncClient stand-in: canned responses per method, or an exception to raise."""

    def __init__(self, accounts: Optional[Dict[Pubkey, bytes]] = None, *, raises: Optional[Exception] = None):
        self.accounts = dict(accounts or {})
        self.raises = raises
        self.balance = 0
        self.raw_sent = []
        self.confirmed = []
        self.closed = False

    def _maybe_raise(self):
        if self.raises is not None:
            raise self.raises

    async def close(self):
        self.closed = True

    async def is_connected(self) -> bool:
        return self.raises is None

    async def get_account_info(self, address, commitment=None):
        self._maybe_raise()
        data = self.accounts.get(address)
        if data is None:
            return SimpleNamespace(value=None)
        return SimpleNamespace(value=SimpleNamespace(data=data))

    async def get_token_account_balance(self, address, commitment=None):
        self._maybe_raise()
        return SimpleNamespace(value=SimpleNamespace(amount=str(self.balance)))

    async def request_airdrop(self, recipient, lamports, commitment=None):
        self._maybe_raise()
        return SimpleNamespace(value=Signature.default())

    async def confirm_transaction(self, sig, commitment=None):
        self.confirmed.append(sig)
        return SimpleNamespace(value=[])

    async def get_latest_blockhash(self, commitment=None):
        self._maybe_raise()
        return SimpleNamespace(value=SimpleNamespace(blockhash=Hash.default()))

    async def send_raw_transaction(self, raw, opts=None):
        self._maybe_raise()
        self.raw_sent.append(raw)
        return SimpleNamespace(value=Signature.default())


@pytest.fixture
def stub_rpc_cls():
    return StubRpcClient
