from __future__ import annotations

from types import SimpleNamespace

import httpx
import pytest
from solana.exceptions import SolanaRpcException
from solana.rpc.core import RPCException
from solders.instruction import AccountMeta, Instruction
from solders.keypair import Keypair
from solders.pubkey import Pubkey
from solders.signature import Signature
from solders.transaction import Transaction
from spl.token.instructions import get_associated_token_address

from tokenlock.services import tokens as tokens_module
from tokenlock.services.ledger import LedgerGateway, LedgerUnavailableError
from tokenlock.services.tokens import TokenMint, to_base_units


TRANSPORT_FAILURES = [
    httpx.ConnectError("connection refused"),
    SolanaRpcException("request timed out"),
    RPCException("node is behind by 120 slots"),
]


@pytest.mark.asyncio
async def test_account_data_returns_bytes(stub_rpc_cls):
    address = Pubkey.new_unique()
    ledger = LedgerGateway(stub_rpc_cls({address: b"\x01\x02\x03"}))

    assert await ledger.get_account_data(address) == b"\x01\x02\x03"


@pytest.mark.asyncio
async def test_missing_account_is_none(stub_rpc_cls):
    ledger = LedgerGateway(stub_rpc_cls())

    assert await ledger.get_account_data(Pubkey.new_unique()) is None


@pytest.mark.asyncio
@pytest.mark.parametrize("failure", TRANSPORT_FAILURES, ids=["httpx", "solana_rpc", "json_rpc_error"])
async def test_account_read_failures_become_ledger_unavailable(stub_rpc_cls, failure):
    ledger = LedgerGateway(stub_rpc_cls(raises=failure))

    with pytest.raises(LedgerUnavailableError) as excinfo:
        await ledger.get_account_data(Pubkey.new_unique())

    assert excinfo.value.operation == "getAccountInfo"
    assert excinfo.value.__cause__ is failure


@pytest.mark.asyncio
async def test_token_balance_and_airdrop(stub_rpc_cls):
    client = stub_rpc_cls()
    client.balance = 1500 * 10**9
    ledger = LedgerGateway(client)

    assert await ledger.token_balance(Pubkey.new_unique()) == 1500 * 10**9
    sig = await ledger.airdrop(Pubkey.new_unique(), 10**9)
    assert sig == Signature.default()
    assert client.confirmed == [sig]


@pytest.mark.asyncio
async def test_json_rpc_error_on_every_call_is_typed(stub_rpc_cls):
    ledger = LedgerGateway(stub_rpc_cls(raises=RPCException("Transaction simulation failed")))
    payer = Keypair()
    ix = Instruction(Pubkey.new_unique(), b"\x00", [])

    with pytest.raises(LedgerUnavailableError, match="getTokenAccountBalance"):
        await ledger.token_balance(Pubkey.new_unique())
    with pytest.raises(LedgerUnavailableError, match="requestAirdrop"):
        await ledger.airdrop(payer.pubkey(), 1)
    with pytest.raises(LedgerUnavailableError, match="sendTransaction"):
        await ledger.send_instructions([ix], payer)


@pytest.mark.asyncio
async def test_send_instructions_signs_each_keypair_once(stub_rpc_cls):
    client = stub_rpc_cls()
    ledger = LedgerGateway(client)
    payer = Keypair()
    cosigner = Keypair()
    ix = Instruction(
        Pubkey.new_unique(),
        b"\x07",
        [
            AccountMeta(payer.pubkey(), is_signer=True, is_writable=True),
            AccountMeta(cosigner.pubkey(), is_signer=True, is_writable=False),
        ],
    )

    sig = await ledger.send_instructions([ix], payer, signers=[payer, cosigner, cosigner])

    assert sig == Signature.default()
    tx = Transaction.from_bytes(client.raw_sent[0])
    assert len(tx.signatures) == 2
    assert tx.message.account_keys[0] == payer.pubkey()
    tx.verify()


@pytest.mark.asyncio
async def test_context_manager_closes_client(stub_rpc_cls):
    client = stub_rpc_cls()
    async with LedgerGateway(client) as ledger:
        assert await ledger.is_connected() is True
    assert client.closed is True


class _StubToken:
    def __init__(self):
        self.pubkey = Pubkey.new_unique()
        self.calls = []

    async def create_associated_token_account(self, owner):
        self.calls.append(("create_ata", owner))
        return get_associated_token_address(owner, self.pubkey)

    async def mint_to(self, dest, mint_authority, amount):
        self.calls.append(("mint_to", dest, amount))
        return SimpleNamespace(value=Signature.default())

    async def transfer(self, source, dest, owner, amount):
        self.calls.append(("transfer", source, dest, amount))
        return SimpleNamespace(value=Signature.default())

    async def set_authority(self, account, current_authority, authority_type, new_authority):
        self.calls.append(("set_authority", account, authority_type, new_authority))
        return SimpleNamespace(value=Signature.default())


@pytest.mark.asyncio
async def test_get_or_create_account_reuses_existing(fake_ledger_cls):
    token = _StubToken()
    owner = Pubkey.new_unique()
    ata = get_associated_token_address(owner, token.pubkey)
    mint = TokenMint(fake_ledger_cls({ata: b"\x00" * 165}), token, Keypair(), 9)

    assert await mint.get_or_create_account(owner) == ata
    assert token.calls == []


@pytest.mark.asyncio
async def test_get_or_create_account_creates_when_missing(fake_ledger_cls):
    token = _StubToken()
    owner = Pubkey.new_unique()
    mint = TokenMint(fake_ledger_cls(), token, Keypair(), 9)

    assert await mint.get_or_create_account(owner) == get_associated_token_address(owner, token.pubkey)
    assert token.calls == [("create_ata", owner)]


@pytest.mark.asyncio
async def test_mint_transfer_and_owner_change(fake_ledger_cls):
    token = _StubToken()
    payer = Keypair()
    mint = TokenMint(fake_ledger_cls(), token, payer, 9)
    a, b, pda = Pubkey.new_unique(), Pubkey.new_unique(), Pubkey.new_unique()

    await mint.mint_to(a, to_base_units(1000, 9))
    await mint.transfer(a, b, payer, to_base_units(500, 9))
    await mint.set_account_owner(b, payer, pda)

    assert [c[0] for c in token.calls] == ["mint_to", "transfer", "set_authority"]
    assert token.calls[0][2] == 1000 * 10**9
    assert token.calls[1][3] == 500 * 10**9
    assert token.calls[2][2] == tokens_module.AuthorityType.ACCOUNT_OWNER
    assert token.calls[2][3] == pda


@pytest.mark.asyncio
async def test_create_uses_payer_as_mint_authority(monkeypatch):
    seen = {}
    token = _StubToken()

    async def fake_create_mint(conn, payer, mint_authority, decimals, program_id, *args, **kwargs):
        seen.update(conn=conn, mint_authority=mint_authority, decimals=decimals)
        return token

    monkeypatch.setattr(tokens_module.AsyncToken, "create_mint", fake_create_mint)
    ledger = SimpleNamespace(client=object())
    payer = Keypair()

    mint = await TokenMint.create(ledger, payer, 6)

    assert mint.address == token.pubkey
    assert seen == {"conn": ledger.client, "mint_authority": payer.pubkey(), "decimals": 6}
