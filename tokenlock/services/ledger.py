"""Helpers for talking to a Solana JSON-RPC node."""

from __future__ import annotations

import json
import logging
from typing import Optional, Sequence

import httpx
from solana.exceptions import SolanaRpcException
from solana.rpc.async_api import AsyncClient
from solana.rpc.commitment import Commitment
from solana.rpc.core import RPCException
from solana.rpc.types import TxOpts
from solders.instruction import Instruction
from solders.keypair import Keypair
from solders.message import Message
from solders.pubkey import Pubkey
from solders.signature import Signature
from solders.transaction import Transaction

from tokenlock.config.settings import Settings, get_settings

logger = logging.getLogger("tokenlock.ledger")

# RPCException covers a JSON-RPC error body, e.g. "node is behind"
TRANSPORT_ERRORS = (httpx.HTTPError, SolanaRpcException, RPCException)


class LedgerUnavailableError(RuntimeError):
    """The RPC node could not be reached or returned a transport-level failure."""

    def __init__(self, operation: str, cause: Exception):
        self.operation = operation
        super().__init__(f"{operation} failed: {cause!r}"[:300])


def load_keypair(path: str) -> Keypair:
    """Read a keypair file in the solana-keygen JSON format (64-byte int array)."""
    with open(path, "r") as f:
        raw = json.load(f)
    return Keypair.from_bytes(bytes(raw))


class LedgerGateway:
    """
    Wraps AsyncClient so callers deal in bytes, ints and typed errors
    instead of RPC response objects.
    """

    def __init__(self, client: AsyncClient, commitment: str = "confirmed"):
        self.client = client
        self.commitment = Commitment(commitment)

    @classmethod
    def from_settings(cls, settings: Settings | None = None) -> "LedgerGateway":
        s = settings or get_settings()
        return cls(AsyncClient(s.RPC_URL, commitment=Commitment(s.RPC_COMMITMENT)), s.RPC_COMMITMENT)

    async def __aenter__(self) -> "LedgerGateway":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()

    async def close(self) -> None:
        await self.client.close()

    async def is_connected(self) -> bool:
        return await self.client.is_connected()

    async def get_account_data(self, address: Pubkey) -> Optional[bytes]:
        """Return the account's raw data, or None when no account exists at address."""
        try:
            resp = await self.client.get_account_info(address, commitment=self.commitment)
        except TRANSPORT_ERRORS as exc:
            raise LedgerUnavailableError("getAccountInfo", exc) from exc

        if resp.value is None:
            return None
        return bytes(resp.value.data)

    async def token_balance(self, token_account: Pubkey) -> int:
        try:
            resp = await self.client.get_token_account_balance(token_account, commitment=self.commitment)
        except TRANSPORT_ERRORS as exc:
            raise LedgerUnavailableError("getTokenAccountBalance", exc) from exc
        return int(resp.value.amount)

    async def airdrop(self, recipient: Pubkey, lamports: int) -> Signature:
        try:
            resp = await self.client.request_airdrop(recipient, lamports, commitment=self.commitment)
            sig = resp.value
            await self.client.confirm_transaction(sig, commitment=self.commitment)
        except TRANSPORT_ERRORS as exc:
            raise LedgerUnavailableError("requestAirdrop", exc) from exc

        logger.info("airdrop confirmed | to=%s | lamports=%s | sig=%s", recipient, lamports, sig)
        return sig

    async def send_instructions(
        self,
        instructions: Sequence[Instruction],
        payer: Keypair,
        signers: Sequence[Keypair] = (),
    ) -> Signature:
        # payer signs first; drop duplicates so a payer passed again as signer is harmless
        keypairs = [payer]
        seen = {payer.pubkey()}
        for kp in signers:
            if kp.pubkey() not in seen:
                keypairs.append(kp)
                seen.add(kp.pubkey())

        try:
            blockhash = (await self.client.get_latest_blockhash(commitment=self.commitment)).value.blockhash
            message = Message.new_with_blockhash(list(instructions), payer.pubkey(), blockhash)
            tx = Transaction(keypairs, message, blockhash)
            resp = await self.client.send_raw_transaction(
                bytes(tx),
                opts=TxOpts(skip_confirmation=False, preflight_commitment=self.commitment),
            )
        except TRANSPORT_ERRORS as exc:
            raise LedgerUnavailableError("sendTransaction", exc) from exc

        return resp.value
