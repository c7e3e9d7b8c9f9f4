"""
Client for the on-chain token-lock program.

The program is an Anchor program: each instruction is the 8-byte
discriminator sha256("global:<method>")[:8] followed by its little-endian
arguments, and each account type starts with sha256("account:<Type>")[:8].
Validation and state changes happen on chain; this module only builds,
signs and submits calls, and decodes the accounts for read-back.
"""

from __future__ import annotations

import hashlib
import logging
from dataclasses import dataclass
from typing import Any, Optional

from construct import Bytes, ConstructError, Int8ul, Int64sl, Int64ul, Struct
from solders.instruction import AccountMeta, Instruction
from solders.keypair import Keypair
from solders.pubkey import Pubkey
from solders.signature import Signature
from solders.system_program import ID as SYSTEM_PROGRAM_ID
from solders.sysvar import RENT
from spl.token.constants import TOKEN_PROGRAM_ID

from tokenlock.services.ledger import LedgerGateway

logger = logging.getLogger("tokenlock.program")


VAULT_AUTHORITY_SEED = b"vault-authority"
USER_ACCOUNT_SEED = b"user-account"

U8_MAX = 2**8 - 1
U64_MAX = 2**64 - 1


def instruction_discriminator(method: str) -> bytes:
    return hashlib.sha256(f"global:{method}".encode("utf-8")).digest()[:8]


def account_discriminator(account_type: str) -> bytes:
    return hashlib.sha256(f"account:{account_type}".encode("utf-8")).digest()[:8]


INITIALIZE_ARGS = Struct("initial_cap" / Int64ul, "quantum" / Int64ul)
UPDATE_CAP_ARGS = Struct("new_cap" / Int64ul)
LOCK_TOKENS_ARGS = Struct("amount" / Int64ul)
BURN_TOKENS_ARGS = Struct("vault_authority_bump" / Int8ul)

GLOBAL_STATE_LAYOUT = Struct(
    "discriminator" / Bytes(8),
    "current_cap" / Int64ul,
    "next_burn_cap" / Int64ul,
    "quantum" / Int64ul,
)
USER_ACCOUNT_LAYOUT = Struct(
    "discriminator" / Bytes(8),
    "locked_amount" / Int64ul,
    "unlock_time" / Int64sl,
    "last_lock_cap" / Int64ul,
)


class ProgramAccountError(Exception):
    """A program account is missing or its bytes do not match the expected type."""


@dataclass(frozen=True)
class GlobalState:
    current_cap: int
    next_burn_cap: int
    quantum: int

    def to_dict(self) -> dict[str, int]:
        return {
            "current_cap": self.current_cap,
            "next_burn_cap": self.next_burn_cap,
            "quantum": self.quantum,
        }


@dataclass(frozen=True)
class UserAccount:
    locked_amount: int
    unlock_time: int
    last_lock_cap: int


def _check_range(name: str, value: int, upper: int) -> int:
    if not isinstance(value, int) or isinstance(value, bool):
        raise ValueError(f"{name} must be an int, got {type(value).__name__}")
    if value < 0 or value > upper:
        raise ValueError(f"{name}={value} out of range [0, {upper}]")
    return value


def _decode_account(layout: Struct, account_type: str, data: bytes) -> Any:
    try:
        parsed = layout.parse(data)
    except ConstructError as exc:
        raise ProgramAccountError(f"{account_type} account malformed: {exc}") from exc
    if parsed.discriminator != account_discriminator(account_type):
        raise ProgramAccountError(f"Account is not a {account_type}")
    return parsed


def decode_global_state(data: bytes) -> GlobalState:
    parsed = _decode_account(GLOBAL_STATE_LAYOUT, "GlobalState", data)
    return GlobalState(
        current_cap=int(parsed.current_cap),
        next_burn_cap=int(parsed.next_burn_cap),
        quantum=int(parsed.quantum),
    )


def decode_user_account(data: bytes) -> UserAccount:
    parsed = _decode_account(USER_ACCOUNT_LAYOUT, "UserAccount", data)
    return UserAccount(
        locked_amount=int(parsed.locked_amount),
        unlock_time=int(parsed.unlock_time),
        last_lock_cap=int(parsed.last_lock_cap),
    )


def max_lockable_amount(balance: int, percent: int = 30) -> int:
    """Largest lock the program accepts for a token balance."""
    return balance * percent // 100


def find_vault_authority(program_id: Pubkey) -> tuple[Pubkey, int]:
    return Pubkey.find_program_address([VAULT_AUTHORITY_SEED], program_id)


def find_user_account(program_id: Pubkey, user: Pubkey) -> Pubkey:
    pda, _ = Pubkey.find_program_address([USER_ACCOUNT_SEED, bytes(user)], program_id)
    return pda


# ----------------------------
# instruction builders
# ----------------------------
def build_initialize_ix(
    program_id: Pubkey,
    *,
    global_state: Pubkey,
    admin: Pubkey,
    initial_cap: int,
    quantum: int,
) -> Instruction:
    data = instruction_discriminator("initialize") + INITIALIZE_ARGS.build(
        {
            "initial_cap": _check_range("initial_cap", initial_cap, U64_MAX),
            "quantum": _check_range("quantum", quantum, U64_MAX),
        }
    )
    accounts = [
        AccountMeta(global_state, is_signer=True, is_writable=True),
        AccountMeta(admin, is_signer=True, is_writable=True),
        AccountMeta(SYSTEM_PROGRAM_ID, is_signer=False, is_writable=False),
    ]
    return Instruction(program_id, data, accounts)


def build_update_cap_ix(
    program_id: Pubkey,
    *,
    admin: Pubkey,
    global_state: Pubkey,
    new_cap: int,
) -> Instruction:
    data = instruction_discriminator("update_cap") + UPDATE_CAP_ARGS.build(
        {"new_cap": _check_range("new_cap", new_cap, U64_MAX)}
    )
    accounts = [
        AccountMeta(admin, is_signer=True, is_writable=True),
        AccountMeta(global_state, is_signer=False, is_writable=True),
    ]
    return Instruction(program_id, data, accounts)


def build_lock_tokens_ix(
    program_id: Pubkey,
    *,
    user: Pubkey,
    user_token_account: Pubkey,
    vault_token_account: Pubkey,
    global_state: Pubkey,
    amount: int,
) -> Instruction:
    data = instruction_discriminator("lock_tokens") + LOCK_TOKENS_ARGS.build(
        {"amount": _check_range("amount", amount, U64_MAX)}
    )
    accounts = [
        AccountMeta(user, is_signer=True, is_writable=True),
        AccountMeta(find_user_account(program_id, user), is_signer=False, is_writable=True),
        AccountMeta(user_token_account, is_signer=False, is_writable=True),
        AccountMeta(vault_token_account, is_signer=False, is_writable=True),
        AccountMeta(TOKEN_PROGRAM_ID, is_signer=False, is_writable=False),
        AccountMeta(SYSTEM_PROGRAM_ID, is_signer=False, is_writable=False),
        AccountMeta(RENT, is_signer=False, is_writable=False),
        AccountMeta(global_state, is_signer=False, is_writable=True),
    ]
    return Instruction(program_id, data, accounts)


def build_burn_tokens_ix(
    program_id: Pubkey,
    *,
    admin: Pubkey,
    vault_token_account: Pubkey,
    token_mint: Pubkey,
    global_state: Pubkey,
    vault_authority_bump: int,
) -> Instruction:
    vault_authority, _ = find_vault_authority(program_id)
    data = instruction_discriminator("burn_tokens") + BURN_TOKENS_ARGS.build(
        {"vault_authority_bump": _check_range("vault_authority_bump", vault_authority_bump, U8_MAX)}
    )
    accounts = [
        AccountMeta(admin, is_signer=True, is_writable=True),
        AccountMeta(vault_token_account, is_signer=False, is_writable=True),
        AccountMeta(token_mint, is_signer=False, is_writable=True),
        AccountMeta(vault_authority, is_signer=False, is_writable=True),
        AccountMeta(TOKEN_PROGRAM_ID, is_signer=False, is_writable=False),
        AccountMeta(global_state, is_signer=False, is_writable=True),
    ]
    return Instruction(program_id, data, accounts)


# ----------------------------
# program client
# ----------------------------
class TokenLockProgram:
    def __init__(
        self,
        ledger: LedgerGateway,
        program_id: Pubkey,
        admin: Keypair,
        global_state: Optional[Pubkey] = None,
    ):
        self.ledger = ledger
        self.program_id = program_id
        self.admin = admin
        self.global_state = global_state

    def _require_global_state(self) -> Pubkey:
        if self.global_state is None:
            raise RuntimeError("global state not set; call initialize() first")
        return self.global_state

    def vault_authority(self) -> tuple[Pubkey, int]:
        return find_vault_authority(self.program_id)

    def user_account(self, user: Pubkey) -> Pubkey:
        return find_user_account(self.program_id, user)

    async def initialize(self, initial_cap: int, quantum: int) -> Signature:
        state_kp = Keypair()
        ix = build_initialize_ix(
            self.program_id,
            global_state=state_kp.pubkey(),
            admin=self.admin.pubkey(),
            initial_cap=initial_cap,
            quantum=quantum,
        )
        sig = await self.ledger.send_instructions([ix], self.admin, [state_kp])
        self.global_state = state_kp.pubkey()
        logger.info("initialize | global_state=%s | cap=%s quantum=%s | sig=%s", self.global_state, initial_cap, quantum, sig)
        return sig

    async def update_cap(self, new_cap: int) -> Signature:
        ix = build_update_cap_ix(
            self.program_id,
            admin=self.admin.pubkey(),
            global_state=self._require_global_state(),
            new_cap=new_cap,
        )
        sig = await self.ledger.send_instructions([ix], self.admin)
        logger.info("update_cap | cap=%s | sig=%s", new_cap, sig)
        return sig

    async def lock_tokens(
        self,
        user: Keypair,
        *,
        user_token_account: Pubkey,
        vault_token_account: Pubkey,
        amount: int,
    ) -> Signature:
        ix = build_lock_tokens_ix(
            self.program_id,
            user=user.pubkey(),
            user_token_account=user_token_account,
            vault_token_account=vault_token_account,
            global_state=self._require_global_state(),
            amount=amount,
        )
        sig = await self.ledger.send_instructions([ix], self.admin, [user])
        logger.info("lock_tokens | user=%s | amount=%s | sig=%s", user.pubkey(), amount, sig)
        return sig

    async def burn_tokens(
        self,
        *,
        vault_token_account: Pubkey,
        token_mint: Pubkey,
        vault_authority_bump: int | None = None,
    ) -> Signature:
        bump = vault_authority_bump if vault_authority_bump is not None else self.vault_authority()[1]
        ix = build_burn_tokens_ix(
            self.program_id,
            admin=self.admin.pubkey(),
            vault_token_account=vault_token_account,
            token_mint=token_mint,
            global_state=self._require_global_state(),
            vault_authority_bump=bump,
        )
        sig = await self.ledger.send_instructions([ix], self.admin)
        logger.info("burn_tokens | vault=%s | bump=%s | sig=%s", vault_token_account, bump, sig)
        return sig

    async def fetch_global_state(self) -> GlobalState:
        address = self._require_global_state()
        data = await self.ledger.get_account_data(address)
        if data is None:
            raise ProgramAccountError(f"GlobalState account {address} not found")
        return decode_global_state(data)

    async def fetch_user_account(self, user: Pubkey) -> Optional[UserAccount]:
        data = await self.ledger.get_account_data(self.user_account(user))
        if data is None:
            return None
        return decode_user_account(data)
