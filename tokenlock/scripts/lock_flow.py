# tokenlock/scripts/lock_flow.py
"""
End-to-end run against the token-lock program:

initialize -> mint + token accounts -> airdrop -> mint/transfer ->
pool market cap -> update_cap -> lock_tokens -> vault authority to PDA ->
burn_tokens after a delay.
"""
from __future__ import annotations

import argparse
import asyncio
import json
import logging
from dataclasses import dataclass, field, replace
from typing import Any, Awaitable, Callable, Dict, Optional

from solders.keypair import Keypair
from solders.pubkey import Pubkey

from tokenlock.config.settings import Settings, get_settings
from tokenlock.jobs.scheduler import ScheduledCallHandle, schedule_call
from tokenlock.services.ledger import LedgerGateway, load_keypair
from tokenlock.services.pool_reader import estimate_pool_value
from tokenlock.services.prices import PriceLookup, StaticPriceTable
from tokenlock.services.token_lock import TokenLockProgram, max_lockable_amount
from tokenlock.services.tokens import TokenMint, to_base_units

logger = logging.getLogger("tokenlock.lock_flow")

BURN_JOB_ID = "burn_tokens"


@dataclass
class LockFlowResult:
    program_id: str
    global_state: Optional[str] = None
    mint: Optional[str] = None
    user: Optional[str] = None
    vault_authority: Optional[str] = None
    vault_authority_bump: Optional[int] = None
    vault_token_account: Optional[str] = None
    user_token_account: Optional[str] = None
    market_cap: Optional[int] = None
    scaled_cap: Optional[int] = None
    lock_amount: Optional[int] = None
    signatures: Dict[str, str] = field(default_factory=dict)
    burn: Optional[Dict[str, Any]] = None
    completed: bool = False
    error: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "program_id": self.program_id,
            "global_state": self.global_state,
            "mint": self.mint,
            "user": self.user,
            "vault_authority": self.vault_authority,
            "vault_authority_bump": self.vault_authority_bump,
            "vault_token_account": self.vault_token_account,
            "user_token_account": self.user_token_account,
            "market_cap": self.market_cap,
            "scaled_cap": self.scaled_cap,
            "lock_amount": self.lock_amount,
            "signatures": self.signatures,
            "burn": self.burn,
            "completed": self.completed,
            "error": self.error,
        }


class LockFlowAborted(RuntimeError):
    """A step before the burn failed; `result` holds what was done up to that point."""

    def __init__(self, result: LockFlowResult):
        self.result = result
        super().__init__(result.error)


async def _lock_steps(
    result: LockFlowResult,
    program: TokenLockProgram,
    *,
    settings: Settings,
    ledger: LedgerGateway,
    admin: Keypair,
    user: Keypair | None,
    prices: PriceLookup | None,
    create_mint_fn: Callable[..., Any],
) -> Callable[[], Awaitable[str]]:
    """Run everything up to the vault handover and return the burn call to schedule."""
    sigs = result.signatures

    sigs["initialize"] = str(await program.initialize(settings.INITIAL_CAP, settings.QUANTUM))
    result.global_state = str(program.global_state)

    mint = await create_mint_fn(ledger, admin, settings.TOKEN_DECIMALS)
    result.mint = str(mint.address)

    vault_authority, bump = program.vault_authority()
    result.vault_authority = str(vault_authority)
    result.vault_authority_bump = bump
    logger.info("vault authority | pda=%s | bump=%s", vault_authority, bump)

    # the admin's associated account doubles as the vault
    vault_token_account = await mint.get_or_create_account(admin.pubkey())
    result.vault_token_account = str(vault_token_account)

    user = user or Keypair()
    result.user = str(user.pubkey())
    sigs["airdrop"] = str(await ledger.airdrop(user.pubkey(), settings.AIRDROP_LAMPORTS))

    user_token_account = await mint.get_or_create_account(user.pubkey())
    result.user_token_account = str(user_token_account)
    admin_token_account = await mint.get_or_create_account(admin.pubkey())

    mint_amount = to_base_units(settings.MINT_AMOUNT_TOKENS, settings.TOKEN_DECIMALS)
    sigs["mint_to_admin"] = str(await mint.mint_to(admin_token_account, mint_amount))
    sigs["mint_to_user"] = str(await mint.mint_to(user_token_account, mint_amount))

    logger.info(
        "balances before transfer | user=%s | admin=%s",
        await ledger.token_balance(user_token_account),
        await ledger.token_balance(admin_token_account),
    )

    transfer_amount = to_base_units(settings.TRANSFER_AMOUNT_TOKENS, settings.TOKEN_DECIMALS)
    sigs["transfer"] = str(await mint.transfer(admin_token_account, user_token_account, admin, transfer_amount))

    valuation = await estimate_pool_value(
        settings.POOL_ID,
        ledger=ledger,
        prices=prices or StaticPriceTable(settings.PRICE_TABLE),
        base_symbol=settings.BASE_SYMBOL,
        quote_symbol=settings.QUOTE_SYMBOL,
    )
    result.market_cap = valuation.total
    result.scaled_cap = valuation.total // settings.CAP_SCALE
    sigs["update_cap"] = str(await program.update_cap(result.scaled_cap))

    user_balance = await ledger.token_balance(user_token_account)
    result.lock_amount = max_lockable_amount(user_balance, settings.LOCK_PERCENT)
    logger.info("lock | balance=%s | max_lockable=%s", user_balance, result.lock_amount)
    sigs["lock_tokens"] = str(
        await program.lock_tokens(
            user,
            user_token_account=user_token_account,
            vault_token_account=vault_token_account,
            amount=result.lock_amount,
        )
    )

    sigs["set_authority"] = str(await mint.set_account_owner(vault_token_account, admin, vault_authority))

    async def _burn() -> str:
        sig = await program.burn_tokens(
            vault_token_account=vault_token_account,
            token_mint=mint.address,
            vault_authority_bump=bump,
        )
        return str(sig)

    return _burn


async def execute_lock_flow(
    *,
    settings: Settings,
    ledger: LedgerGateway,
    admin: Keypair,
    user: Keypair | None = None,
    prices: PriceLookup | None = None,
    create_mint_fn: Callable[..., Any] = TokenMint.create,
    schedule_fn: Callable[..., ScheduledCallHandle] = schedule_call,
    wait_for_burn: bool = True,
) -> LockFlowResult:
    program = TokenLockProgram(ledger, Pubkey.from_string(settings.PROGRAM_ID), admin)
    result = LockFlowResult(program_id=str(program.program_id))

    try:
        burn = await _lock_steps(
            result,
            program,
            settings=settings,
            ledger=ledger,
            admin=admin,
            user=user,
            prices=prices,
            create_mint_fn=create_mint_fn,
        )
    except Exception as exc:
        result.error = f"{type(exc).__name__}: {exc}"[:300]
        raise LockFlowAborted(result) from exc

    sigs = result.signatures
    handle = schedule_fn(BURN_JOB_ID, burn, settings.BURN_DELAY_SECONDS)

    if not wait_for_burn:
        result.burn = handle.info()
        result.completed = True
        return result

    try:
        sigs["burn_tokens"] = await handle.wait()
        result.completed = True
    except asyncio.CancelledError:
        result.error = "burn_tokens cancelled"
    except Exception as exc:
        result.error = f"burn_tokens failed: {exc!r}"[:300]
    result.burn = handle.info()
    return result


async def _run(settings: Settings) -> LockFlowResult:
    admin = load_keypair(settings.WALLET_PATH)
    async with LedgerGateway.from_settings(settings) as ledger:
        return await execute_lock_flow(settings=settings, ledger=ledger, admin=admin)


def main() -> None:
    parser = argparse.ArgumentParser(description="Run the token-lock flow against a cluster")
    parser.add_argument("--pool", default=None, help="pool account used for the market cap")
    parser.add_argument("--burn-delay", type=float, default=None, help="seconds before burn_tokens")
    args = parser.parse_args()

    settings = get_settings()
    if args.pool:
        settings = replace(settings, POOL_ID=args.pool)
    if args.burn_delay is not None:
        settings = replace(settings, BURN_DELAY_SECONDS=args.burn_delay)

    logging.basicConfig(level=settings.LOG_LEVEL, format="%(asctime)s %(levelname)s %(name)s | %(message)s")

    try:
        result = asyncio.run(_run(settings))
    except KeyboardInterrupt:
        raise SystemExit(130)
    except LockFlowAborted as exc:
        logger.exception("lock flow aborted")
        print(json.dumps(exc.result.to_dict()))
        raise SystemExit(1)
    except Exception as exc:
        logger.exception("lock flow aborted")
        failure = LockFlowResult(program_id=settings.PROGRAM_ID, error=f"{type(exc).__name__}: {exc}")
        print(json.dumps(failure.to_dict()))
        raise SystemExit(1)

    print(json.dumps(result.to_dict()))
    raise SystemExit(0 if result.completed else 1)


if __name__ == "__main__":
    main()
