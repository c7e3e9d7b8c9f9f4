"""SPL token helpers: mint creation, associated accounts, mint/transfer, authority changes."""

from __future__ import annotations

import logging

from solders.keypair import Keypair
from solders.pubkey import Pubkey
from solders.signature import Signature
from spl.token.async_client import AsyncToken
from spl.token.constants import TOKEN_PROGRAM_ID
from spl.token.instructions import AuthorityType, get_associated_token_address

from tokenlock.services.ledger import LedgerGateway

logger = logging.getLogger("tokenlock.tokens")


def to_base_units(tokens: int, decimals: int) -> int:
    return tokens * 10**decimals


class TokenMint:
    """One SPL mint whose mint authority and fee payer is `payer`."""

    def __init__(self, ledger: LedgerGateway, token: AsyncToken, payer: Keypair, decimals: int):
        self.ledger = ledger
        self.token = token
        self.payer = payer
        self.decimals = decimals

    @property
    def address(self) -> Pubkey:
        return self.token.pubkey

    @classmethod
    async def create(cls, ledger: LedgerGateway, payer: Keypair, decimals: int) -> "TokenMint":
        token = await AsyncToken.create_mint(
            ledger.client,
            payer,
            payer.pubkey(),
            decimals,
            TOKEN_PROGRAM_ID,
        )
        logger.info("mint created | %s | decimals=%s", token.pubkey, decimals)
        return cls(ledger, token, payer, decimals)

    async def get_or_create_account(self, owner: Pubkey) -> Pubkey:
        address = get_associated_token_address(owner, self.address)
        if await self.ledger.get_account_data(address) is not None:
            return address
        created = await self.token.create_associated_token_account(owner)
        logger.info("token account created | owner=%s | account=%s", owner, created)
        return created

    async def mint_to(self, destination: Pubkey, amount: int) -> Signature:
        resp = await self.token.mint_to(destination, self.payer, amount)
        logger.info("minted | to=%s | amount=%s", destination, amount)
        return resp.value

    async def transfer(self, source: Pubkey, destination: Pubkey, owner: Keypair, amount: int) -> Signature:
        resp = await self.token.transfer(source, destination, owner, amount)
        logger.info("transferred | %s -> %s | amount=%s", source, destination, amount)
        return resp.value

    async def set_account_owner(self, account: Pubkey, current_owner: Keypair, new_owner: Pubkey) -> Signature:
        resp = await self.token.set_authority(
            account,
            current_owner,
            AuthorityType.ACCOUNT_OWNER,
            new_owner,
        )
        logger.info("account owner changed | account=%s | new_owner=%s", account, new_owner)
        return resp.value
