"""
Identity - HD wallet derivation

Wallets are derived from a 12-word BIP-39 recovery phrase at the first
Ethereum account path. Only the public address is persisted; the phrase
is returned to the caller exactly once, at creation.

Author: Goal Forge Core Team
"""
from dataclasses import dataclass
from datetime import datetime
from typing import Optional

from eth_account import Account
from eth_utils import ValidationError as EthValidationError
from sqlalchemy.exc import IntegrityError
from web3 import Web3

from exceptions import InvalidRecoveryPhrase, MalformedAddress, WalletAlreadyExists
from logging_config import get_logger
from models import Wallet

logger = get_logger(__name__)

Account.enable_unaudited_hdwallet_features()

DERIVATION_PATH = "m/44'/60'/0'/0/0"
PHRASE_WORDS = 12


@dataclass
class CreatedWallet:
    owner: str
    address: str
    recovery_phrase: str
    created_at: datetime


def _normalize_phrase(phrase: str) -> str:
    return " ".join((phrase or "").lower().split())


def recover_address(phrase: str) -> str:
    """
    Re-derive the checksummed address for ``phrase``.

    Deterministic: the same phrase always yields the same address.

    Raises:
        InvalidRecoveryPhrase: wrong word count, unknown word or bad checksum
    """
    normalized = _normalize_phrase(phrase)
    if len(normalized.split()) != PHRASE_WORDS:
        raise InvalidRecoveryPhrase()
    try:
        account = Account.from_mnemonic(normalized, account_path=DERIVATION_PATH)
    except (EthValidationError, ValueError) as e:
        raise InvalidRecoveryPhrase() from e
    return account.address


def is_valid_address(address: Optional[str]) -> bool:
    if not address:
        return False
    return Web3.is_address(address)


def checksum_address(address: str) -> str:
    if not is_valid_address(address):
        raise MalformedAddress(address)
    return Web3.to_checksum_address(address)


def format_address(address: Optional[str]) -> str:
    """0x1234...abcd for display"""
    if not is_valid_address(address):
        return "Invalid Address"
    return f"{address[:6]}...{address[-4:]}"


class WalletService:
    """Owner -> address mapping over the wallets table"""

    def __init__(self, uow_factory):
        self._uow = uow_factory

    async def create_wallet(self, owner: str) -> CreatedWallet:
        """
        Generate a fresh phrase, derive the address and store only the address.

        Raises:
            WalletAlreadyExists: the owner already has a wallet
        """
        async with self._uow() as uow:
            existing = await uow.wallets.get(uow.session, owner)
            if existing is not None:
                raise WalletAlreadyExists(owner, existing.address)

        account, phrase = Account.create_with_mnemonic(
            num_words=PHRASE_WORDS,
            account_path=DERIVATION_PATH
        )

        try:
            async with self._uow() as uow:
                wallet = Wallet(owner=owner, address=account.address)
                await uow.wallets.add(uow.session, wallet)
        except IntegrityError as e:
            # Concurrent create for the same owner
            async with self._uow() as uow:
                existing = await uow.wallets.get(uow.session, owner)
            raise WalletAlreadyExists(owner, existing.address if existing else "") from e

        logger.info("wallet_created", owner=owner, address=wallet.address)
        return CreatedWallet(
            owner=owner,
            address=wallet.address,
            recovery_phrase=phrase,
            created_at=wallet.created_at
        )

    async def get_wallet(self, owner: str) -> Optional[Wallet]:
        async with self._uow() as uow:
            return await uow.wallets.get(uow.session, owner)

    async def recover_wallet(self, owner: str, phrase: str) -> Wallet:
        """
        Re-link an owner to the wallet behind ``phrase``.

        Returns the stored wallet when it already matches; stores it when the
        owner has none; refuses to replace a different wallet.
        """
        address = recover_address(phrase)

        async with self._uow() as uow:
            existing = await uow.wallets.get(uow.session, owner)
            if existing is not None:
                if existing.address != address:
                    raise WalletAlreadyExists(owner, existing.address)
                return existing

            wallet = Wallet(owner=owner, address=address)
            await uow.wallets.add(uow.session, wallet)

        logger.info("wallet_recovered", owner=owner, address=address)
        return wallet
