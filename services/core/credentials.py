"""
Soulbound Credentials

One non-transferable credential per (goal, owner address). Ownership is
created only by minting; every transfer path is refused.

    registry = SoulboundCredentialRegistry(uow_factory, Web3CredentialLedger.from_config())
    credential, created = await registry.mint(address, goal.id, metadata_uri)

Author: Goal Forge Core Team
"""
import asyncio
import hashlib
import json
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Optional, Tuple, List

from sqlalchemy.exc import IntegrityError
from web3 import Web3
from web3.exceptions import ContractLogicError, TimeExhausted

from config import (
    CREDENTIAL_RPC_URL,
    CREDENTIAL_CONTRACT_ADDRESS,
    CREDENTIAL_MINTER_KEY,
    CREDENTIAL_METADATA_BASE_URI,
    CREDENTIAL_EXTERNAL_URL,
)
from error_handler import call_with_retry
from exceptions import (
    CollaboratorError,
    CredentialMetadataImmutable,
    LedgerNotConfigured,
    SoulboundTransferForbidden,
    TransientCollaboratorError,
)
from identity import checksum_address
from logging_config import get_logger
from models import Credential

logger = get_logger(__name__)

ZERO_ADDRESS = "0x0000000000000000000000000000000000000000"
PLACEHOLDER_IMAGE = "https://goalforge.app/credential-placeholder.png"

CREDENTIAL_ABI = [
    {
        "type": "function",
        "name": "mint",
        "stateMutability": "nonpayable",
        "inputs": [
            {"name": "to", "type": "address"},
            {"name": "goalId", "type": "string"},
            {"name": "uri", "type": "string"},
        ],
        "outputs": [{"name": "", "type": "uint256"}],
    },
    {
        "type": "function",
        "name": "isMinted",
        "stateMutability": "view",
        "inputs": [
            {"name": "goalId", "type": "string"},
            {"name": "owner", "type": "address"},
        ],
        "outputs": [{"name": "", "type": "bool"}],
    },
    {
        "type": "function",
        "name": "tokenOf",
        "stateMutability": "view",
        "inputs": [
            {"name": "goalId", "type": "string"},
            {"name": "owner", "type": "address"},
        ],
        "outputs": [{"name": "", "type": "uint256"}],
    },
    {
        "type": "event",
        "name": "Transfer",
        "anonymous": False,
        "inputs": [
            {"name": "from", "type": "address", "indexed": True},
            {"name": "to", "type": "address", "indexed": True},
            {"name": "tokenId", "type": "uint256", "indexed": True},
        ],
    },
]


@dataclass
class MintReceipt:
    token_id: str
    transaction_ref: Optional[str] = None


# =============================================================================
# Metadata
# =============================================================================

def build_credential_metadata(goal, owner_address: str, base_uri: str = CREDENTIAL_METADATA_BASE_URI) -> Tuple[dict, str]:
    """
    Deterministic metadata document and its content-addressed URI.

    The same goal and owner always produce the same URI, so a retried
    mint never points at a different document.
    """
    weeks = goal.weekly_tasks or []
    start_date = goal.created_at.date().isoformat() if goal.created_at else None
    metadata = {
        "name": f"Proof of Commitment: {goal.title}",
        "description": (
            f"A soulbound credential representing commitment to the goal: {goal.title}. "
            "It cannot be transferred and serves as proof of dedication to achieving this goal."
        ),
        "image": goal.vision_url or PLACEHOLDER_IMAGE,
        "attributes": [
            {"trait_type": "Goal Type", "value": "Personal Achievement"},
            {"trait_type": "Milestones", "value": len(weeks)},
            {"trait_type": "Start Date", "value": start_date},
            {"trait_type": "Commitment Level", "value": "High"},
        ],
        "external_url": f"{CREDENTIAL_EXTERNAL_URL}/{goal.id}",
        "goal_id": goal.id,
        "owner": owner_address,
    }
    digest = hashlib.sha256(json.dumps(metadata, sort_keys=True).encode("utf-8")).hexdigest()
    return metadata, f"{base_uri.rstrip('/')}/{digest}.json"


# =============================================================================
# Ledger collaborator
# =============================================================================

class CredentialLedger(ABC):
    """Chain-side contract for credential minting"""

    @abstractmethod
    def missing_settings(self) -> List[str]:
        """Names of settings that keep the ledger from being usable."""

    @abstractmethod
    async def mint(self, to: str, goal_id: str, metadata_uri: str) -> MintReceipt:
        ...

    @abstractmethod
    async def is_minted(self, goal_id: str, to: str) -> bool:
        ...

    @abstractmethod
    async def token_of(self, goal_id: str, to: str) -> str:
        ...


class Web3CredentialLedger(CredentialLedger):
    """
    JSON-RPC client for the deployed credential contract.

    web3's HTTP provider is synchronous; calls run in the default executor.
    """

    def __init__(self, rpc_url: str, contract_address: str, minter_key: str, receipt_timeout: float = 120):
        self._rpc_url = rpc_url
        self._contract_address = contract_address
        self._minter_key = minter_key
        self._receipt_timeout = receipt_timeout
        self._client: Optional[Web3] = None
        self._contract = None
        self._account = None

    @classmethod
    def from_config(cls) -> "Web3CredentialLedger":
        return cls(CREDENTIAL_RPC_URL, CREDENTIAL_CONTRACT_ADDRESS, CREDENTIAL_MINTER_KEY)

    def missing_settings(self) -> List[str]:
        missing = []
        if not self._rpc_url:
            missing.append("CREDENTIAL_RPC_URL")
        if not self._contract_address:
            missing.append("CREDENTIAL_CONTRACT_ADDRESS")
        if not self._minter_key:
            missing.append("CREDENTIAL_MINTER_KEY")
        return missing

    def _connect(self):
        if self._client is None:
            self._client = Web3(Web3.HTTPProvider(self._rpc_url, request_kwargs={"timeout": 10}))
            self._contract = self._client.eth.contract(
                address=Web3.to_checksum_address(self._contract_address),
                abi=CREDENTIAL_ABI
            )
            self._account = self._client.eth.account.from_key(self._minter_key)
        return self._client, self._contract, self._account

    async def _run(self, name: str, fn):
        loop = asyncio.get_running_loop()
        try:
            return await loop.run_in_executor(None, fn)
        except (OSError, TimeExhausted) as e:
            # requests' connection and timeout errors are OSError subclasses
            raise TransientCollaboratorError(
                collaborator="credential_ledger",
                message=f"{name} failed: {e}"
            ) from e
        except ContractLogicError as e:
            raise CollaboratorError(
                collaborator="credential_ledger",
                message=f"{name} reverted: {e}"
            ) from e

    async def mint(self, to: str, goal_id: str, metadata_uri: str) -> MintReceipt:
        def _mint() -> MintReceipt:
            client, contract, account = self._connect()
            tx = contract.functions.mint(to, goal_id, metadata_uri).build_transaction({
                "from": account.address,
                "nonce": client.eth.get_transaction_count(account.address),
            })
            signed = account.sign_transaction(tx)
            tx_hash = client.eth.send_raw_transaction(signed.raw_transaction)
            receipt = client.eth.wait_for_transaction_receipt(tx_hash, timeout=self._receipt_timeout)
            events = contract.events.Transfer().process_receipt(receipt)
            if not events:
                raise ContractLogicError("mint receipt carries no Transfer event")
            return MintReceipt(
                token_id=str(events[0]["args"]["tokenId"]),
                transaction_ref=tx_hash.hex()
            )

        return await self._run("mint", _mint)

    async def is_minted(self, goal_id: str, to: str) -> bool:
        def _is_minted() -> bool:
            _, contract, _ = self._connect()
            return bool(contract.functions.isMinted(goal_id, to).call())

        return await self._run("isMinted", _is_minted)

    async def token_of(self, goal_id: str, to: str) -> str:
        def _token_of() -> str:
            _, contract, _ = self._connect()
            return str(contract.functions.tokenOf(goal_id, to).call())

        return await self._run("tokenOf", _token_of)


# =============================================================================
# Registry
# =============================================================================

class SoulboundCredentialRegistry:
    """Local record of minted credentials, guarding the soulbound invariants"""

    def __init__(self, uow_factory, ledger: Optional[CredentialLedger] = None):
        self._uow = uow_factory
        self._ledger = ledger

    def ledger_missing_settings(self) -> List[str]:
        if self._ledger is None:
            return ["credential ledger"]
        return self._ledger.missing_settings()

    async def get(self, goal_id: str, owner_address: str) -> Optional[Credential]:
        async with self._uow() as uow:
            return await uow.credentials.get(uow.session, goal_id, checksum_address(owner_address))

    async def mint(self, to: str, goal_id: str, metadata_uri: str) -> Tuple[Credential, bool]:
        """
        Mint the credential for (goal_id, to). Returns (credential, created).

        A repeat for the same pair returns the existing record. On a
        transient ledger error the chain is asked whether the mint landed
        before the single retry.

        Raises:
            MalformedAddress: ``to`` is not an address
            LedgerNotConfigured: ledger endpoint, contract or key missing
        """
        address = checksum_address(to)

        existing = await self.get(goal_id, address)
        if existing is not None:
            logger.info("credential_mint_noop", goal_id=goal_id, owner_address=address, token_id=existing.token_id)
            return existing, False

        missing = self.ledger_missing_settings()
        if missing:
            raise LedgerNotConfigured(missing)

        landed = {"minted": False}

        async def _check_before_retry() -> bool:
            if await self._ledger.is_minted(goal_id, address):
                landed["minted"] = True
                return False
            return True

        try:
            receipt = await call_with_retry(
                lambda: self._ledger.mint(address, goal_id, metadata_uri),
                name="credential_mint",
                before_retry=_check_before_retry
            )
        except TransientCollaboratorError:
            if not landed["minted"]:
                raise
            receipt = MintReceipt(token_id=await self._ledger.token_of(goal_id, address))
            logger.info("credential_mint_landed_before_retry", goal_id=goal_id, token_id=receipt.token_id)

        try:
            async with self._uow() as uow:
                credential = Credential(
                    token_id=receipt.token_id,
                    owner_address=address,
                    goal_id=goal_id,
                    metadata_uri=metadata_uri,
                    transaction_ref=receipt.transaction_ref
                )
                await uow.credentials.add(uow.session, credential)
        except IntegrityError:
            winner = await self.get(goal_id, address)
            logger.info("credential_record_race_lost", goal_id=goal_id, owner_address=address)
            return winner, False

        logger.info(
            "credential_minted",
            goal_id=goal_id,
            owner_address=address,
            token_id=credential.token_id,
            transaction_ref=credential.transaction_ref
        )
        return credential, True

    async def update_metadata(self, token_id: str, metadata_uri: str) -> None:
        """Metadata is fixed at mint time."""
        raise CredentialMetadataImmutable(token_id)

    def transfer_from(self, from_address: str, to_address: str, token_id) -> None:
        raise SoulboundTransferForbidden(token_id, from_address, to_address)

    def safe_transfer_from(self, from_address: str, to_address: str, token_id, data: Optional[bytes] = None) -> None:
        raise SoulboundTransferForbidden(token_id, from_address, to_address)

    @staticmethod
    def transfer_allowed(from_address: str, to_address: str) -> bool:
        """Only the implicit mint path (from the zero address) creates ownership."""
        return from_address == ZERO_ADDRESS and to_address != ZERO_ADDRESS
