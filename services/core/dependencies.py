"""
Service wiring for the API

    container = build_container()
    app.dependency_overrides[get_container] = lambda: test_container
"""
from dataclasses import dataclass
from functools import partial
from typing import Callable, Optional

from fastapi import Header, HTTPException

from board_adapter import BoardLinkStore, TrelloBoardAdapter
from certificates import CertificateService
from conversation_service import ConversationService
from credentials import SoulboundCredentialRegistry, Web3CredentialLedger
from goal_completion import GoalCompletionService
from goal_materialization_saga import GoalMaterializationSaga
from identity import WalletService
from infrastructure.uow import UoWProvider, create_uow_provider
from notifications import CompositeNotifier, InMemoryNotifier, WebhookNotifier
from planning_client import PlanningClient
from progress_interpreter import ProgressInterpreter
from reward_cache import RewardCache
from reward_ledger import RewardLedger


@dataclass
class ServiceContainer:
    uow: UoWProvider
    link_store: BoardLinkStore
    board_adapter_factory: Callable
    planning: PlanningClient
    ledger: RewardLedger
    wallets: WalletService
    credentials: SoulboundCredentialRegistry
    certificates: CertificateService
    outbox: InMemoryNotifier
    notifier: CompositeNotifier
    completion: GoalCompletionService
    interpreter: ProgressInterpreter
    saga: GoalMaterializationSaga
    conversations: ConversationService


def build_container(
    uow: Optional[UoWProvider] = None,
    cache: Optional[RewardCache] = None,
    planning=None,
    board_adapter_factory: Optional[Callable] = None,
    credential_ledger=None,
    webhook: Optional[WebhookNotifier] = None
) -> ServiceContainer:
    """Assemble every service; any collaborator can be swapped in."""
    uow = uow or create_uow_provider()
    link_store = BoardLinkStore(uow)
    if board_adapter_factory is None:
        board_adapter_factory = partial(_trello_adapter, link_store)
    planning = planning or PlanningClient()
    ledger = RewardLedger(uow, cache or RewardCache.from_url())
    wallets = WalletService(uow)
    credentials = SoulboundCredentialRegistry(uow, credential_ledger or Web3CredentialLedger.from_config())
    certificates = CertificateService(uow, ledger)
    outbox = InMemoryNotifier()
    notifier = CompositeNotifier(outbox, webhook or WebhookNotifier())
    completion = GoalCompletionService(uow, ledger, certificates, notifier)
    interpreter = ProgressInterpreter(uow, ledger, planning, completion)
    saga = GoalMaterializationSaga(
        uow, planning, board_adapter_factory, link_store, ledger,
        wallets, credentials, certificates, notifier
    )
    conversations = ConversationService(
        uow, link_store, planning, saga, interpreter, board_adapter_factory, ledger
    )
    return ServiceContainer(
        uow=uow,
        link_store=link_store,
        board_adapter_factory=board_adapter_factory,
        planning=planning,
        ledger=ledger,
        wallets=wallets,
        credentials=credentials,
        certificates=certificates,
        outbox=outbox,
        notifier=notifier,
        completion=completion,
        interpreter=interpreter,
        saga=saga,
        conversations=conversations
    )


def _trello_adapter(link_store: BoardLinkStore, owner: str) -> TrelloBoardAdapter:
    return TrelloBoardAdapter(owner, link_store)


_container: Optional[ServiceContainer] = None


def get_container() -> ServiceContainer:
    global _container
    if _container is None:
        _container = build_container()
    return _container


async def get_owner(x_owner_id: Optional[str] = Header(default=None)) -> str:
    """Caller identity from the X-Owner-Id header"""
    if not x_owner_id or not x_owner_id.strip():
        raise HTTPException(status_code=401, detail="X-Owner-Id header required")
    return x_owner_id.strip()
