"""
Pytest Configuration and Fixtures

Every test gets its own SQLite database file, an in-memory Redis stand-in
and fake collaborators (board, planning, credential ledger).
"""
import os
import sys
from typing import Dict, List, Optional

import pytest
import pytest_asyncio
import redis

# Fast retries in tests; must be set before config is imported
os.environ.setdefault("RETRY_BACKOFF_SECONDS", "0")
os.environ.setdefault("OPENAI_API_KEY", "")
os.environ.setdefault("NOTIFY_WEBHOOK_URL", "")

# Add services/core to path for imports
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..', 'services', 'core'))

from board_adapter import BoardProvisioningAdapter  # noqa: E402
from credentials import CredentialLedger, MintReceipt  # noqa: E402
from database import build_engine, build_session_factory, create_all  # noqa: E402
from dependencies import build_container  # noqa: E402
from exceptions import CollaboratorError, TransientCollaboratorError  # noqa: E402
from infrastructure.uow import create_uow_provider  # noqa: E402
from notifications import WebhookNotifier  # noqa: E402
from planning_client import FALLBACK_QUESTIONS, NEUTRAL_ACKNOWLEDGMENT, fallback_plan  # noqa: E402
from reward_cache import RewardCache  # noqa: E402
from reward_ledger import RewardLedger  # noqa: E402
from schemas import (  # noqa: E402
    BoardCard,
    BoardList,
    BoardSnapshot,
    Checklist,
    ChecklistItem,
    ProgressInterpretation,
    ProvisionedBoard,
)


# =============================================================================
# Redis
# =============================================================================

class MockRedis:
    """Async Redis subset used by RewardCache"""

    def __init__(self):
        self._data = {}
        self.fail = False

    def _check(self):
        if self.fail:
            raise redis.ConnectionError("mock redis down")

    async def get(self, key: str):
        self._check()
        return self._data.get(key)

    async def set(self, key: str, value: str, ex: int = None):
        self._check()
        self._data[key] = value
        return True

    async def delete(self, *keys: str):
        self._check()
        for key in keys:
            self._data.pop(key, None)
        return len(keys)

    async def incrby(self, key: str, amount: int):
        self._check()
        value = int(self._data.get(key, 0)) + amount
        self._data[key] = str(value)
        return value

    async def decrby(self, key: str, amount: int):
        return await self.incrby(key, -amount)


@pytest.fixture
def mock_redis():
    return MockRedis()


# =============================================================================
# Database
# =============================================================================

@pytest_asyncio.fixture
async def db_engine(tmp_path):
    engine = build_engine(f"sqlite+aiosqlite:///{tmp_path / 'test.db'}")
    await create_all(engine)
    yield engine
    await engine.dispose()


@pytest.fixture
def uow_factory(db_engine):
    return create_uow_provider(build_session_factory(db_engine))


@pytest.fixture
def reward_cache(mock_redis):
    return RewardCache(mock_redis)


@pytest.fixture
def ledger(uow_factory, reward_cache):
    return RewardLedger(uow_factory, reward_cache)


# =============================================================================
# Fake collaborators
# =============================================================================

class FakeBoardService:
    """In-memory board service shared by all owners' adapters"""

    def __init__(self):
        self.boards: Dict[str, BoardSnapshot] = {}
        self.attachments: List[tuple] = []
        self.failures: Dict[str, Exception] = {}
        self.calls: List[str] = []
        self._ids = 0

    def next_id(self, prefix: str) -> str:
        self._ids += 1
        return f"{prefix}{self._ids}"

    def fail(self, operation: str, error: Exception) -> None:
        self.failures[operation] = error

    def adapter(self, owner: str) -> "FakeBoardAdapter":
        return FakeBoardAdapter(self, owner)

    def find_list(self, list_id: str) -> Optional[BoardList]:
        for board in self.boards.values():
            for board_list in board.lists:
                if board_list.id == list_id:
                    return board_list
        return None

    def find_card(self, card_id: str):
        for board in self.boards.values():
            for board_list in board.lists:
                for card in board_list.cards:
                    if card.id == card_id:
                        return board_list, card
        return None, None


class FakeBoardAdapter(BoardProvisioningAdapter):

    def __init__(self, service: FakeBoardService, owner: str):
        self.service = service
        self.owner = owner

    def _enter(self, operation: str) -> None:
        self.service.calls.append(operation)
        if operation in self.service.failures:
            raise self.service.failures[operation]

    async def create_board(self, title, desc):
        self._enter("create_board")
        board_id = self.service.next_id("board")
        self.service.boards[board_id] = BoardSnapshot(board_id=board_id, url=f"https://boards.test/{board_id}")
        return ProvisionedBoard(board_id=board_id, url=f"https://boards.test/{board_id}")

    async def create_lists(self, board_id, names):
        self._enter("create_lists")
        ids = {}
        for name in names:
            list_id = self.service.next_id("list")
            self.service.boards[board_id].lists.append(BoardList(id=list_id, name=name))
            ids[name] = list_id
        return ids

    async def create_card(self, list_id, title, desc, due_date=None):
        self._enter("create_card")
        card_id = self.service.next_id("card")
        self.service.find_list(list_id).cards.append(
            BoardCard(id=card_id, name=title, desc=desc, due=due_date, list_id=list_id)
        )
        return card_id

    async def create_checklist(self, card_id, items):
        self._enter("create_checklist")
        _, card = self.service.find_card(card_id)
        checklist = Checklist(
            id=self.service.next_id("checklist"),
            items=[ChecklistItem(id=self.service.next_id("item"), name=item) for item in items]
        )
        card.checklists.append(checklist)
        return checklist.id

    async def move_card(self, card_id, target_list_id):
        self._enter("move_card")
        source, card = self.service.find_card(card_id)
        source.cards = [c for c in source.cards if c.id != card_id]
        card.list_id = target_list_id
        self.service.find_list(target_list_id).cards.append(card)

    async def set_checklist_item_state(self, card_id, item_id, done):
        self._enter("set_checklist_item_state")
        _, card = self.service.find_card(card_id)
        for checklist in card.checklists:
            for item in checklist.items:
                if item.id == item_id:
                    item.state = "complete" if done else "incomplete"

    async def list_board(self, board_id):
        self._enter("list_board")
        return self.service.boards[board_id].model_copy(deep=True)

    async def attach_url(self, card_id, url, name):
        self._enter("attach_url")
        self.service.attachments.append((card_id, url, name))


class FakePlanning:
    """Deterministic planning collaborator"""

    def __init__(self):
        self.vision_url: Optional[str] = "https://images.test/vision.png"
        self.vision_error: Optional[Exception] = None
        self.interpretation = ProgressInterpretation(reply=NEUTRAL_ACKNOWLEDGMENT)
        self.plan_error: Optional[Exception] = None
        self.plan_calls = 0
        self.interpret_calls = 0

    async def generate_questions(self, initial_goal):
        return list(FALLBACK_QUESTIONS)

    async def structure_plan(self, answers):
        self.plan_calls += 1
        if self.plan_error is not None:
            raise self.plan_error
        return fallback_plan(answers)

    async def generate_vision_artifact(self, answers):
        if self.vision_error is not None:
            raise self.vision_error
        return self.vision_url

    async def interpret_progress(self, message, snapshot):
        self.interpret_calls += 1
        return self.interpretation


class FakeCredentialLedger(CredentialLedger):
    """Chain stand-in: counts mints, can fail transiently after landing"""

    def __init__(self, configured: bool = True):
        self.configured = configured
        self.minted: Dict[tuple, str] = {}
        self.mint_calls = 0
        self.transient_failures = 0
        self.land_before_failing = False

    def missing_settings(self):
        return [] if self.configured else ["CREDENTIAL_RPC_URL"]

    async def mint(self, to, goal_id, metadata_uri):
        self.mint_calls += 1
        if self.transient_failures > 0:
            self.transient_failures -= 1
            if self.land_before_failing:
                self.minted[(goal_id, to)] = str(len(self.minted) + 1)
            raise TransientCollaboratorError(collaborator="credential_ledger", message="rpc timeout")
        token_id = str(len(self.minted) + 1)
        self.minted[(goal_id, to)] = token_id
        return MintReceipt(token_id=token_id, transaction_ref=f"0xtx{token_id}")

    async def is_minted(self, goal_id, to):
        return (goal_id, to) in self.minted

    async def token_of(self, goal_id, to):
        return self.minted[(goal_id, to)]


@pytest.fixture
def board_service():
    return FakeBoardService()


@pytest.fixture
def planning():
    return FakePlanning()


@pytest.fixture
def credential_ledger():
    return FakeCredentialLedger()


@pytest.fixture
def services(uow_factory, reward_cache, planning, board_service, credential_ledger):
    return build_container(
        uow=uow_factory,
        cache=reward_cache,
        planning=planning,
        board_adapter_factory=board_service.adapter,
        credential_ledger=credential_ledger,
        webhook=WebhookNotifier(url="")
    )


MARATHON_ANSWERS = [
    "Run a marathon",
    "To prove to myself I can commit to something hard",
    "By October, in 16 weeks",
    "In the park near my home and on the treadmill",
    "My running club and a coach",
    "Follow a structured plan with four runs a week",
]


@pytest.fixture
def marathon_answers():
    return list(MARATHON_ANSWERS)


@pytest.fixture
def plan_error():
    return CollaboratorError(collaborator="planning", message="model unavailable")
