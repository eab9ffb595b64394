from pydantic import BaseModel, ConfigDict, Field, field_validator
from typing import Literal, Optional, List, Dict, Any
from datetime import datetime

from domain.conversation_state import SLOT_ORDER

# =============================================================================
# Goal-setting answers and plans
# =============================================================================

class SlotAnswers(BaseModel):
    """The six goal-setting answers, in prompt order"""
    what: str
    why: str
    when: str
    where: str
    who: str
    how: str

    @classmethod
    def from_recorded(cls, recorded: List[Dict[str, str]]) -> "SlotAnswers":
        """Build from the session's ordered [{"slot", "answer"}] list."""
        from exceptions import MissingSlot

        by_slot = {item["slot"]: item["answer"] for item in recorded}
        for slot in SLOT_ORDER:
            if not (by_slot.get(slot) or "").strip():
                raise MissingSlot(slot)
        return cls(**{slot: by_slot[slot] for slot in SLOT_ORDER})

    def as_prompt(self) -> str:
        return "\n".join(f"{slot.capitalize()}: {getattr(self, slot)}" for slot in SLOT_ORDER)


class TaskItem(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    name: str
    description: Optional[str] = None
    estimated_time: Optional[str] = Field(default=None, alias="estimatedTime")


class WeeklyTask(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    week_number: int = Field(alias="weekNumber", ge=1)
    description: str = ""
    tasks: List[TaskItem] = Field(default_factory=list)


class GoalPlan(BaseModel):
    """Structured plan returned by the planning collaborator"""
    model_config = ConfigDict(populate_by_name=True)

    title: str
    description: str = ""
    weekly_tasks: List[WeeklyTask] = Field(alias="weeklyTasks")
    total_weeks: Optional[int] = Field(default=None, alias="totalWeeks")
    estimated_completion: Optional[str] = Field(default=None, alias="estimatedCompletion")

    @field_validator("weekly_tasks")
    @classmethod
    def _ordered_weeks(cls, value: List[WeeklyTask]) -> List[WeeklyTask]:
        return sorted(value, key=lambda week: week.week_number)

    def as_text(self) -> str:
        lines = [f"{self.title}", self.description, ""]
        for week in self.weekly_tasks:
            lines.append(f"Week {week.week_number}: {week.description}")
            for task in week.tasks:
                lines.append(f"  - {task.name}")
        return "\n".join(line for line in lines if line is not None).strip()


# =============================================================================
# Board snapshot (collaborator-owned data, referenced not duplicated)
# =============================================================================

class ChecklistItem(BaseModel):
    id: str
    name: str
    state: Literal["complete", "incomplete"] = "incomplete"


class Checklist(BaseModel):
    id: str
    name: str = "Tasks"
    items: List[ChecklistItem] = Field(default_factory=list)


class BoardCard(BaseModel):
    id: str
    name: str
    desc: str = ""
    due: Optional[str] = None
    due_complete: bool = False
    list_id: Optional[str] = None
    checklists: List[Checklist] = Field(default_factory=list)


class BoardList(BaseModel):
    id: str
    name: str
    cards: List[BoardCard] = Field(default_factory=list)


class BoardSnapshot(BaseModel):
    board_id: str
    url: Optional[str] = None
    lists: List[BoardList] = Field(default_factory=list)

    def list_named(self, name: str) -> Optional[BoardList]:
        wanted = name.lower()
        for board_list in self.lists:
            if board_list.name.lower() == wanted:
                return board_list
        return None

    def card_by_id(self, card_id: str) -> Optional[BoardCard]:
        for board_list in self.lists:
            for card in board_list.cards:
                if card.id == card_id:
                    return card
        return None

    def list_of(self, card_id: str) -> Optional[BoardList]:
        for board_list in self.lists:
            if any(card.id == card_id for card in board_list.cards):
                return board_list
        return None

    def with_card_moved(self, card_id: str, target_list_id: str) -> "BoardSnapshot":
        """Copy of the snapshot reflecting a move that was just applied remotely."""
        moved = self.model_copy(deep=True)
        card = None
        for board_list in moved.lists:
            for existing in board_list.cards:
                if existing.id == card_id:
                    card = existing
            board_list.cards = [c for c in board_list.cards if c.id != card_id]
        if card is None:
            return moved
        for board_list in moved.lists:
            if board_list.id == target_list_id:
                card.list_id = target_list_id
                board_list.cards.append(card)
        return moved


class ProvisionedBoard(BaseModel):
    board_id: str
    url: Optional[str] = None
    list_ids: Dict[str, str] = Field(default_factory=dict)
    week_cards: Dict[int, str] = Field(default_factory=dict)


class ProgressAction(BaseModel):
    """Board mutation proposed by the planning collaborator"""
    model_config = ConfigDict(populate_by_name=True)

    type: Literal["move_card", "update_checklist"]
    card_id: str = Field(alias="cardId")
    target_list: Optional[str] = Field(default=None, alias="targetList")
    item_id: Optional[str] = Field(default=None, alias="itemId")
    completed: Optional[bool] = None


class ProgressInterpretation(BaseModel):
    actions: List[ProgressAction] = Field(default_factory=list)
    reply: str = Field(alias="response", default="")

    model_config = ConfigDict(populate_by_name=True)


# =============================================================================
# API request / response models
# =============================================================================

class MessageCreate(BaseModel):
    content: str


class MessageView(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    role: str
    content: str
    created_at: Optional[datetime] = None


class SessionView(BaseModel):
    id: str
    owner: str
    state: str
    slot_answers: List[Dict[str, str]]
    goal_id: Optional[str] = None
    messages: List[MessageView] = Field(default_factory=list)


class ConversationReply(BaseModel):
    session_id: str
    state: str
    replies: List[str]
    goal_id: Optional[str] = None


class BoardLinkRequest(BaseModel):
    token: str = Field(min_length=1)


class AuthorizationView(BaseModel):
    authorization_url: str
    linked: bool


class WalletCreated(BaseModel):
    owner: str
    address: str
    recovery_phrase: str
    created_at: datetime


class WalletView(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    owner: str
    address: str
    created_at: Optional[datetime] = None


class WalletRecoverRequest(BaseModel):
    recovery_phrase: str


class AddressView(BaseModel):
    address: str
    display: str


class BalanceResponse(BaseModel):
    owner: str
    confirmed: int
    pending: int
    cached: Optional[int] = None
    level: int
    level_progress: int
    next_level_at: int


class LedgerEntryView(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    amount: int
    reason: str
    source: str
    goal_id: Optional[str] = None
    achievement_id: Optional[str] = None
    created_at: Optional[datetime] = None


class AchievementView(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    type: str
    title: str
    description: Optional[str] = None
    reward_amount: int
    rarity: str
    credential_minted: bool
    unlocked_at: Optional[datetime] = None


class GoalView(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    owner: str
    title: str
    description: Optional[str] = None
    weekly_tasks: List[Dict[str, Any]]
    status: str
    progress: float
    reward_total: int
    board_id: Optional[str] = None
    board_url: Optional[str] = None
    vision_url: Optional[str] = None
    credential_id: Optional[str] = None
    created_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None


class NotificationView(BaseModel):
    message: str
    severity: str
    created_at: datetime
