from datetime import datetime, timezone
import enum
import uuid

from sqlalchemy import Column, String, DateTime, ForeignKey, Text, Float, Integer, JSON, Boolean, UniqueConstraint, Index
from sqlalchemy.ext.hybrid import hybrid_property

from database import Base


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def new_id() -> str:
    return str(uuid.uuid4())


# =============================================================================
# Enumerations
# =============================================================================

class SessionState(str, enum.Enum):
    """
    Conversation lifecycle

    welcome -> connect -> slot-filling -> materializing -> active
    welcome -> slot-filling (board already linked)
    """
    WELCOME = "welcome"
    CONNECT = "connect"
    SLOT_FILLING = "slot-filling"
    MATERIALIZING = "materializing"
    ACTIVE = "active"


class GoalStatus(str, enum.Enum):
    ACTIVE = "active"
    COMPLETED = "completed"
    PAUSED = "paused"


class RewardSource(str, enum.Enum):
    MILESTONE = "milestone"
    GOAL_COMPLETION = "goal_completion"
    ACHIEVEMENT = "achievement"
    STREAK = "streak"
    BONUS = "bonus"


class Rarity(str, enum.Enum):
    COMMON = "common"
    RARE = "rare"
    EPIC = "epic"
    LEGENDARY = "legendary"


class CertificateType(str, enum.Enum):
    GOAL_CREATION = "goal_creation"
    GOAL_COMPLETION = "goal_completion"


# =============================================================================
# Conversation
# =============================================================================

class ChatSession(Base):
    __tablename__ = "sessions"
    id = Column(String, primary_key=True, default=new_id)
    owner = Column(String, nullable=False, index=True)
    _state = Column('state', String, nullable=False, default=SessionState.WELCOME.value)

    # [{"slot": "what", "answer": "..."}, ...] in prompt order
    slot_answers = Column(JSON, nullable=False, default=list)
    # Length of slot_answers; guards set_answers against lost updates
    answer_count = Column(Integer, nullable=False, default=0)
    # Personalized follow-up prompts for why..how
    questions = Column(JSON, nullable=True)

    goal_id = Column(String, ForeignKey("goals.id"), nullable=True)
    created_at = Column(DateTime(timezone=True), default=utcnow)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)

    # 🔒 Direct state assignment is FORBIDDEN.
    # Transitions go through domain.conversation_state or SessionRepository.compare_and_set_state
    @hybrid_property
    def state(self):
        """Read-only state"""
        return self._state

    @state.setter
    def state(self, value):
        raise RuntimeError(
            f"DIRECT STATE ASSIGNMENT BLOCKED: session.state = '{value}'. "
            f"Use SessionRepository.compare_and_set_state() instead."
        )


class Message(Base):
    __tablename__ = "messages"
    id = Column(String, primary_key=True, default=new_id)
    session_id = Column(String, ForeignKey("sessions.id"), nullable=False, index=True)
    role = Column(String, nullable=False)  # user | assistant
    content = Column(Text, nullable=False)
    created_at = Column(DateTime(timezone=True), default=utcnow)


# =============================================================================
# Goals
# =============================================================================

class Goal(Base):
    __tablename__ = "goals"
    id = Column(String, primary_key=True, default=new_id)
    owner = Column(String, nullable=False, index=True)
    session_id = Column(String, nullable=True)

    title = Column(String, nullable=False)
    description = Column(Text, nullable=True)
    # [{"week_number": 1, "description": "...", "tasks": [{"name": ...}]}]
    weekly_tasks = Column(JSON, nullable=False, default=list)
    slot_answers = Column(JSON, nullable=True)

    status = Column(String, nullable=False, default=GoalStatus.ACTIVE.value)
    progress = Column(Float, default=0.0)
    reward_total = Column(Integer, default=0)

    board_id = Column(String, nullable=True)
    board_url = Column(String, nullable=True)
    vision_url = Column(String, nullable=True)
    credential_id = Column(String, nullable=True)

    created_at = Column(DateTime(timezone=True), default=utcnow)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)
    completed_at = Column(DateTime(timezone=True), nullable=True)


class BoardLink(Base):
    """Bearer token for the owner's board service account"""
    __tablename__ = "board_links"
    owner = Column(String, primary_key=True)
    token = Column(String, nullable=False)
    created_at = Column(DateTime(timezone=True), default=utcnow)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)


# =============================================================================
# Rewards
# =============================================================================

class RewardLedgerEntry(Base):
    """Append-only. Balance = SUM(amount) per owner."""
    __tablename__ = "reward_ledger_entries"
    id = Column(String, primary_key=True, default=new_id)
    owner = Column(String, nullable=False)
    amount = Column(Integer, nullable=False)
    reason = Column(String, nullable=False)
    source = Column(String, nullable=False)
    goal_id = Column(String, nullable=True)
    achievement_id = Column(String, nullable=True)
    # Set for grants that may happen at most once, e.g. "week:<goal_id>:3"
    dedupe_key = Column(String, nullable=True)
    created_at = Column(DateTime(timezone=True), default=utcnow)

    __table_args__ = (
        Index('idx_reward_ledger_owner', 'owner'),
        Index('idx_reward_ledger_goal', 'goal_id'),
        UniqueConstraint('dedupe_key', name='uq_reward_ledger_dedupe_key'),
    )


class Achievement(Base):
    __tablename__ = "achievements"
    id = Column(String, primary_key=True, default=new_id)
    owner = Column(String, nullable=False)
    type = Column(String, nullable=False)
    title = Column(String, nullable=False)
    description = Column(Text, nullable=True)
    reward_amount = Column(Integer, default=0)
    rarity = Column(String, default=Rarity.COMMON.value)
    credential_minted = Column(Boolean, default=False)
    unlocked_at = Column(DateTime(timezone=True), default=utcnow)

    __table_args__ = (
        UniqueConstraint('owner', 'type', name='uq_achievement_owner_type'),
    )


# =============================================================================
# Identity / credentials
# =============================================================================

class Wallet(Base):
    """Public half only. The recovery phrase is never stored."""
    __tablename__ = "wallets"
    owner = Column(String, primary_key=True)
    address = Column(String, nullable=False, unique=True)
    created_at = Column(DateTime(timezone=True), default=utcnow)


class Credential(Base):
    """Soulbound credential. Immutable once written."""
    __tablename__ = "credentials"
    id = Column(String, primary_key=True, default=new_id)
    token_id = Column(String, nullable=False)
    owner_address = Column(String, nullable=False)
    goal_id = Column(String, nullable=False)
    metadata_uri = Column(String, nullable=False)
    transaction_ref = Column(String, nullable=True)
    minted_at = Column(DateTime(timezone=True), default=utcnow)

    __table_args__ = (
        UniqueConstraint('goal_id', 'owner_address', name='uq_credential_goal_address'),
    )


class Certificate(Base):
    __tablename__ = "certificates"
    id = Column(String, primary_key=True, default=new_id)
    owner = Column(String, nullable=False, index=True)
    goal_id = Column(String, nullable=False)
    type = Column(String, nullable=False)
    title = Column(String, nullable=False)
    description = Column(Text, nullable=True)
    goal_title = Column(String, nullable=False)
    xp_awarded = Column(Integer, default=0)
    issued_at = Column(DateTime(timezone=True), default=utcnow)

    __table_args__ = (
        UniqueConstraint('goal_id', 'type', name='uq_certificate_goal_type'),
    )
