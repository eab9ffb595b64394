"""
Unit of Work Pattern + Repositories - Infrastructure Layer
==========================================================
"""
from typing import List, Optional

from sqlalchemy import select, update, func
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from sqlalchemy.orm.attributes import set_committed_value


class UnitOfWork:
    """
    Thin Unit of Work managing one transaction.

    Usage:
        async with UnitOfWork(session_factory) as uow:
            session = await uow.sessions.get(uow.session, session_id)
            await uow.messages.append(uow.session, session_id, "user", text)
    """

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self._session_factory = session_factory
        self._session: AsyncSession | None = None

        self.sessions = SessionRepository()
        self.messages = MessageRepository()
        self.goals = GoalRepository()
        self.board_links = BoardLinkRepository()
        self.ledger = LedgerRepository()
        self.achievements = AchievementRepository()
        self.wallets = WalletRepository()
        self.credentials = CredentialRepository()
        self.certificates = CertificateRepository()

    async def __aenter__(self) -> "UnitOfWork":
        """Open a session and begin the transaction"""
        self._session = self._session_factory()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        """Commit or rollback, then close"""
        try:
            if exc_type is None:
                if self._session:
                    await self._session.commit()
            else:
                if self._session:
                    await self._session.rollback()
        finally:
            if self._session:
                await self._session.close()
                self._session = None

    @property
    def session(self) -> AsyncSession:
        """Current session"""
        if self._session is None:
            raise RuntimeError(
                "Session not available. Use 'async with UnitOfWork() as uow:' pattern."
            )
        return self._session


class SessionRepository:
    """Conversation sessions. State changes only through compare_and_set_state."""

    async def get(self, session, session_id: str):
        from models import ChatSession

        result = await session.execute(select(ChatSession).where(ChatSession.id == session_id))
        return result.scalar_one_or_none()

    async def list_for_owner(self, session, owner: str, state: Optional[str] = None) -> list:
        from models import ChatSession

        stmt = select(ChatSession).where(ChatSession.owner == owner)
        if state is not None:
            stmt = stmt.where(ChatSession._state == state)
        result = await session.execute(stmt.order_by(ChatSession.created_at))
        return list(result.scalars().all())

    async def save(self, session, chat_session) -> None:
        session.add(chat_session)
        await session.flush()

    async def compare_and_set_state(self, session, session_id: str, expected: str, new: str) -> bool:
        """
        Atomic UPDATE ... WHERE state = :expected.

        Returns True only for the caller whose update matched a row;
        concurrent callers racing on the same transition get False.
        """
        from models import ChatSession, utcnow

        stmt = (
            update(ChatSession)
            .where(ChatSession.id == session_id, ChatSession._state == expected)
            .values({ChatSession._state: new, ChatSession.updated_at: utcnow()})
            .execution_options(synchronize_session=False)
        )
        result = await session.execute(stmt)
        return result.rowcount == 1

    def sync_state(self, chat_session, new: str) -> None:
        """Reflect a compare-and-set on an already-loaded instance without dirtying it."""
        set_committed_value(chat_session, "_state", new)

    async def set_answers(
        self,
        session,
        session_id: str,
        answers: list,
        questions: Optional[list] = None,
        expected_count: Optional[int] = None
    ) -> bool:
        """
        Replace the recorded answers. With ``expected_count`` the write only
        lands if the row still holds that many answers; False means another
        message recorded one first and the caller must re-read.
        """
        from models import ChatSession, utcnow

        values = {
            ChatSession.slot_answers: answers,
            ChatSession.answer_count: len(answers),
            ChatSession.updated_at: utcnow(),
        }
        if questions is not None:
            values[ChatSession.questions] = questions

        stmt = update(ChatSession).where(ChatSession.id == session_id)
        if expected_count is not None:
            stmt = stmt.where(ChatSession.answer_count == expected_count)
        result = await session.execute(
            stmt.values(values).execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    async def attach_goal(self, session, session_id: str, goal_id: str) -> None:
        from models import ChatSession

        await session.execute(
            update(ChatSession)
            .where(ChatSession.id == session_id)
            .values({ChatSession.goal_id: goal_id})
            .execution_options(synchronize_session=False)
        )


class MessageRepository:

    async def append(self, session, session_id: str, role: str, content: str):
        from models import Message

        message = Message(session_id=session_id, role=role, content=content)
        session.add(message)
        await session.flush()
        return message

    async def list_for_session(self, session, session_id: str) -> list:
        from models import Message

        result = await session.execute(
            select(Message)
            .where(Message.session_id == session_id)
            .order_by(Message.created_at, Message.id)
        )
        return list(result.scalars().all())


class GoalRepository:
    """Goal CRUD"""

    async def get(self, session, goal_id: str):
        from models import Goal

        result = await session.execute(select(Goal).where(Goal.id == goal_id))
        return result.scalar_one_or_none()

    async def get_for_update(self, session, goal_id: str):
        """SELECT ... FOR UPDATE (ignored by SQLite)"""
        from models import Goal

        result = await session.execute(select(Goal).where(Goal.id == goal_id).with_for_update())
        return result.scalar_one_or_none()

    async def list_for_owner(self, session, owner: str, status: Optional[str] = None) -> list:
        from models import Goal

        stmt = select(Goal).where(Goal.owner == owner)
        if status is not None:
            stmt = stmt.where(Goal.status == status)
        result = await session.execute(stmt.order_by(Goal.created_at.desc()))
        return list(result.scalars().all())

    async def latest_active(self, session, owner: str):
        from models import Goal, GoalStatus

        result = await session.execute(
            select(Goal)
            .where(Goal.owner == owner, Goal.status == GoalStatus.ACTIVE.value)
            .order_by(Goal.created_at.desc())
            .limit(1)
        )
        return result.scalar_one_or_none()

    async def count_completed(self, session, owner: str) -> int:
        from models import Goal, GoalStatus

        result = await session.execute(
            select(func.count(Goal.id)).where(
                Goal.owner == owner, Goal.status == GoalStatus.COMPLETED.value
            )
        )
        return int(result.scalar_one())

    async def add_reward(self, session, goal_id: str, amount: int) -> None:
        from models import Goal

        await session.execute(
            update(Goal)
            .where(Goal.id == goal_id)
            .values({Goal.reward_total: func.coalesce(Goal.reward_total, 0) + amount})
            .execution_options(synchronize_session=False)
        )

    async def save(self, session, goal) -> None:
        """add + flush to get the generated ID"""
        session.add(goal)
        await session.flush()

    async def update(self, session, goal) -> None:
        await session.flush()


class BoardLinkRepository:

    async def get(self, session, owner: str):
        from models import BoardLink

        result = await session.execute(select(BoardLink).where(BoardLink.owner == owner))
        return result.scalar_one_or_none()

    async def upsert(self, session, owner: str, token: str):
        from models import BoardLink

        link = await self.get(session, owner)
        if link is None:
            link = BoardLink(owner=owner, token=token)
            session.add(link)
        else:
            link.token = token
        await session.flush()
        return link

    async def delete(self, session, owner: str) -> bool:
        link = await self.get(session, owner)
        if link is None:
            return False
        await session.delete(link)
        await session.flush()
        return True


class LedgerRepository:
    """Append-only reward entries"""

    async def append(self, session, entry) -> None:
        session.add(entry)
        await session.flush()

    async def balance(self, session, owner: str) -> int:
        from models import RewardLedgerEntry

        result = await session.execute(
            select(func.coalesce(func.sum(RewardLedgerEntry.amount), 0))
            .where(RewardLedgerEntry.owner == owner)
        )
        return int(result.scalar_one())

    async def list_for_owner(self, session, owner: str, limit: int = 50) -> list:
        from models import RewardLedgerEntry

        result = await session.execute(
            select(RewardLedgerEntry)
            .where(RewardLedgerEntry.owner == owner)
            .order_by(RewardLedgerEntry.created_at.desc())
            .limit(limit)
        )
        return list(result.scalars().all())


class AchievementRepository:

    async def get(self, session, owner: str, achievement_type: str):
        from models import Achievement

        result = await session.execute(
            select(Achievement).where(
                Achievement.owner == owner, Achievement.type == achievement_type
            )
        )
        return result.scalar_one_or_none()

    async def add(self, session, achievement) -> None:
        session.add(achievement)
        await session.flush()

    async def list_for_owner(self, session, owner: str) -> List:
        from models import Achievement

        result = await session.execute(
            select(Achievement)
            .where(Achievement.owner == owner)
            .order_by(Achievement.unlocked_at)
        )
        return list(result.scalars().all())


class WalletRepository:

    async def get(self, session, owner: str):
        from models import Wallet

        result = await session.execute(select(Wallet).where(Wallet.owner == owner))
        return result.scalar_one_or_none()

    async def add(self, session, wallet) -> None:
        session.add(wallet)
        await session.flush()


class CredentialRepository:

    async def get(self, session, goal_id: str, owner_address: str):
        from models import Credential

        result = await session.execute(
            select(Credential).where(
                Credential.goal_id == goal_id, Credential.owner_address == owner_address
            )
        )
        return result.scalar_one_or_none()

    async def get_by_token(self, session, token_id: str):
        from models import Credential

        result = await session.execute(select(Credential).where(Credential.token_id == token_id))
        return result.scalar_one_or_none()

    async def add(self, session, credential) -> None:
        session.add(credential)
        await session.flush()


class CertificateRepository:

    async def get(self, session, goal_id: str, certificate_type: str):
        from models import Certificate

        result = await session.execute(
            select(Certificate).where(
                Certificate.goal_id == goal_id, Certificate.type == certificate_type
            )
        )
        return result.scalar_one_or_none()

    async def add(self, session, certificate) -> None:
        session.add(certificate)
        await session.flush()

    async def list_for_owner(self, session, owner: str) -> list:
        from models import Certificate

        result = await session.execute(
            select(Certificate)
            .where(Certificate.owner == owner)
            .order_by(Certificate.issued_at)
        )
        return list(result.scalars().all())


def create_uow_provider(session_factory: async_sessionmaker[AsyncSession] | None = None) -> "UoWProvider":
    """
    Factory for a UoW provider.

    Usage in FastAPI:
        get_uow = create_uow_provider()

        async with get_uow() as uow:
            await uow.goals.get(uow.session, goal_id)
    """
    if session_factory is None:
        from database import AsyncSessionLocal
        session_factory = AsyncSessionLocal

    return UoWProvider(session_factory)


class UoWProvider:

    def __init__(self, factory: async_sessionmaker[AsyncSession]):
        self._factory = factory

    def __call__(self) -> UnitOfWork:
        return UnitOfWork(self._factory)
