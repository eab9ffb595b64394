"""
Reward Ledger

Append-only XP log with a Redis fast copy.

    balance(owner) = SUM(amount) over the owner's entries

Grants are two-phase: the pending delta is applied to the cache first,
then the entry is written to SQL. Success confirms the pending delta,
failure rolls it back and raises RewardPersistenceError.

Author: Goal Forge Core Team
"""
from dataclasses import dataclass
from typing import Optional, Tuple, List

from sqlalchemy.exc import IntegrityError

from config import LEVEL_SIZE
from exceptions import RewardPersistenceError
from logging_config import get_logger
from models import Achievement, RewardLedgerEntry, RewardSource, Rarity
from reward_cache import RewardCache

logger = get_logger(__name__)


# type -> (title, description, reward, rarity)
ACHIEVEMENT_CATALOG = {
    "first_goal_completed": ("Goal Master", "Completed your first goal!", 200, Rarity.EPIC.value),
    "ten_goals_completed": ("Goal Crusher", "Completed 10 goals!", 1000, Rarity.LEGENDARY.value),
}


def level_for(balance: int, level_size: int = LEVEL_SIZE) -> int:
    """Level = floor(balance / level_size) + 1; never below 1."""
    return max(0, balance) // level_size + 1


def level_rarity(level: int) -> str:
    if level >= 10:
        return Rarity.EPIC.value
    if level >= 5:
        return Rarity.RARE.value
    return Rarity.COMMON.value


@dataclass
class BalanceView:
    owner: str
    confirmed: int
    pending: int
    cached: Optional[int]
    level: int

    def level_progress(self, level_size: int = LEVEL_SIZE) -> int:
        return max(0, self.confirmed) % level_size

    def next_level_at(self, level_size: int = LEVEL_SIZE) -> int:
        return self.level * level_size


class RewardLedger:
    """
    Usage:
        ledger = RewardLedger(create_uow_provider(), RewardCache.from_url())
        await ledger.grant(owner, 100, "Goal created", RewardSource.MILESTONE.value, goal_id=goal.id)
    """

    def __init__(self, uow_factory, cache: RewardCache, level_size: int = LEVEL_SIZE):
        self._uow = uow_factory
        self._cache = cache
        self._level_size = level_size

    # ------------------------------------------------------------------
    # Grants
    # ------------------------------------------------------------------

    async def grant(
        self,
        owner: str,
        amount: int,
        reason: str,
        source: str,
        goal_id: Optional[str] = None,
        achievement_id: Optional[str] = None,
        dedupe_key: Optional[str] = None
    ) -> Optional[RewardLedgerEntry]:
        """
        Append one entry. With ``dedupe_key`` the grant happens at most once:
        a repeat, or a concurrent call that loses on the unique key, returns
        None and leaves the balance untouched.
        """
        pending = await self._cache.add_pending(owner, amount)

        try:
            async with self._uow() as uow:
                before = await uow.ledger.balance(uow.session, owner)
                entry = RewardLedgerEntry(
                    owner=owner,
                    amount=amount,
                    reason=reason,
                    source=source,
                    goal_id=goal_id,
                    achievement_id=achievement_id,
                    dedupe_key=dedupe_key
                )
                await uow.ledger.append(uow.session, entry)
        except Exception as e:
            if pending:
                await self._cache.rollback(owner, amount)
            if dedupe_key is not None and isinstance(e, IntegrityError):
                logger.info("reward_already_granted", owner=owner, dedupe_key=dedupe_key)
                return None
            logger.error(
                "reward_persist_failed",
                owner=owner,
                amount=amount,
                reason=reason,
                error=str(e)
            )
            raise RewardPersistenceError(owner, amount, reason) from e

        after = before + amount
        if pending:
            await self._cache.confirm(owner, amount, after)
        else:
            await self._cache.publish(owner, after)

        logger.info(
            "reward_granted",
            owner=owner,
            amount=amount,
            source=source,
            goal_id=goal_id,
            balance=after
        )

        await self._unlock_level_milestones(owner, before, after)
        return entry

    async def _unlock_level_milestones(self, owner: str, before: int, after: int) -> None:
        old_level = level_for(before, self._level_size)
        new_level = level_for(after, self._level_size)
        for level in range(old_level + 1, new_level + 1):
            # Milestones carry no XP, so they can never trigger another level-up
            await self.unlock_achievement(
                owner,
                f"level_{level}",
                title=f"Level {level} Reached!",
                description=f"Congratulations! You've reached level {level}",
                reward_amount=0,
                rarity=level_rarity(level)
            )
            logger.info("level_up", owner=owner, level=level)

    # ------------------------------------------------------------------
    # Achievements
    # ------------------------------------------------------------------

    async def unlock_achievement(
        self,
        owner: str,
        achievement_type: str,
        title: Optional[str] = None,
        description: Optional[str] = None,
        reward_amount: Optional[int] = None,
        rarity: Optional[str] = None
    ) -> Tuple[Achievement, bool]:
        """
        Idempotent unlock. Returns (achievement, created).

        A second unlock, or a concurrent one that loses the race on the
        (owner, type) unique constraint, returns the existing record.
        The reward is granted only by the call that created the record.
        """
        default_title, default_description, default_reward, default_rarity = ACHIEVEMENT_CATALOG.get(
            achievement_type, (achievement_type.replace("_", " ").title(), None, 0, Rarity.COMMON.value)
        )

        async with self._uow() as uow:
            existing = await uow.achievements.get(uow.session, owner, achievement_type)
            if existing is not None:
                return existing, False

            achievement = Achievement(
                owner=owner,
                type=achievement_type,
                title=title or default_title,
                description=description if description is not None else default_description,
                reward_amount=default_reward if reward_amount is None else reward_amount,
                rarity=rarity or default_rarity,
                credential_minted=False
            )
            try:
                await uow.achievements.add(uow.session, achievement)
            except IntegrityError:
                await uow.session.rollback()
                winner = await uow.achievements.get(uow.session, owner, achievement_type)
                logger.info("achievement_unlock_race_lost", owner=owner, type=achievement_type)
                return winner, False

        logger.info(
            "achievement_unlocked",
            owner=owner,
            type=achievement_type,
            rarity=achievement.rarity,
            reward=achievement.reward_amount
        )

        if achievement.reward_amount and achievement.reward_amount > 0:
            await self.grant(
                owner,
                achievement.reward_amount,
                f"Achievement: {achievement.title}",
                RewardSource.ACHIEVEMENT.value,
                achievement_id=achievement.id
            )

        return achievement, True

    # ------------------------------------------------------------------
    # Reads / reconciliation
    # ------------------------------------------------------------------

    async def balances(self, owner: str) -> BalanceView:
        async with self._uow() as uow:
            confirmed = await uow.ledger.balance(uow.session, owner)
        return BalanceView(
            owner=owner,
            confirmed=confirmed,
            pending=await self._cache.get_pending(owner),
            cached=await self._cache.get_balance(owner),
            level=level_for(confirmed, self._level_size)
        )

    async def reconcile(self, owner: str) -> str:
        """
        Align the cache with the store. Returns which side won.

        cache > store: an optimistic grant may still be in flight, so the
        cached value is republished. Otherwise the store wins.
        """
        async with self._uow() as uow:
            stored = await uow.ledger.balance(uow.session, owner)
        cached = await self._cache.get_balance(owner)

        if cached is not None and cached > stored:
            await self._cache.publish(owner, cached)
            winner = "cache"
        else:
            await self._cache.publish(owner, stored)
            winner = "store"

        logger.info("reward_reconciled", owner=owner, stored=stored, cached=cached, winner=winner)
        return winner

    async def entries(self, owner: str, limit: int = 50) -> List[RewardLedgerEntry]:
        async with self._uow() as uow:
            return await uow.ledger.list_for_owner(uow.session, owner, limit=limit)

    async def achievements(self, owner: str) -> List[Achievement]:
        async with self._uow() as uow:
            return await uow.achievements.list_for_owner(uow.session, owner)
