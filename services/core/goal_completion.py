"""
Goal Completion

Progress of a goal is the share of its weekly cards sitting in the Done
list. Crossing the completion threshold completes the goal once: status
flips to completed, a completion certificate (with its bonus) is issued
and the goal-count achievements are unlocked.
"""
import re
from dataclasses import dataclass
from typing import Optional

from config import COMPLETION_THRESHOLD
from logging_config import get_logger
from models import GoalStatus, utcnow
from schemas import BoardSnapshot

logger = get_logger(__name__)

WEEK_CARD_RE = re.compile(r"^\s*week\s*(\d+)\b", re.IGNORECASE)
DONE_LIST = "Done"


def week_number(card_name: str) -> Optional[int]:
    match = WEEK_CARD_RE.match(card_name or "")
    return int(match.group(1)) if match else None


def compute_progress(snapshot: BoardSnapshot) -> float:
    """Done weekly cards / all weekly cards, 0.0 when the board has none."""
    total = 0
    done = 0
    for board_list in snapshot.lists:
        for card in board_list.cards:
            if week_number(card.name) is None:
                continue
            total += 1
            if board_list.name.lower() == DONE_LIST.lower():
                done += 1
    return done / total if total else 0.0


@dataclass
class CompletionOutcome:
    goal_id: str
    progress: float
    completed_now: bool = False


class GoalCompletionService:

    def __init__(self, uow_factory, ledger, certificates, notifier=None, threshold: float = COMPLETION_THRESHOLD):
        self._uow = uow_factory
        self._ledger = ledger
        self._certificates = certificates
        self._notifier = notifier
        self._threshold = threshold

    async def record_progress(self, goal_id: str, snapshot: BoardSnapshot) -> CompletionOutcome:
        """
        Persist the goal's progress and complete it when the threshold is
        reached. Runs the completion side effects at most once per goal.
        """
        progress = compute_progress(snapshot)
        completed_now = False

        async with self._uow() as uow:
            goal = await uow.goals.get_for_update(uow.session, goal_id)
            if goal is None:
                return CompletionOutcome(goal_id=goal_id, progress=progress)

            goal.progress = progress
            if goal.status == GoalStatus.ACTIVE.value and progress >= self._threshold:
                goal.status = GoalStatus.COMPLETED.value
                goal.completed_at = utcnow()
                completed_now = True
            await uow.goals.update(uow.session, goal)
            owner = goal.owner

        logger.info("goal_progress_recorded", goal_id=goal_id, progress=round(progress, 3), completed=completed_now)

        if completed_now:
            await self._on_completed(owner, goal)

        return CompletionOutcome(goal_id=goal_id, progress=progress, completed_now=completed_now)

    async def _on_completed(self, owner: str, goal) -> None:
        _, issued = await self._certificates.issue_completion_certificate(owner, goal)
        if issued:
            async with self._uow() as uow:
                await uow.goals.add_reward(uow.session, goal.id, self._certificates.completion_bonus)

        async with self._uow() as uow:
            completed = await uow.goals.count_completed(uow.session, owner)

        if completed >= 1:
            await self._ledger.unlock_achievement(owner, "first_goal_completed")
        if completed >= 10:
            await self._ledger.unlock_achievement(owner, "ten_goals_completed")

        logger.info("goal_completed", owner=owner, goal_id=goal.id, completed_goals=completed)

        if self._notifier is not None:
            await self._notifier.notify(
                owner,
                f'Congratulations! You completed "{goal.title}" and earned a completion certificate.',
                "success"
            )
