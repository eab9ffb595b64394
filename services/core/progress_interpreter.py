"""
Progress Interpreter

Maps a free-text progress report onto board mutations and reward grants.
Intent detection is an ordered rule table evaluated top-down; the first
rule whose predicate matches decides the action.

    start     "started week 2"      Week 2: To Do -> Doing
    complete  "finished week 3"     Week 3: Doing -> Done, +XP once, progress
    clarify   "I'm done!"           ask which week, no mutation
    delegate  anything else         planning collaborator proposes actions,
                                    only those valid against the board apply

A report that names a card the board does not have gets a neutral
acknowledgment: no mutation, no error.

Author: Goal Forge Core Team
"""
import re
from dataclasses import dataclass, field
from typing import Callable, List, Optional

from config import WEEK_COMPLETION_REWARD_XP
from goal_completion import DONE_LIST, week_number
from logging_config import get_logger
from models import RewardSource
from planning_client import NEUTRAL_ACKNOWLEDGMENT
from schemas import BoardCard, BoardSnapshot

logger = get_logger(__name__)

TODO_LIST = "To Do"
DOING_LIST = "Doing"

WEEK_RE = re.compile(r"\bweek\s*(\d+)", re.IGNORECASE)
START_RE = re.compile(r"\b(start|started|starting|begin|began|beginning)\b", re.IGNORECASE)
DONE_RE = re.compile(r"\b(done|complete|completed|finished|finish)\b", re.IGNORECASE)

CLARIFY_REPLY = (
    "Great job! Which specific week or task did you complete? "
    "I'll move it to the Done list and award you XP!"
)


def _mentioned_week(text: str) -> Optional[int]:
    match = WEEK_RE.search(text)
    return int(match.group(1)) if match else None


def _starts_week(text: str) -> Optional[dict]:
    week = _mentioned_week(text)
    if START_RE.search(text) and week is not None:
        return {"week": week}
    return None


def _completes_week(text: str) -> Optional[dict]:
    week = _mentioned_week(text)
    if DONE_RE.search(text) and week is not None:
        return {"week": week}
    return None


def _completes_something(text: str) -> Optional[dict]:
    if DONE_RE.search(text) and _mentioned_week(text) is None:
        return {}
    return None


def _anything(text: str) -> Optional[dict]:
    return {}


@dataclass(frozen=True)
class ProgressRule:
    name: str
    predicate: Callable[[str], Optional[dict]]
    action: str


RULES = (
    ProgressRule("start", _starts_week, "_apply_start"),
    ProgressRule("complete", _completes_week, "_apply_complete"),
    ProgressRule("clarify", _completes_something, "_apply_clarify"),
    ProgressRule("delegate", _anything, "_apply_delegate"),
)


def match_rule(text: str):
    """First (rule, captures) whose predicate matches."""
    for rule in RULES:
        captures = rule.predicate(text)
        if captures is not None:
            return rule, captures
    return None, None


def find_week_card(snapshot: BoardSnapshot, week: int, list_name: str) -> Optional[BoardCard]:
    """First card named "Week N" in ``list_name``; list order breaks ties."""
    board_list = snapshot.list_named(list_name)
    if board_list is None:
        return None
    for card in board_list.cards:
        if week_number(card.name) == week:
            return card
    return None


@dataclass
class ProgressOutcome:
    rule: str
    reply: str
    applied: List[str] = field(default_factory=list)
    reward_granted: int = 0
    goal_completed: bool = False


class ProgressInterpreter:
    """
    Usage:
        outcome = await interpreter.interpret(goal, "I completed week 3", adapter)
    """

    def __init__(self, uow_factory, ledger, planning, completion, week_reward: int = WEEK_COMPLETION_REWARD_XP):
        self._uow = uow_factory
        self._ledger = ledger
        self._planning = planning
        self._completion = completion
        self._week_reward = week_reward

    async def interpret(self, goal, text: str, adapter) -> ProgressOutcome:
        if not goal.board_id:
            return ProgressOutcome(rule="none", reply=NEUTRAL_ACKNOWLEDGMENT)

        snapshot = await adapter.list_board(goal.board_id)
        rule, captures = match_rule(text)
        logger.info("progress_rule_matched", goal_id=goal.id, rule=rule.name)

        handler = getattr(self, rule.action)
        return await handler(goal, text, snapshot, adapter, **captures)

    # ------------------------------------------------------------------
    # Rule actions
    # ------------------------------------------------------------------

    async def _apply_start(self, goal, text, snapshot, adapter, week: int) -> ProgressOutcome:
        card = find_week_card(snapshot, week, TODO_LIST)
        doing = snapshot.list_named(DOING_LIST)
        if card is None or doing is None:
            return ProgressOutcome(rule="start", reply=NEUTRAL_ACKNOWLEDGMENT)

        await adapter.move_card(card.id, doing.id)
        return ProgressOutcome(
            rule="start",
            reply=f"Awesome! I've moved {card.name} to {DOING_LIST}. Good luck this week!",
            applied=[f"move:{card.id}:{DOING_LIST}"]
        )

    async def _apply_complete(self, goal, text, snapshot, adapter, week: int) -> ProgressOutcome:
        card = find_week_card(snapshot, week, DOING_LIST) or find_week_card(snapshot, week, TODO_LIST)
        done = snapshot.list_named(DONE_LIST)
        if card is None or done is None:
            return ProgressOutcome(rule="complete", reply=NEUTRAL_ACKNOWLEDGMENT)

        await adapter.move_card(card.id, done.id)
        outcome = ProgressOutcome(rule="complete", reply="", applied=[f"move:{card.id}:{DONE_LIST}"])
        await self._finish_week(goal, week, snapshot.with_card_moved(card.id, done.id), outcome)

        if outcome.reward_granted:
            outcome.reply = (
                f"Congratulations on completing {card.name}! I've moved it to {DONE_LIST} "
                f"and awarded you {outcome.reward_granted} XP!"
            )
        else:
            outcome.reply = f"Nice work! {card.name} is now in {DONE_LIST}."
        if outcome.goal_completed:
            outcome.reply += " You've completed your goal! Your completion certificate is ready."
        return outcome

    async def _apply_clarify(self, goal, text, snapshot, adapter) -> ProgressOutcome:
        return ProgressOutcome(rule="clarify", reply=CLARIFY_REPLY)

    async def _apply_delegate(self, goal, text, snapshot, adapter) -> ProgressOutcome:
        interpretation = await self._planning.interpret_progress(text, snapshot)
        outcome = ProgressOutcome(rule="delegate", reply=interpretation.reply or NEUTRAL_ACKNOWLEDGMENT)

        current = snapshot
        for action in interpretation.actions:
            card = current.card_by_id(action.card_id)
            if card is None:
                logger.info("progress_action_ignored", reason="unknown card", card_id=action.card_id)
                continue

            if action.type == "move_card":
                target = current.list_named(action.target_list or "")
                source = current.list_of(card.id)
                if target is None or (source is not None and source.id == target.id):
                    logger.info("progress_action_ignored", reason="invalid target list", card_id=card.id)
                    continue
                await adapter.move_card(card.id, target.id)
                current = current.with_card_moved(card.id, target.id)
                outcome.applied.append(f"move:{card.id}:{target.name}")

                week = week_number(card.name)
                if target.name.lower() == DONE_LIST.lower() and week is not None:
                    await self._finish_week(goal, week, current, outcome)

            elif action.type == "update_checklist":
                items = {item.id for checklist in card.checklists for item in checklist.items}
                if action.item_id not in items:
                    logger.info("progress_action_ignored", reason="unknown checklist item", card_id=card.id)
                    continue
                done = True if action.completed is None else action.completed
                await adapter.set_checklist_item_state(card.id, action.item_id, done)
                outcome.applied.append(f"checklist:{action.item_id}:{'complete' if done else 'incomplete'}")

        return outcome

    # ------------------------------------------------------------------

    async def _finish_week(self, goal, week: int, snapshot: BoardSnapshot, outcome: ProgressOutcome) -> None:
        """Grant the week reward once, then recompute progress."""
        entry = None
        if self._week_reward > 0:
            entry = await self._ledger.grant(
                goal.owner,
                self._week_reward,
                f"Completed Week {week}",
                RewardSource.MILESTONE.value,
                goal_id=goal.id,
                dedupe_key=f"week:{goal.id}:{week}"
            )

        if entry is not None:
            async with self._uow() as uow:
                await uow.goals.add_reward(uow.session, goal.id, self._week_reward)
            outcome.reward_granted += self._week_reward

        completion = await self._completion.record_progress(goal.id, snapshot)
        outcome.goal_completed = outcome.goal_completed or completion.completed_now
