"""
PROGRESS INTERPRETER TESTS

Rule table order, card moves, one-time week rewards and goal completion.
"""
import asyncio

import pytest

from board_adapter import BOARD_LISTS
from conftest import FakeBoardAdapter
from models import Goal, GoalStatus
from planning_client import NEUTRAL_ACKNOWLEDGMENT
from progress_interpreter import CLARIFY_REPLY, match_rule
from schemas import ProgressAction, ProgressInterpretation


class SlowBoardAdapter(FakeBoardAdapter):
    """Board reads take a moment, like a real HTTP round trip"""

    async def list_board(self, board_id):
        snapshot = await super().list_board(board_id)
        await asyncio.sleep(0.01)
        return snapshot


async def _provision(board_service, owner="u1", weeks=4):
    adapter = board_service.adapter(owner)
    board = await adapter.create_board("Run a marathon", "")
    list_ids = await adapter.create_lists(board.board_id, list(BOARD_LISTS))
    cards = {}
    for week in range(1, weeks + 1):
        cards[week] = await adapter.create_card(list_ids["To Do"], f"Week {week}", "")
        await adapter.create_checklist(cards[week], ["Long run", "Stretching"])
    board_service.calls.clear()
    return board.board_id, list_ids, cards


async def _goal(uow_factory, board_id, owner="u1"):
    async with uow_factory() as uow:
        goal = Goal(
            owner=owner,
            title="Run a marathon",
            weekly_tasks=[],
            status=GoalStatus.ACTIVE.value,
            progress=0.0,
            reward_total=0,
            board_id=board_id,
        )
        await uow.goals.save(uow.session, goal)
    return goal


def _list_of(board_service, card_id):
    board_list, _ = board_service.find_card(card_id)
    return board_list.name


# =============================================================================
# Rule table
# =============================================================================

class TestRuleTable:

    @pytest.mark.parametrize("text,rule,captures", [
        ("I started week 2", "start", {"week": 2}),
        ("Beginning Week 1 today", "start", {"week": 1}),
        ("I completed week 3", "complete", {"week": 3}),
        ("finished week10", "complete", {"week": 10}),
        ("I'm done!", "clarify", {}),
        ("Went for a long run", "delegate", {}),
        ("week 2 is going well", "delegate", {}),
    ])
    def test_first_matching_rule_wins(self, text, rule, captures):
        matched, matched_captures = match_rule(text)
        assert matched.name == rule
        assert matched_captures == captures

    def test_start_checked_before_complete(self):
        matched, _ = match_rule("started week 2 and finished it")
        assert matched.name == "start"


# =============================================================================
# Interpretation against a board
# =============================================================================

@pytest.mark.asyncio(loop_scope="function")
class TestInterpret:

    async def test_start_moves_only_named_week(self, services, board_service, uow_factory):
        board_id, _, cards = await _provision(board_service)
        goal = await _goal(uow_factory, board_id)

        outcome = await services.interpreter.interpret(goal, "I started week 2", board_service.adapter("u1"))

        assert outcome.rule == "start"
        assert _list_of(board_service, cards[2]) == "Doing"
        for week in (1, 3, 4):
            assert _list_of(board_service, cards[week]) == "To Do"
        assert board_service.calls.count("move_card") == 1

    async def test_complete_grants_reward_once(self, services, board_service, uow_factory):
        """
        SCENARIO: week 3 completed, moved back, completed again
        EXPECTED: card ends in Done, week reward granted exactly once
        """
        board_id, list_ids, cards = await _provision(board_service)
        goal = await _goal(uow_factory, board_id)
        adapter = board_service.adapter("u1")

        first = await services.interpreter.interpret(goal, "I completed week 3", adapter)
        await adapter.move_card(cards[3], list_ids["Doing"])
        second = await services.interpreter.interpret(goal, "I completed week 3", adapter)

        assert first.reward_granted == 100
        assert "100 XP" in first.reply
        assert second.reward_granted == 0
        assert _list_of(board_service, cards[3]) == "Done"

        entries = await services.ledger.entries("u1")
        assert [e.reason for e in entries if e.reason.startswith("Completed Week")] == ["Completed Week 3"]

        async with uow_factory() as uow:
            stored = await uow.goals.get(uow.session, goal.id)
        assert stored.reward_total == 100
        assert stored.progress == pytest.approx(0.25)

    async def test_concurrent_completions_grant_once(self, services, board_service, uow_factory):
        """
        SCENARIO: "I completed week 3" submitted twice at once; both reads
                  see Week 3 in Doing before either move lands
        EXPECTED: card in Done, one week entry, reward_total 100
        """
        board_id, list_ids, cards = await _provision(board_service)
        goal = await _goal(uow_factory, board_id)
        adapter = SlowBoardAdapter(board_service, "u1")
        await adapter.move_card(cards[3], list_ids["Doing"])

        outcomes = await asyncio.gather(
            services.interpreter.interpret(goal, "I completed week 3", adapter),
            services.interpreter.interpret(goal, "I completed week 3", adapter),
        )

        assert sorted(o.reward_granted for o in outcomes) == [0, 100]
        assert _list_of(board_service, cards[3]) == "Done"
        entries = await services.ledger.entries("u1")
        assert [e.reason for e in entries if e.reason.startswith("Completed Week")] == ["Completed Week 3"]

        async with uow_factory() as uow:
            stored = await uow.goals.get(uow.session, goal.id)
        assert stored.reward_total == 100

    async def test_clarify_does_not_mutate(self, services, board_service, uow_factory):
        board_id, _, _ = await _provision(board_service)
        goal = await _goal(uow_factory, board_id)

        outcome = await services.interpreter.interpret(goal, "I'm done!", board_service.adapter("u1"))

        assert outcome.reply == CLARIFY_REPLY
        assert outcome.applied == []
        assert "move_card" not in board_service.calls

    async def test_missing_card_gets_neutral_reply(self, services, board_service, uow_factory):
        board_id, _, _ = await _provision(board_service)
        goal = await _goal(uow_factory, board_id)

        outcome = await services.interpreter.interpret(goal, "I started week 9", board_service.adapter("u1"))

        assert outcome.reply == NEUTRAL_ACKNOWLEDGMENT
        assert outcome.applied == []
        assert "move_card" not in board_service.calls

    async def test_goal_without_board(self, services, board_service, uow_factory):
        goal = await _goal(uow_factory, None)

        outcome = await services.interpreter.interpret(goal, "I started week 1", board_service.adapter("u1"))

        assert outcome.reply == NEUTRAL_ACKNOWLEDGMENT
        assert board_service.calls == []

    async def test_delegate_applies_only_valid_actions(self, services, board_service, planning, uow_factory):
        board_id, _, cards = await _provision(board_service)
        goal = await _goal(uow_factory, board_id)
        _, card = board_service.find_card(cards[1])
        item_id = card.checklists[0].items[0].id

        planning.interpretation = ProgressInterpretation(
            reply="Nice run!",
            actions=[
                ProgressAction(type="move_card", card_id="no-such-card", target_list="Done"),
                ProgressAction(type="move_card", card_id=cards[1], target_list="Backlog"),
                ProgressAction(type="update_checklist", card_id=cards[1], item_id="no-such-item"),
                ProgressAction(type="update_checklist", card_id=cards[1], item_id=item_id, completed=True),
                ProgressAction(type="move_card", card_id=cards[1], target_list="Doing"),
            ]
        )

        outcome = await services.interpreter.interpret(goal, "Went for a long run", board_service.adapter("u1"))

        assert outcome.rule == "delegate"
        assert outcome.reply == "Nice run!"
        assert outcome.applied == [f"checklist:{item_id}:complete", f"move:{cards[1]}:Doing"]
        assert _list_of(board_service, cards[1]) == "Doing"
        _, card = board_service.find_card(cards[1])
        assert card.checklists[0].items[0].state == "complete"
        assert outcome.reward_granted == 0

    async def test_delegate_move_to_done_grants_week_reward(self, services, board_service, planning, uow_factory):
        board_id, _, cards = await _provision(board_service)
        goal = await _goal(uow_factory, board_id)
        planning.interpretation = ProgressInterpretation(
            reply="Week one in the bag!",
            actions=[ProgressAction(type="move_card", card_id=cards[1], target_list="Done")]
        )

        outcome = await services.interpreter.interpret(goal, "All of the first week is behind me", board_service.adapter("u1"))

        assert outcome.reward_granted == 100
        assert _list_of(board_service, cards[1]) == "Done"


# =============================================================================
# Completion
# =============================================================================

@pytest.mark.asyncio(loop_scope="function")
class TestGoalCompletion:

    async def test_completing_all_weeks_completes_goal_once(self, services, board_service, uow_factory):
        """
        SCENARIO: all four weeks reported complete
        EXPECTED: goal completed at the threshold, certificate and bonus once,
                  first-goal achievement unlocked, success notification sent
        """
        board_id, list_ids, cards = await _provision(board_service)
        goal = await _goal(uow_factory, board_id)
        adapter = board_service.adapter("u1")

        outcomes = []
        for week in range(1, 5):
            outcomes.append(await services.interpreter.interpret(goal, f"finished week {week}", adapter))

        assert [o.goal_completed for o in outcomes] == [False, False, False, True]

        # A later report cannot complete the goal a second time
        await adapter.move_card(cards[4], list_ids["Doing"])
        again = await services.interpreter.interpret(goal, "finished week 4", adapter)
        assert again.goal_completed is False

        async with uow_factory() as uow:
            stored = await uow.goals.get(uow.session, goal.id)
            certificates = await uow.certificates.list_for_owner(uow.session, "u1")
        assert stored.status == "completed"
        assert stored.completed_at is not None
        assert stored.progress == pytest.approx(1.0)
        assert stored.reward_total == 4 * 100 + 500
        assert [c.type for c in certificates] == ["goal_completion"]

        achievements = {a.type for a in await services.ledger.achievements("u1")}
        assert "first_goal_completed" in achievements

        view = await services.ledger.balances("u1")
        entries = await services.ledger.entries("u1", limit=200)
        assert view.confirmed == sum(e.amount for e in entries) == 400 + 500 + 200

        notices = services.outbox.outbox("u1")
        assert [n.severity for n in notices] == ["success"]
