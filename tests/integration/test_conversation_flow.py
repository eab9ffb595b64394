"""
CONVERSATION FLOW TESTS

End-to-end through ConversationService with fake collaborators:
welcome -> connect -> slot-filling -> materializing -> active.
"""
import asyncio

import pytest

from conversation_service import (
    CONNECTED_PROMPT,
    GREETING_LINKED,
    GREETING_UNLINKED,
    MATERIALIZING_START,
    STILL_WORKING,
)
from exceptions import CollaboratorError, EmptyMessage, OwnerMismatch, SessionNotFound
from planning_client import FALLBACK_QUESTIONS, FIRST_PROMPT

pytestmark = pytest.mark.asyncio(loop_scope="function")


async def _answer_all(conversations, session_id, answers, owner="u1"):
    result = None
    for answer in answers:
        result = await conversations.handle_message(owner, session_id, answer)
    return result


class TestUnlinkedOwner:

    async def test_full_flow(self, services, board_service, marathon_answers):
        """
        SCENARIO: owner without a board link sets a goal and reports progress
        EXPECTED: connect prompt, resume on link, six prompts in order,
                  active goal, first progress report moves week 1
        """
        conversations = services.conversations

        chat_session, greeting = await conversations.start_session("u1")
        assert greeting == GREETING_UNLINKED
        assert chat_session.state == "welcome"

        result = await conversations.handle_message("u1", chat_session.id, "hi")
        assert result.state == "connect"
        assert "trello.com/1/authorize" in result.replies[0]

        reminder = await conversations.handle_message("u1", chat_session.id, "are you there?")
        assert reminder.state == "connect"
        assert "still waiting" in reminder.replies[0]

        await services.link_store.link("u1", "tok")
        resumed = await conversations.on_board_linked("u1")
        assert len(resumed) == 1
        assert resumed[0].state == "slot-filling"
        assert resumed[0].replies == [CONNECTED_PROMPT]

        prompts = []
        for answer in marathon_answers[:-1]:
            step = await conversations.handle_message("u1", chat_session.id, answer)
            prompts.append(step.replies[0])
            assert step.state == "slot-filling"
        assert prompts == FALLBACK_QUESTIONS

        final = await conversations.handle_message("u1", chat_session.id, marathon_answers[-1])
        assert final.state == "active"
        assert final.goal_id is not None
        assert final.replies[0] == MATERIALIZING_START
        assert "is live" in final.replies[1]

        progress = await conversations.handle_message("u1", chat_session.id, "I started week 1")
        assert progress.state == "active"
        assert "Week 1" in progress.replies[0]
        assert "move_card" in board_service.calls

        stored, messages = await conversations.get_session("u1", chat_session.id)
        assert stored.state == "active"
        assert stored.goal_id == final.goal_id
        assert [item["slot"] for item in stored.slot_answers] == ["what", "why", "when", "where", "who", "how"]
        assert messages[0].content == GREETING_UNLINKED
        assert sum(1 for m in messages if m.role == "user") == 2 + len(marathon_answers) + 1

    async def test_connect_keyword_repeats_link(self, services):
        chat_session, _ = await services.conversations.start_session("u1")
        await services.conversations.handle_message("u1", chat_session.id, "hi")

        result = await services.conversations.handle_message("u1", chat_session.id, "how do I connect?")

        assert result.replies[0].startswith("To get started")

    async def test_message_in_connect_after_link_resumes(self, services):
        chat_session, _ = await services.conversations.start_session("u1")
        await services.conversations.handle_message("u1", chat_session.id, "hi")
        await services.link_store.link("u1", "tok")

        result = await services.conversations.handle_message("u1", chat_session.id, "done, connected")

        assert result.state == "slot-filling"
        assert result.replies == [CONNECTED_PROMPT]


class TestLinkedOwner:

    async def test_skips_connect(self, services):
        await services.link_store.link("u1", "tok")

        chat_session, greeting = await services.conversations.start_session("u1")
        result = await services.conversations.handle_message("u1", chat_session.id, "hello")

        assert greeting == GREETING_LINKED
        assert result.state == "slot-filling"
        assert result.replies == [FIRST_PROMPT]

    async def test_board_failure_then_retry(self, services, board_service, marathon_answers):
        """
        SCENARIO: board creation fails on the last answer, then recovers
        EXPECTED: back to slot-filling with answers kept; next message
                  re-runs materialization and the goal goes live
        """
        await services.link_store.link("u1", "tok")
        board_service.fail("create_board", CollaboratorError(collaborator="board", message="unavailable"))
        chat_session, _ = await services.conversations.start_session("u1")
        await services.conversations.handle_message("u1", chat_session.id, "hello")

        failed = await _answer_all(services.conversations, chat_session.id, marathon_answers)
        assert failed.state == "slot-filling"
        assert "here is your plan" in failed.replies[1]

        board_service.failures.clear()
        retried = await services.conversations.handle_message("u1", chat_session.id, "try again please")

        assert retried.state == "active"
        assert retried.goal_id is not None

    async def test_link_lost_during_materialization(self, services, board_service, marathon_answers):
        await services.link_store.link("u1", "tok")
        chat_session, _ = await services.conversations.start_session("u1")
        await services.conversations.handle_message("u1", chat_session.id, "hello")
        await services.link_store.unlink("u1")

        result = await _answer_all(services.conversations, chat_session.id, marathon_answers)

        assert result.state == "connect"
        assert board_service.calls == []

        await services.link_store.link("u1", "tok")
        resumed = await services.conversations.on_board_linked("u1")

        assert resumed[0].state == "active"
        assert resumed[0].goal_id is not None


class TestConcurrency:

    async def test_concurrent_messages_materialize_once(self, services, board_service, planning, marathon_answers):
        """
        SCENARIO: two messages arrive together while answers are complete
        EXPECTED: exactly one saga run, one goal, one creation reward
        """
        await services.link_store.link("u1", "tok")
        board_service.fail("create_board", CollaboratorError(collaborator="board", message="unavailable"))
        chat_session, _ = await services.conversations.start_session("u1")
        await services.conversations.handle_message("u1", chat_session.id, "hello")
        await _answer_all(services.conversations, chat_session.id, marathon_answers)
        board_service.failures.clear()
        plan_calls_before = planning.plan_calls

        results = await asyncio.gather(
            services.conversations.handle_message("u1", chat_session.id, "retry"),
            services.conversations.handle_message("u1", chat_session.id, "retry now"),
        )

        assert planning.plan_calls == plan_calls_before + 1
        assert sum(1 for r in results if r.goal_id is not None and MATERIALIZING_START in r.replies) == 1
        assert any(STILL_WORKING in r.replies or r.state == "active" for r in results)

        async with services.uow() as uow:
            goals = await uow.goals.list_for_owner(uow.session, "u1")
        assert len(goals) == 1
        entries = [e for e in await services.ledger.entries("u1") if e.reason.startswith("Goal created")]
        assert len(entries) == 1

    async def test_concurrent_answers_are_both_recorded(self, services):
        """
        SCENARIO: two answers arrive together right after the goal is named
        EXPECTED: both land in consecutive slots, nothing is overwritten
        """
        await services.link_store.link("u1", "tok")
        chat_session, _ = await services.conversations.start_session("u1")
        await services.conversations.handle_message("u1", chat_session.id, "hello")
        await services.conversations.handle_message("u1", chat_session.id, "Run a marathon")

        results = await asyncio.gather(
            services.conversations.handle_message("u1", chat_session.id, "health"),
            services.conversations.handle_message("u1", chat_session.id, "6 months"),
        )

        stored, _ = await services.conversations.get_session("u1", chat_session.id)
        assert [item["slot"] for item in stored.slot_answers] == ["what", "why", "when"]
        assert {item["answer"] for item in stored.slot_answers[1:]} == {"health", "6 months"}
        assert stored.answer_count == 3
        assert sorted(r.replies[0] for r in results) == sorted(FALLBACK_QUESTIONS[1:3])

    async def test_concurrent_first_messages_leave_welcome_once(self, services):
        """
        SCENARIO: two first messages race out of welcome
        EXPECTED: one gets the first prompt, the other is taken as the goal
        """
        await services.link_store.link("u1", "tok")
        chat_session, _ = await services.conversations.start_session("u1")

        results = await asyncio.gather(
            services.conversations.handle_message("u1", chat_session.id, "hello"),
            services.conversations.handle_message("u1", chat_session.id, "Run a marathon"),
        )

        assert [r.replies for r in results].count([FIRST_PROMPT]) == 1
        assert all(r.state == "slot-filling" for r in results)
        stored, _ = await services.conversations.get_session("u1", chat_session.id)
        assert [item["slot"] for item in stored.slot_answers] == ["what"]


class TestValidation:

    async def test_empty_message_rejected(self, services):
        chat_session, _ = await services.conversations.start_session("u1")
        with pytest.raises(EmptyMessage):
            await services.conversations.handle_message("u1", chat_session.id, "   ")

    async def test_unknown_session(self, services):
        with pytest.raises(SessionNotFound):
            await services.conversations.handle_message("u1", "missing", "hello")

    async def test_foreign_session_checked_before_content(self, services):
        chat_session, _ = await services.conversations.start_session("u1")
        with pytest.raises(OwnerMismatch):
            await services.conversations.handle_message("intruder", chat_session.id, "")

    async def test_start_session_survives_cache_outage(self, services, mock_redis):
        mock_redis.fail = True
        chat_session, greeting = await services.conversations.start_session("u1")
        assert chat_session.id
        assert greeting == GREETING_UNLINKED
