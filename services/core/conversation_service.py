"""
Conversation Service

Drives one goal-setting conversation through its lifecycle:

    welcome -> connect -> slot-filling -> materializing -> active

Every state change goes through an atomic compare-and-set on the session
row, so two concurrent messages can never start two materializations.
The pure transition rules live in domain.conversation_state.

Author: Goal Forge Core Team
"""
from dataclasses import dataclass, field
from typing import List, Optional, Tuple

from board_adapter import authorization_url
from domain.conversation_state import (
    SLOT_ORDER,
    answers_complete,
    check_transition,
    entry_state,
    next_slot,
    record_answer,
)
from error_handler import ErrorHandler
from exceptions import (
    BoardLinkExpired,
    BoardNotLinked,
    CollaboratorError,
    EmptyMessage,
    OwnerMismatch,
    SessionNotFound,
)
from goal_materialization_saga import COMPLETED, GENERIC_APOLOGY, REMEDIATE_CONNECT
from logging_config import get_logger, log_error, log_session_transition
from models import ChatSession, SessionState
from planning_client import FALLBACK_QUESTIONS, FIRST_PROMPT

logger = get_logger(__name__)

GREETING_LINKED = "Hi! What goal would you like to work on today? Send me a message to get started."
GREETING_UNLINKED = (
    "Hi! Let's connect your board account first so I can create a structured plan for you."
)
CONNECT_PROMPT = (
    "To get started, I need to connect to your board account. This allows me to create "
    "organized boards and track your progress automatically. Connect here: {url}"
)
CONNECT_REMINDER = "I'm still waiting for your board connection. Use this link to connect: {url}"
CONNECTED_PROMPT = "Perfect! You're connected. " + FIRST_PROMPT
MATERIALIZING_START = "Perfect! I have everything I need. Creating your plan and board now..."
STILL_WORKING = "I'm still working on your goal. Hang tight, it will be ready in a moment!"
BOARD_UNAVAILABLE = "I couldn't reach your board right now. Please try again in a moment."


@dataclass
class ConversationResult:
    session_id: str
    state: str
    replies: List[str] = field(default_factory=list)
    goal_id: Optional[str] = None


class ConversationService:
    """
    Usage:
        session_id, greeting = await conversations.start_session(owner)
        result = await conversations.handle_message(owner, session_id, "Run a marathon")
    """

    def __init__(
        self,
        uow_factory,
        link_store,
        planning,
        saga,
        interpreter,
        board_adapter_factory,
        ledger
    ):
        self._uow = uow_factory
        self._link_store = link_store
        self._planning = planning
        self._saga = saga
        self._interpreter = interpreter
        self._board_adapter_factory = board_adapter_factory
        self._ledger = ledger

    # ------------------------------------------------------------------
    # Entry points
    # ------------------------------------------------------------------

    async def start_session(self, owner: str) -> Tuple[ChatSession, str]:
        await ErrorHandler.safe_execute_async(
            self._ledger.reconcile(owner),
            context={"owner": owner, "operation": "reward_reconcile"},
            log_level="WARNING"
        )

        linked = await self._link_store.is_linked(owner)
        greeting = GREETING_LINKED if linked else GREETING_UNLINKED

        async with self._uow() as uow:
            chat_session = ChatSession(
                owner=owner,
                _state=SessionState.WELCOME.value,
                slot_answers=[]
            )
            await uow.sessions.save(uow.session, chat_session)
            await uow.messages.append(uow.session, chat_session.id, "assistant", greeting)

        logger.info("session_started", session_id=chat_session.id, owner=owner, board_linked=linked)
        return chat_session, greeting

    async def get_session(self, owner: str, session_id: str) -> Tuple[ChatSession, list]:
        async with self._uow() as uow:
            chat_session = await self._load(uow, owner, session_id)
            messages = await uow.messages.list_for_session(uow.session, session_id)
        return chat_session, messages

    async def handle_message(self, owner: str, session_id: str, text: str) -> ConversationResult:
        async with self._uow() as uow:
            chat_session = await self._load(uow, owner, session_id)
        if text is None or not text.strip():
            raise EmptyMessage()
        text = text.strip()

        async with self._uow() as uow:
            await uow.messages.append(uow.session, session_id, "user", text)

        replies = await self._dispatch(chat_session, text)
        await self._say(session_id, replies)

        return ConversationResult(
            session_id=session_id,
            state=chat_session.state,
            replies=replies,
            goal_id=chat_session.goal_id
        )

    async def on_board_linked(self, owner: str) -> List[ConversationResult]:
        """Move the owner's sessions waiting in connect forward."""
        async with self._uow() as uow:
            waiting = await uow.sessions.list_for_owner(uow.session, owner, state=SessionState.CONNECT.value)

        results = []
        for chat_session in waiting:
            replies = await self._resume_after_link(chat_session)
            await self._say(chat_session.id, replies)
            results.append(ConversationResult(
                session_id=chat_session.id,
                state=chat_session.state,
                replies=replies,
                goal_id=chat_session.goal_id
            ))
        return results

    # ------------------------------------------------------------------
    # State handlers
    # ------------------------------------------------------------------

    async def _on_welcome(self, chat_session: ChatSession, text: str) -> List[str]:
        linked = await self._link_store.is_linked(chat_session.owner)
        if not await self._transition(chat_session, entry_state(linked), "first message"):
            # Another message left welcome first; answer from where it landed
            await self._refresh(chat_session)
            return await self._dispatch(chat_session, text)
        if linked:
            return [FIRST_PROMPT]
        return [CONNECT_PROMPT.format(url=authorization_url())]

    async def _on_connect(self, chat_session: ChatSession, text: str) -> List[str]:
        if await self._link_store.is_linked(chat_session.owner):
            return await self._resume_after_link(chat_session)
        if "connect" in text.lower():
            return [CONNECT_PROMPT.format(url=authorization_url())]
        return [CONNECT_REMINDER.format(url=authorization_url())]

    async def _on_slot_answer(self, chat_session: ChatSession, text: str) -> List[str]:
        while True:
            answers = chat_session.slot_answers or []
            if answers_complete(answers):
                # A previous materialization aborted; this message retries it
                return await self._materialize(chat_session)

            updated = record_answer(answers, text)
            questions = chat_session.questions
            if updated[-1]["slot"] == "what":
                questions = await self._planning.generate_questions(text)

            async with self._uow() as uow:
                recorded = await uow.sessions.set_answers(
                    uow.session, chat_session.id, updated, questions, expected_count=len(answers)
                )
            if recorded:
                break

            # Another message recorded an answer first: re-read and take the next slot
            logger.info("slot_answer_conflict", session_id=chat_session.id, expected_count=len(answers))
            await self._refresh(chat_session)
            if chat_session.state != SessionState.SLOT_FILLING.value:
                return await self._dispatch(chat_session, text)

        chat_session.slot_answers = updated
        chat_session.answer_count = len(updated)
        chat_session.questions = questions
        logger.info("slot_answer_recorded", session_id=chat_session.id, slot=updated[-1]["slot"])

        if answers_complete(updated):
            return await self._materialize(chat_session)
        return [self._prompt_for(chat_session, next_slot(updated))]

    async def _on_materializing(self, chat_session: ChatSession, text: str) -> List[str]:
        return [STILL_WORKING]

    async def _on_progress(self, chat_session: ChatSession, text: str) -> List[str]:
        owner = chat_session.owner
        async with self._uow() as uow:
            goal = None
            if chat_session.goal_id:
                goal = await uow.goals.get(uow.session, chat_session.goal_id)
            if goal is None:
                goal = await uow.goals.latest_active(uow.session, owner)

        if goal is None:
            return ["I'm here to help you with your goals! How can I assist you today?"]

        try:
            outcome = await self._interpreter.interpret(goal, text, self._board_adapter_factory(owner))
        except (BoardNotLinked, BoardLinkExpired) as e:
            return [f"{e.remediation} {authorization_url()}"]
        except CollaboratorError as e:
            logger.warning("progress_board_unavailable", session_id=chat_session.id, error=str(e))
            return [BOARD_UNAVAILABLE]
        except Exception as e:
            log_error(e, {"session_id": chat_session.id, "owner": owner, "operation": "progress"})
            return [GENERIC_APOLOGY]
        return [outcome.reply]

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    async def _dispatch(self, chat_session: ChatSession, text: str) -> List[str]:
        handlers = {
            SessionState.WELCOME.value: self._on_welcome,
            SessionState.CONNECT.value: self._on_connect,
            SessionState.SLOT_FILLING.value: self._on_slot_answer,
            SessionState.MATERIALIZING.value: self._on_materializing,
            SessionState.ACTIVE.value: self._on_progress,
        }
        return await handlers[chat_session.state](chat_session, text)

    async def _refresh(self, chat_session: ChatSession) -> None:
        """Copy the stored row onto the caller's detached instance."""
        async with self._uow() as uow:
            fresh = await uow.sessions.get(uow.session, chat_session.id)
            uow.sessions.sync_state(chat_session, fresh.state)
        chat_session.slot_answers = fresh.slot_answers
        chat_session.answer_count = fresh.answer_count
        chat_session.questions = fresh.questions
        chat_session.goal_id = fresh.goal_id

    async def _resume_after_link(self, chat_session: ChatSession) -> List[str]:
        await self._transition(chat_session, SessionState.SLOT_FILLING.value, "board linked")
        answers = chat_session.slot_answers or []
        if answers_complete(answers):
            return await self._materialize(chat_session)
        slot = next_slot(answers)
        if slot == "what":
            return [CONNECTED_PROMPT]
        return ["Perfect! You're connected. " + self._prompt_for(chat_session, slot)]

    async def _materialize(self, chat_session: ChatSession) -> List[str]:
        won = await self._transition(
            chat_session, SessionState.MATERIALIZING.value, "all slots answered"
        )
        if not won:
            return [STILL_WORKING]

        replies = [MATERIALIZING_START]
        try:
            result = await self._saga.run(chat_session.owner, chat_session.id, chat_session.slot_answers)
        except Exception as e:
            log_error(e, {"session_id": chat_session.id, "operation": "materialize"})
            await self._transition(chat_session, SessionState.SLOT_FILLING.value, "saga crashed")
            return replies + [GENERIC_APOLOGY]

        if result.status == COMPLETED:
            await self._transition(chat_session, SessionState.ACTIVE.value, "saga completed")
            chat_session.goal_id = result.goal_id
            return replies + [result.reply]

        if result.remediation == REMEDIATE_CONNECT:
            await self._transition(chat_session, SessionState.CONNECT.value, "saga aborted: board link")
            return replies + [result.reply, CONNECT_REMINDER.format(url=authorization_url())]

        await self._transition(chat_session, SessionState.SLOT_FILLING.value, "saga aborted")
        return replies + [result.reply]

    async def _transition(self, chat_session: ChatSession, to_state: str, reason: str) -> bool:
        """Compare-and-set from the instance's current state. False when another writer won."""
        from_state = chat_session.state
        check_transition(chat_session.id, from_state, to_state, reason)

        async with self._uow() as uow:
            won = await uow.sessions.compare_and_set_state(uow.session, chat_session.id, from_state, to_state)

        if not won:
            logger.info("session_transition_lost", session_id=chat_session.id, from_state=from_state, to_state=to_state)
            return False

        uow.sessions.sync_state(chat_session, to_state)
        log_session_transition(chat_session.id, chat_session.owner, from_state, to_state, reason)
        return True

    def _prompt_for(self, chat_session: ChatSession, slot: str) -> str:
        if slot == "what":
            return FIRST_PROMPT
        questions = chat_session.questions or FALLBACK_QUESTIONS
        index = SLOT_ORDER.index(slot) - 1
        if index < len(questions):
            return questions[index]
        return FALLBACK_QUESTIONS[index]

    async def _load(self, uow, owner: str, session_id: str) -> ChatSession:
        chat_session = await uow.sessions.get(uow.session, session_id)
        if chat_session is None:
            raise SessionNotFound(session_id)
        if chat_session.owner != owner:
            raise OwnerMismatch("session", session_id, owner)
        return chat_session

    async def _say(self, session_id: str, replies: List[str]) -> None:
        async with self._uow() as uow:
            for reply in replies:
                await uow.messages.append(uow.session, session_id, "assistant", reply)
