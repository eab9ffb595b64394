"""
Goal Materialization Saga

Turns six slot answers into a live goal. Steps run in order; each one
has a criticality that decides what a failure means:

    1. plan          critical      abort, remediation text
    2. board         critical      abort, plan still returned as text
    3. vision        non-critical  skipped silently
    4. attach        non-critical  skipped (always when 3 skipped)
    5. reward        non-critical  pending XP rolled back, user told
    6. credential    non-critical  "not minted" without wallet or ledger
    7. certificate   non-critical  soft warning notification
    8. finalize      goal persisted active, one consolidated message

Completed steps are never rolled back when a later step fails. External
calls are bounded and retried once inside the adapters.

Author: Goal Forge Core Team
"""
from dataclasses import dataclass, field
from datetime import date, datetime, time, timedelta, timezone
from typing import Callable, List, Optional

from board_adapter import BOARD_LISTS, BoardLinkStore, BoardProvisioningAdapter
from config import CREATION_REWARD_XP
from credentials import SoulboundCredentialRegistry, build_credential_metadata
from exceptions import (
    BoardLinkExpired,
    BoardNotLinked,
    InvalidPlan,
    LedgerNotConfigured,
    ValidationFailed,
)
from logging_config import get_logger, log_error
from models import Goal, GoalStatus, RewardSource, new_id, utcnow
from schemas import GoalPlan, ProvisionedBoard, SlotAnswers

logger = get_logger(__name__)

SUCCEEDED = "succeeded"
SKIPPED = "skipped"
FAILED = "failed"

COMPLETED = "completed"
ABORTED = "aborted"

# Remediation kinds for an aborted run
REMEDIATE_CONNECT = "connect"
REMEDIATE_RETRY = "retry"

GENERIC_APOLOGY = (
    "I'm sorry, I encountered an error while processing your goal. "
    "Please try again in a moment."
)


@dataclass
class StepOutcome:
    name: str
    status: str
    detail: str = ""


@dataclass
class SagaResult:
    status: str
    reply: str
    goal_id: Optional[str] = None
    steps: List[StepOutcome] = field(default_factory=list)
    remediation: Optional[str] = None
    plan_text: Optional[str] = None

    def step(self, name: str) -> Optional[StepOutcome]:
        for outcome in self.steps:
            if outcome.name == name:
                return outcome
        return None


class _Abort(Exception):
    """Internal: a critical step failed."""

    def __init__(self, reply: str, remediation: str):
        super().__init__(reply)
        self.reply = reply
        self.remediation = remediation


def week_due_date(week: int, start: Optional[date] = None) -> str:
    """End of week N from ``start``, ISO-8601 UTC."""
    start = start or date.today()
    due = datetime.combine(start + timedelta(days=7 * week), time(23, 59), tzinfo=timezone.utc)
    return due.isoformat()


class GoalMaterializationSaga:
    """
    Usage:
        result = await saga.run(owner, session_id, chat_session.slot_answers)
        if result.status == COMPLETED:
            ...
    """

    def __init__(
        self,
        uow_factory,
        planning,
        board_adapter_factory: Callable[[str], BoardProvisioningAdapter],
        link_store: BoardLinkStore,
        ledger,
        wallets,
        credentials: SoulboundCredentialRegistry,
        certificates,
        notifier,
        creation_reward: int = CREATION_REWARD_XP
    ):
        self._uow = uow_factory
        self._planning = planning
        self._board_adapter_factory = board_adapter_factory
        self._link_store = link_store
        self._ledger = ledger
        self._wallets = wallets
        self._credentials = credentials
        self._certificates = certificates
        self._notifier = notifier
        self._creation_reward = creation_reward

    async def run(self, owner: str, session_id: str, slot_answers: list) -> SagaResult:
        steps: List[StepOutcome] = []
        plan_text = None
        logger.info("saga_started", owner=owner, session_id=session_id)

        try:
            answers, plan = await self._plan(owner, slot_answers)
            steps.append(StepOutcome("plan", SUCCEEDED, f"{len(plan.weekly_tasks)} weeks"))
            plan_text = plan.as_text()

            goal = Goal(
                id=new_id(),
                owner=owner,
                session_id=session_id,
                title=plan.title,
                description=plan.description,
                weekly_tasks=[week.model_dump() for week in plan.weekly_tasks],
                slot_answers=answers.model_dump(),
                status=GoalStatus.ACTIVE.value,
                progress=0.0,
                reward_total=0,
                created_at=utcnow()
            )

            adapter = self._board_adapter_factory(owner)
            board = await self._board(adapter, plan, plan_text)
            goal.board_id = board.board_id
            goal.board_url = board.url
            steps.append(StepOutcome("board", SUCCEEDED, board.url or board.board_id))

        except _Abort as abort:
            steps.append(StepOutcome("plan" if plan_text is None else "board", FAILED, abort.reply))
            logger.warning("saga_aborted", owner=owner, session_id=session_id, step=steps[-1].name)
            return SagaResult(
                status=ABORTED,
                reply=abort.reply,
                steps=steps,
                remediation=abort.remediation,
                plan_text=plan_text
            )

        steps.append(await self._vision(answers, goal))
        steps.append(await self._attach(adapter, board, goal))
        steps.append(await self._reward(owner, goal))
        steps.append(await self._credential(owner, goal))
        steps.append(await self._certificate(owner, goal))

        try:
            async with self._uow() as uow:
                await uow.goals.save(uow.session, goal)
                await uow.sessions.attach_goal(uow.session, session_id, goal.id)
        except Exception as e:
            log_error(e, {"step": "finalize", "owner": owner, "session_id": session_id})
            steps.append(StepOutcome("finalize", FAILED, str(e)))
            return SagaResult(
                status=ABORTED,
                reply=GENERIC_APOLOGY,
                steps=steps,
                remediation=REMEDIATE_RETRY,
                plan_text=plan_text
            )
        steps.append(StepOutcome("finalize", SUCCEEDED))

        logger.info(
            "saga_completed",
            owner=owner,
            goal_id=goal.id,
            skipped=[s.name for s in steps if s.status != SUCCEEDED]
        )
        return SagaResult(
            status=COMPLETED,
            reply=self._summary(goal, steps),
            goal_id=goal.id,
            steps=steps,
            plan_text=plan_text
        )

    # ------------------------------------------------------------------
    # Critical steps
    # ------------------------------------------------------------------

    async def _plan(self, owner: str, slot_answers: list):
        if not await self._link_store.is_linked(owner):
            raise _Abort(BoardNotLinked.remediation, REMEDIATE_CONNECT)

        try:
            answers = SlotAnswers.from_recorded(slot_answers)
            plan: GoalPlan = await self._planning.structure_plan(answers)
            if not plan.weekly_tasks:
                raise InvalidPlan("plan has no weekly tasks")
        except ValidationFailed as e:
            raise _Abort(
                f"I couldn't build a plan yet: {e.message}. Let's fill in the missing details.",
                REMEDIATE_RETRY
            ) from e
        except Exception as e:
            log_error(e, {"step": "plan", "owner": owner})
            raise _Abort(
                "I couldn't generate your plan right now. Send me any message to try again.",
                REMEDIATE_RETRY
            ) from e
        return answers, plan

    async def _board(self, adapter: BoardProvisioningAdapter, plan: GoalPlan, plan_text: str) -> ProvisionedBoard:
        try:
            board = await adapter.create_board(plan.title, plan.description)
            board.list_ids = await adapter.create_lists(board.board_id, list(BOARD_LISTS))
            for week in plan.weekly_tasks:
                card_id = await adapter.create_card(
                    board.list_ids["To Do"],
                    f"Week {week.week_number}",
                    week.description,
                    due_date=week_due_date(week.week_number)
                )
                board.week_cards[week.week_number] = card_id
                if week.tasks:
                    await adapter.create_checklist(card_id, [task.name for task in week.tasks])
        except (BoardNotLinked, BoardLinkExpired) as e:
            raise _Abort(
                f"{e.remediation}\n\nHere is your plan so far:\n{plan_text}",
                REMEDIATE_CONNECT
            ) from e
        except Exception as e:
            log_error(e, {"step": "board", "title": plan.title})
            raise _Abort(
                "I couldn't create your board right now, but here is your plan:\n"
                f"{plan_text}\n\nSend me any message and I'll try creating the board again.",
                REMEDIATE_RETRY
            ) from e
        return board

    # ------------------------------------------------------------------
    # Non-critical steps
    # ------------------------------------------------------------------

    async def _vision(self, answers: SlotAnswers, goal: Goal) -> StepOutcome:
        try:
            goal.vision_url = await self._planning.generate_vision_artifact(answers)
        except Exception as e:
            logger.info("saga_step_skipped", step="vision", goal_id=goal.id, error=str(e))
            return StepOutcome("vision", SKIPPED, "vision image unavailable")
        return StepOutcome("vision", SUCCEEDED)

    async def _attach(self, adapter: BoardProvisioningAdapter, board: ProvisionedBoard, goal: Goal) -> StepOutcome:
        if not goal.vision_url:
            return StepOutcome("attach", SKIPPED, "no vision image")
        try:
            card_id = await adapter.create_card(
                board.list_ids["Vision"],
                "Goal Vision",
                f"The vision behind: {goal.title}"
            )
            await adapter.attach_url(card_id, goal.vision_url, "Goal Vision")
        except Exception as e:
            logger.warning("saga_step_skipped", step="attach", goal_id=goal.id, error=str(e))
            return StepOutcome("attach", SKIPPED, "vision card not added")
        return StepOutcome("attach", SUCCEEDED)

    async def _reward(self, owner: str, goal: Goal) -> StepOutcome:
        if self._creation_reward <= 0:
            return StepOutcome("reward", SKIPPED, "no creation reward configured")
        try:
            await self._ledger.grant(
                owner,
                self._creation_reward,
                f"Goal created: {goal.title}",
                RewardSource.MILESTONE.value,
                goal_id=goal.id
            )
        except Exception as e:
            log_error(e, {"step": "reward", "owner": owner, "goal_id": goal.id}, "WARNING")
            return StepOutcome("reward", FAILED, "XP could not be saved")
        goal.reward_total = (goal.reward_total or 0) + self._creation_reward
        return StepOutcome("reward", SUCCEEDED, f"+{self._creation_reward} XP")

    async def _credential(self, owner: str, goal: Goal) -> StepOutcome:
        try:
            wallet = await self._wallets.get_wallet(owner)
            if wallet is None:
                return StepOutcome("credential", SKIPPED, "credential not minted: no wallet")

            _, metadata_uri = build_credential_metadata(goal, wallet.address)
            credential, _ = await self._credentials.mint(wallet.address, goal.id, metadata_uri)
        except LedgerNotConfigured:
            logger.info("saga_step_skipped", step="credential", goal_id=goal.id, reason="ledger not configured")
            return StepOutcome("credential", SKIPPED, "credential not minted")
        except Exception as e:
            log_error(e, {"step": "credential", "owner": owner, "goal_id": goal.id}, "WARNING")
            return StepOutcome("credential", FAILED, "credential not minted")
        goal.credential_id = credential.token_id
        return StepOutcome("credential", SUCCEEDED, f"token {credential.token_id}")

    async def _certificate(self, owner: str, goal: Goal) -> StepOutcome:
        try:
            await self._certificates.issue_creation_certificate(owner, goal)
        except Exception as e:
            log_error(e, {"step": "certificate", "owner": owner, "goal_id": goal.id}, "WARNING")
            await self._notifier.notify(
                owner,
                "Your goal is set up, but the commitment certificate could not be generated.",
                "warning"
            )
            return StepOutcome("certificate", FAILED, "certificate not issued")
        return StepOutcome("certificate", SUCCEEDED)

    # ------------------------------------------------------------------

    def _summary(self, goal: Goal, steps: List[StepOutcome]) -> str:
        labels = {
            "plan": "Weekly plan",
            "board": "Task board",
            "vision": "Vision image",
            "attach": "Vision card",
            "reward": "Creation reward",
            "credential": "Commitment credential",
            "certificate": "Commitment certificate",
        }
        lines = [f'🎉 Your goal "{goal.title}" is live!']
        for step in steps:
            if step.name not in labels:
                continue
            mark = "✓" if step.status == SUCCEEDED else "–"
            detail = f" ({step.detail})" if step.detail else ""
            state = "" if step.status == SUCCEEDED else f" {step.status}"
            lines.append(f"{mark} {labels[step.name]}{state}{detail}")
        if goal.board_url:
            lines.append(f"Your board: {goal.board_url}")
        lines.append("Report your progress here anytime, for example: \"I started week 1\".")
        return "\n".join(lines)
