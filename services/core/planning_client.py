"""
Planning Client - OpenAI-compatible chat and image endpoints

Turns slot answers into a weekly plan, personalizes follow-up prompts,
produces the vision artifact and interprets free-text progress.

Questions, plans and progress interpretation fall back to deterministic
output when the collaborator is unavailable. The vision artifact has no
fallback; callers skip the step instead.

Author: Goal Forge Core Team
"""
import json
from datetime import date, timedelta
from typing import List, Optional

import httpx
from pydantic import ValidationError

from config import (
    OPENAI_API_BASE,
    OPENAI_API_KEY,
    PLANNING_MODEL,
    IMAGE_MODEL,
    STEP_TIMEOUT_SECONDS,
)
from error_handler import call_with_retry
from exceptions import CollaboratorError, TransientCollaboratorError
from logging_config import get_logger
from schemas import BoardSnapshot, GoalPlan, ProgressInterpretation, SlotAnswers

logger = get_logger(__name__)

FIRST_PROMPT = "Let's start with your goal. What would you like to achieve?"

FALLBACK_QUESTIONS = [
    "Great! Now let's understand your motivation. Why is this goal important to you? What's driving you to achieve it?",
    "Excellent! Now let's talk about timing. When do you want to achieve this goal? What's your target timeline?",
    "Perfect! Now let's discuss the environment. Where will you be working on this goal? What's your workspace or environment like?",
    "Good! Now let's think about support. Who else might be involved in helping you achieve this goal? Do you have mentors, teammates, or supporters?",
    "Great! Finally, let's plan your approach. How do you plan to achieve this goal? What's your strategy or methodology?",
]

NEUTRAL_ACKNOWLEDGMENT = (
    "Great progress! I understand you've been working on your goal. Keep up the excellent work!"
)

_FALLBACK_WEEKS = [
    ("Foundation and planning", [
        ("Research and gather resources", "2 hours"),
        ("Create initial plan", "1 hour"),
        ("Set up workspace", "30 minutes"),
    ]),
    ("Initial implementation", [
        ("Start core work", "3 hours"),
        ("Track progress", "30 minutes"),
        ("Adjust plan if needed", "1 hour"),
    ]),
    ("Deep work and refinement", [
        ("Continue core work", "4 hours"),
        ("Review and refine", "1 hour"),
        ("Prepare for completion", "1 hour"),
    ]),
    ("Finalization and completion", [
        ("Complete remaining work", "2 hours"),
        ("Final review", "1 hour"),
        ("Celebrate achievement", "30 minutes"),
    ]),
]


def fallback_plan(answers: SlotAnswers, today: Optional[date] = None) -> GoalPlan:
    """Four-week plan used when the collaborator cannot produce one."""
    today = today or date.today()
    return GoalPlan(
        title=answers.what,
        description=f"Goal: {answers.what}\nWhy: {answers.why}\nTimeline: {answers.when}",
        total_weeks=len(_FALLBACK_WEEKS),
        estimated_completion=(today + timedelta(days=7 * len(_FALLBACK_WEEKS))).isoformat(),
        weekly_tasks=[
            {
                "week_number": number,
                "description": description,
                "tasks": [{"name": name, "estimated_time": estimate} for name, estimate in tasks],
            }
            for number, (description, tasks) in enumerate(_FALLBACK_WEEKS, start=1)
        ]
    )


def _strip_fences(content: str) -> str:
    content = content.strip()
    if content.startswith("```"):
        content = content.split("\n", 1)[1] if "\n" in content else ""
        content = content.rsplit("```", 1)[0]
    return content.strip()


class PlanningClient:
    """
    Usage:
        planner = PlanningClient()
        plan = await planner.structure_plan(answers)
    """

    def __init__(
        self,
        api_base: str = OPENAI_API_BASE,
        api_key: str = OPENAI_API_KEY,
        model: str = PLANNING_MODEL,
        image_model: str = IMAGE_MODEL,
        timeout: float = STEP_TIMEOUT_SECONDS,
        transport: Optional[httpx.AsyncBaseTransport] = None
    ):
        self.api_base = api_base.rstrip("/")
        self.api_key = api_key
        self.model = model
        self.image_model = image_model
        self.timeout = timeout
        self._transport = transport

    @property
    def enabled(self) -> bool:
        return bool(self.api_key)

    async def _post(self, path: str, payload: dict) -> dict:
        headers = {
            "Content-Type": "application/json",
            "Authorization": f"Bearer {self.api_key}"
        }

        async def _send() -> dict:
            try:
                async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
                    response = await client.post(f"{self.api_base}{path}", json=payload, headers=headers)
            except httpx.TransportError as e:
                raise TransientCollaboratorError(
                    collaborator="planning",
                    message=f"Planning service unreachable: {e}"
                ) from e

            if response.status_code == 429 or response.status_code >= 500:
                raise TransientCollaboratorError(
                    collaborator="planning",
                    message=f"Planning service returned {response.status_code}",
                    details={"status": response.status_code}
                )
            if response.status_code >= 400:
                raise CollaboratorError(
                    collaborator="planning",
                    message=f"Planning service rejected request: {response.status_code}",
                    details={"status": response.status_code, "body": response.text[:200]}
                )
            return response.json()

        return await call_with_retry(_send, name=f"planning {path}", timeout=self.timeout)

    async def _chat_json(self, system: str, prompt: str, max_tokens: int = 2000):
        result = await self._post("/chat/completions", {
            "model": self.model,
            "messages": [
                {"role": "system", "content": system},
                {"role": "user", "content": prompt},
            ],
            "max_tokens": max_tokens,
            "temperature": 0.7,
        })
        content = result["choices"][0]["message"]["content"] or ""
        return json.loads(_strip_fences(content))

    # ------------------------------------------------------------------
    # Operations
    # ------------------------------------------------------------------

    async def generate_questions(self, initial_goal: str) -> List[str]:
        """Five personalized prompts for why, when, where, who, how."""
        if not self.enabled:
            return list(FALLBACK_QUESTIONS)

        prompt = (
            f'The user wants to achieve: "{initial_goal}".\n'
            "Write five short, encouraging follow-up questions asking, in this order, "
            "why it matters, when they want to achieve it, where they will work on it, "
            "who can help, and how they plan to do it. "
            'Return JSON: {"questions": ["...", "...", "...", "...", "..."]}'
        )
        try:
            data = await self._chat_json("You are an expert goal-setting coach.", prompt, max_tokens=600)
            questions = [str(q).strip() for q in data.get("questions", []) if str(q).strip()]
        except (CollaboratorError, ValueError, KeyError, IndexError, TypeError, AttributeError) as e:
            logger.warning("question_generation_fallback", error=str(e))
            return list(FALLBACK_QUESTIONS)

        if len(questions) != len(FALLBACK_QUESTIONS):
            logger.warning("question_generation_fallback", error="wrong question count", count=len(questions))
            return list(FALLBACK_QUESTIONS)
        return questions

    async def structure_plan(self, answers: SlotAnswers) -> GoalPlan:
        if not self.enabled:
            return fallback_plan(answers)

        prompt = (
            "Create a detailed weekly plan for this goal.\n"
            f"{answers.as_prompt()}\n\n"
            "Return JSON:\n"
            '{"title": "Goal title", "description": "Goal description", '
            '"weeklyTasks": [{"weekNumber": 1, "description": "Week focus", '
            '"tasks": [{"name": "Task", "description": "Details", "estimatedTime": "Time estimate"}]}], '
            '"totalWeeks": 4, "estimatedCompletion": "Completion date"}'
        )
        try:
            data = await self._chat_json(
                "You are an expert goal-setting coach. Create detailed, actionable weekly breakdowns for goals.",
                prompt
            )
            plan = GoalPlan.model_validate(data)
        except (CollaboratorError, ValidationError, ValueError, KeyError, IndexError, TypeError) as e:
            logger.warning("plan_generation_fallback", error=str(e))
            return fallback_plan(answers)

        if not plan.weekly_tasks:
            logger.warning("plan_generation_fallback", error="plan has no weeks")
            return fallback_plan(answers)
        return plan

    async def generate_vision_artifact(self, answers: SlotAnswers) -> str:
        """URL of a motivational image. Raises CollaboratorError on any failure."""
        if not self.enabled:
            raise CollaboratorError(collaborator="planning", message="Image generation not configured")

        prompt = (
            "A cinematic, inspiring motivational poster representing this goal.\n"
            f"GOAL: {answers.what}\nPURPOSE: {answers.why}\n"
            f"TIMELINE: {answers.when}\nLOCATION: {answers.where}"
        )
        result = await self._post("/images/generations", {
            "model": self.image_model,
            "prompt": prompt,
            "n": 1,
            "size": "1024x1024",
            "response_format": "url",
        })
        try:
            url = result["data"][0]["url"]
        except (KeyError, IndexError, TypeError) as e:
            raise CollaboratorError(collaborator="planning", message="Image response carried no URL") from e
        if not url:
            raise CollaboratorError(collaborator="planning", message="Image response carried no URL")
        return url

    async def interpret_progress(self, message: str, snapshot: BoardSnapshot) -> ProgressInterpretation:
        if not self.enabled:
            return ProgressInterpretation(reply=NEUTRAL_ACKNOWLEDGMENT)

        cards = [
            {
                "id": card.id,
                "name": card.name,
                "listName": board_list.name,
                "checklists": [checklist.model_dump() for checklist in card.checklists],
            }
            for board_list in snapshot.lists
            for card in board_list.cards
        ]
        prompt = (
            f'User said: "{message}"\n\n'
            f"Available cards: {json.dumps(cards)}\n"
            f"Available lists: {json.dumps([board_list.name for board_list in snapshot.lists])}\n\n"
            "Determine which board actions to take. Return JSON:\n"
            '{"actions": [{"type": "update_checklist", "cardId": "card_id", "itemId": "item_id", "completed": true}, '
            '{"type": "move_card", "cardId": "card_id", "targetList": "Done"}], '
            '"response": "Encouraging response to user"}'
        )
        try:
            data = await self._chat_json(
                "You are a goal-tracking assistant. Analyze user progress and determine board actions.",
                prompt,
                max_tokens=1000
            )
            interpretation = ProgressInterpretation.model_validate(data)
        except (CollaboratorError, ValidationError, ValueError, KeyError, IndexError, TypeError) as e:
            logger.warning("progress_interpretation_fallback", error=str(e))
            return ProgressInterpretation(reply=NEUTRAL_ACKNOWLEDGMENT)

        if not interpretation.reply:
            interpretation.reply = NEUTRAL_ACKNOWLEDGMENT
        return interpretation
