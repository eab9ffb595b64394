"""
Certificates

One certificate per (goal, type). Completion certificates carry a bonus
that is granted through the reward ledger exactly once, by the call that
issued the certificate.
"""
from typing import Tuple

from sqlalchemy.exc import IntegrityError

from config import COMPLETION_BONUS_XP
from logging_config import get_logger
from models import Certificate, CertificateType, RewardSource

logger = get_logger(__name__)


class CertificateService:

    def __init__(self, uow_factory, ledger, completion_bonus: int = COMPLETION_BONUS_XP):
        self._uow = uow_factory
        self._ledger = ledger
        self.completion_bonus = completion_bonus

    async def issue_creation_certificate(self, owner: str, goal) -> Tuple[Certificate, bool]:
        return await self._issue(
            owner,
            goal,
            CertificateType.GOAL_CREATION.value,
            title="Goal Commitment Certificate",
            description=f'Certifies the commitment to the goal: "{goal.title}"',
            xp_awarded=0
        )

    async def issue_completion_certificate(self, owner: str, goal) -> Tuple[Certificate, bool]:
        certificate, created = await self._issue(
            owner,
            goal,
            CertificateType.GOAL_COMPLETION.value,
            title="Goal Completion Certificate",
            description=f'Congratulations on completing your goal: "{goal.title}"',
            xp_awarded=self.completion_bonus
        )
        if created and self.completion_bonus > 0:
            await self._ledger.grant(
                owner,
                self.completion_bonus,
                "Goal completion bonus",
                RewardSource.GOAL_COMPLETION.value,
                goal_id=goal.id
            )
        return certificate, created

    async def list_for_owner(self, owner: str) -> list:
        async with self._uow() as uow:
            return await uow.certificates.list_for_owner(uow.session, owner)

    async def _issue(self, owner, goal, certificate_type, title, description, xp_awarded) -> Tuple[Certificate, bool]:
        async with self._uow() as uow:
            existing = await uow.certificates.get(uow.session, goal.id, certificate_type)
            if existing is not None:
                return existing, False

        try:
            async with self._uow() as uow:
                certificate = Certificate(
                    owner=owner,
                    goal_id=goal.id,
                    type=certificate_type,
                    title=title,
                    description=description,
                    goal_title=goal.title,
                    xp_awarded=xp_awarded
                )
                await uow.certificates.add(uow.session, certificate)
        except IntegrityError:
            async with self._uow() as uow:
                return await uow.certificates.get(uow.session, goal.id, certificate_type), False

        logger.info("certificate_issued", owner=owner, goal_id=goal.id, type=certificate_type)
        return certificate, True
