"""
Goals API Endpoints
Read-only views of materialized goals and the notification outbox
"""
from typing import List, Optional

from fastapi import APIRouter, Depends, Query

from dependencies import ServiceContainer, get_container, get_owner
from exceptions import GoalNotFound, OwnerMismatch
from schemas import GoalView, NotificationView

router = APIRouter(tags=["goals"])


@router.get("/goals", response_model=List[GoalView])
async def list_goals(
    status: Optional[str] = Query(None, description="Filter by status"),
    owner: str = Depends(get_owner),
    services: ServiceContainer = Depends(get_container)
):
    async with services.uow() as uow:
        goals = await uow.goals.list_for_owner(uow.session, owner, status=status)
    return [GoalView.model_validate(goal) for goal in goals]


@router.get("/goals/{goal_id}", response_model=GoalView)
async def get_goal(
    goal_id: str,
    owner: str = Depends(get_owner),
    services: ServiceContainer = Depends(get_container)
):
    async with services.uow() as uow:
        goal = await uow.goals.get(uow.session, goal_id)
    if goal is None:
        raise GoalNotFound(goal_id)
    if goal.owner != owner:
        raise OwnerMismatch("goal", goal_id, owner)
    return GoalView.model_validate(goal)


@router.get("/notifications", response_model=List[NotificationView])
async def list_notifications(
    owner: str = Depends(get_owner),
    services: ServiceContainer = Depends(get_container)
):
    return [
        NotificationView(message=n.message, severity=n.severity, created_at=n.created_at)
        for n in services.outbox.outbox(owner)
    ]
