"""
Rewards API Endpoints
Balance, ledger history and achievements
"""
from typing import List

from fastapi import APIRouter, Depends, Query

from dependencies import ServiceContainer, get_container, get_owner
from schemas import AchievementView, BalanceResponse, LedgerEntryView

router = APIRouter(prefix="/rewards", tags=["rewards"])


@router.get("/me", response_model=BalanceResponse)
async def get_balance(
    owner: str = Depends(get_owner),
    services: ServiceContainer = Depends(get_container)
):
    view = await services.ledger.balances(owner)
    return BalanceResponse(
        owner=owner,
        confirmed=view.confirmed,
        pending=view.pending,
        cached=view.cached,
        level=view.level,
        level_progress=view.level_progress(),
        next_level_at=view.next_level_at()
    )


@router.get("/me/entries", response_model=List[LedgerEntryView])
async def get_entries(
    limit: int = Query(50, ge=1, le=200),
    owner: str = Depends(get_owner),
    services: ServiceContainer = Depends(get_container)
):
    entries = await services.ledger.entries(owner, limit=limit)
    return [LedgerEntryView.model_validate(entry) for entry in entries]


@router.get("/me/achievements", response_model=List[AchievementView])
async def get_achievements(
    owner: str = Depends(get_owner),
    services: ServiceContainer = Depends(get_container)
):
    achievements = await services.ledger.achievements(owner)
    return [AchievementView.model_validate(achievement) for achievement in achievements]
