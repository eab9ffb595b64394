"""
Board API Endpoints
Authorization link and token storage for the board service
"""
from typing import Optional

from fastapi import APIRouter, Depends, Query

from board_adapter import authorization_url
from config import TRELLO_RETURN_URL
from dependencies import ServiceContainer, get_container, get_owner
from schemas import AuthorizationView, BoardLinkRequest, ConversationReply

router = APIRouter(prefix="/board", tags=["board"])


@router.get("/authorize", response_model=AuthorizationView)
async def get_authorization(
    return_url: Optional[str] = Query(None),
    owner: str = Depends(get_owner),
    services: ServiceContainer = Depends(get_container)
):
    return AuthorizationView(
        authorization_url=authorization_url(return_url or TRELLO_RETURN_URL),
        linked=await services.link_store.is_linked(owner)
    )


@router.post("/link")
async def link_board(
    req: BoardLinkRequest,
    owner: str = Depends(get_owner),
    services: ServiceContainer = Depends(get_container)
):
    """Store the token from the authorization callback and resume waiting sessions"""
    await services.link_store.link(owner, req.token)
    resumed = await services.conversations.on_board_linked(owner)
    return {
        "linked": True,
        "resumed_sessions": [
            ConversationReply(
                session_id=result.session_id,
                state=result.state,
                replies=result.replies,
                goal_id=result.goal_id
            )
            for result in resumed
        ]
    }


@router.delete("/link")
async def unlink_board(
    owner: str = Depends(get_owner),
    services: ServiceContainer = Depends(get_container)
):
    removed = await services.link_store.unlink(owner)
    return {"linked": False, "removed": removed}
