"""
Conversation API Endpoints
Session lifecycle and message handling
"""
from fastapi import APIRouter, Depends

from dependencies import ServiceContainer, get_container, get_owner
from schemas import ConversationReply, MessageCreate, MessageView, SessionView

router = APIRouter(prefix="/sessions", tags=["conversation"])


@router.post("", response_model=ConversationReply, status_code=201)
async def start_session(
    owner: str = Depends(get_owner),
    services: ServiceContainer = Depends(get_container)
):
    """Open a new goal-setting conversation"""
    chat_session, greeting = await services.conversations.start_session(owner)
    return ConversationReply(
        session_id=chat_session.id,
        state=chat_session.state,
        replies=[greeting]
    )


@router.get("/{session_id}", response_model=SessionView)
async def get_session(
    session_id: str,
    owner: str = Depends(get_owner),
    services: ServiceContainer = Depends(get_container)
):
    chat_session, messages = await services.conversations.get_session(owner, session_id)
    return SessionView(
        id=chat_session.id,
        owner=chat_session.owner,
        state=chat_session.state,
        slot_answers=chat_session.slot_answers or [],
        goal_id=chat_session.goal_id,
        messages=[MessageView.model_validate(message) for message in messages]
    )


@router.post("/{session_id}/messages", response_model=ConversationReply)
async def post_message(
    session_id: str,
    req: MessageCreate,
    owner: str = Depends(get_owner),
    services: ServiceContainer = Depends(get_container)
):
    """Send a user message; replies come back in order"""
    result = await services.conversations.handle_message(owner, session_id, req.content)
    return ConversationReply(
        session_id=result.session_id,
        state=result.state,
        replies=result.replies,
        goal_id=result.goal_id
    )
