"""
Conversations router: brand/creator threads and their unread counters.
"""
from fastapi import APIRouter, status
from marketplace.dependencies import Conversations, CurrentUser
from marketplace.schemas import (
    ConversationCreate,
    ConversationResponse,
    MessageCreate,
    MessageResponse,
)

router = APIRouter()


def conversation_response(conversation, user_id: str) -> ConversationResponse:
    return ConversationResponse(
        id=conversation.id,
        participants=conversation.participants,
        last_message=conversation.last_message,
        last_message_at=conversation.last_message_at,
        unread_count=(conversation.unread_counts or {}).get(user_id, 0),
    )


@router.get("/conversations", response_model=list[ConversationResponse])
async def list_conversations(current_user: CurrentUser, conversations: Conversations):
    return [
        conversation_response(c, current_user.user_id)
        for c in conversations.list_for_user(current_user.user_id)
    ]


@router.post("/conversations", response_model=ConversationResponse, status_code=status.HTTP_201_CREATED)
async def open_conversation(body: ConversationCreate, current_user: CurrentUser, conversations: Conversations):
    conversation = conversations.open(current_user, body.participant_id)
    return conversation_response(conversation, current_user.user_id)


@router.post(
    "/conversations/{conversation_id}/messages",
    response_model=MessageResponse,
    status_code=status.HTTP_201_CREATED,
)
async def send_message(
    conversation_id: str,
    body: MessageCreate,
    current_user: CurrentUser,
    conversations: Conversations,
):
    return conversations.send_message(conversation_id, current_user, body.text)


@router.post("/conversations/{conversation_id}/read", response_model=ConversationResponse)
async def mark_conversation_read(conversation_id: str, current_user: CurrentUser, conversations: Conversations):
    conversation = conversations.mark_read(conversation_id, current_user)
    return conversation_response(conversation, current_user.user_id)
