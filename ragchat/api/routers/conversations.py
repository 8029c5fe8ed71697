"""Conversation history endpoints."""

from fastapi import APIRouter, Depends, HTTPException, status

from ragchat.api.schemas import ConversationMessagesResponse, MessageResponse
from ragchat.api.dependencies import get_message_store_dep, get_user_id_dep
from ragchat.services.message_store import MessageStore

router = APIRouter(prefix="/conversations", tags=["Conversations"])


@router.get("/{conversation_id}/messages", response_model=ConversationMessagesResponse)
async def get_conversation_messages(
    conversation_id: str,
    store: MessageStore = Depends(get_message_store_dep),
    user_id: str = Depends(get_user_id_dep),
):
    """Return a conversation's title and messages, oldest first."""
    conversation = await store.get_convo(user_id, conversation_id)
    if conversation is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail={"code": "NOT_FOUND", "message": "Conversation not found"},
        )

    messages = await store.get_messages(user_id, conversation_id)
    return ConversationMessagesResponse(
        conversation_id=conversation_id,
        title=conversation["title"],
        messages=[MessageResponse.model_validate(m) for m in messages],
    )
