from typing import Any, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, status

from ....core.security import get_current_active_user
from ....models.conversation import (
    Conversation,
    ConversationList,
    ConversationUpdate,
    Message,
    MessageList,
)
from ....models.user import User
from ....services.conversations import ConversationService, get_conversation_service

router = APIRouter()


def _page(skip: int, limit: int, total: int) -> dict:
    # Map offset pagination to page/page_size for response models
    return {
        "page": (skip // limit) + 1 if limit > 0 else 1,
        "page_size": limit if limit > 0 else total,
    }


def _owned_or_404(service: ConversationService, conversation_id: str, user_id: str):
    conversation = service.get_owned(conversation_id, user_id)
    if conversation is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Conversation not found")
    return conversation


@router.get("", response_model=ConversationList)
async def list_conversations(
    assistant_id: Optional[str] = None,
    skip: int = Query(0, ge=0),
    limit: int = Query(100, ge=1, le=500),
    current_user: User = Depends(get_current_active_user),
    service: ConversationService = Depends(get_conversation_service),
) -> Any:
    """
    List conversations for the current user, most recently active first.

    Args:
        assistant_id: Only conversations with this assistant (or fallback reference)
        skip: Number of conversations to skip
        limit: Maximum number of conversations to return
        current_user: The current authenticated user
        service: Conversation service

    Returns:
        ConversationList: List of conversations with pagination info
    """
    rows, total = service.list_for_user(current_user.id, assistant_id=assistant_id, skip=skip, limit=limit)
    return ConversationList(
        items=[Conversation.from_row(r) for r in rows],
        total=total,
        **_page(skip, limit, total),
    )


@router.get("/{conversation_id}", response_model=Conversation)
async def get_conversation(
    conversation_id: str,
    current_user: User = Depends(get_current_active_user),
    service: ConversationService = Depends(get_conversation_service),
) -> Any:
    """
    Get a conversation by ID.

    Raises:
        HTTPException: If the conversation is not found or belongs to someone else
    """
    return Conversation.from_row(_owned_or_404(service, conversation_id, current_user.id))


@router.put("/{conversation_id}", response_model=Conversation)
async def update_conversation(
    conversation_id: str,
    conversation_in: ConversationUpdate,
    current_user: User = Depends(get_current_active_user),
    service: ConversationService = Depends(get_conversation_service),
) -> Any:
    """Rename a conversation or attach devotional context to it."""
    conversation = _owned_or_404(service, conversation_id, current_user.id)
    updated = service.update(
        conversation,
        title=conversation_in.title,
        devotional_context=conversation_in.devotional_context,
    )
    return Conversation.from_row(updated)


@router.get("/{conversation_id}/messages", response_model=MessageList)
async def get_messages(
    conversation_id: str,
    skip: int = Query(0, ge=0),
    limit: int = Query(100, ge=1, le=1000),
    current_user: User = Depends(get_current_active_user),
    service: ConversationService = Depends(get_conversation_service),
) -> Any:
    """
    Get messages in a conversation, oldest first.

    Raises:
        HTTPException: If the conversation is not found or belongs to someone else
    """
    _owned_or_404(service, conversation_id, current_user.id)
    rows, total = service.history(conversation_id, skip=skip, limit=limit)
    return MessageList(
        items=[Message.from_row(r) for r in rows],
        total=total,
        conversation_id=conversation_id,
        **_page(skip, limit, total),
    )
