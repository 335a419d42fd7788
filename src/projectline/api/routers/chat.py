from __future__ import annotations

import logging
from typing import Dict, List, NoReturn

from fastapi import APIRouter, Depends, HTTPException, Query, status

from ...domain.chat_models import (
    ChatMessage,
    ChatMessageCreate,
    ChatSearchHit,
    ChatTurn,
    Conversation,
    ConversationCreate,
    ConversationUpdate,
    ConversationWithMessages,
    PageType,
)
from ...domain.context_models import ChatContext
from ...infrastructure.conversation_store import ConversationNotFound, get_conversation_store
from ...infrastructure.workspace_store import WorkspaceStoreError, get_workspace_store
from ...security.auth import User
from ...security.rate_limit import RateLimitExceeded
from ...security.rbac import Permission, require_permission
from ...services.chat_session import (
    ActionNotFound,
    ChatGenerationError,
    ConversationBusy,
    get_chat_session_service,
    present_message,
)
from ...services.context_builder import build_context


logger = logging.getLogger(__name__)

router = APIRouter(tags=["chat"])

GENERATION_FAILED = "The assistant could not generate a response. Please try again."


def _organization_id(user: User) -> str:
    membership = get_workspace_store().ensure_membership(user.user_id, user.email, user.name)
    return membership.organization_id


def _raise_http(exc: Exception) -> NoReturn:
    if isinstance(exc, (ConversationNotFound, ActionNotFound)):
        detail = exc.args[0] if exc.args else "Not found"
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=detail)
    if isinstance(exc, ConversationBusy):
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(exc))
    if isinstance(exc, RateLimitExceeded):
        raise HTTPException(
            status_code=status.HTTP_429_TOO_MANY_REQUESTS,
            detail=str(exc),
            headers={"Retry-After": str(exc.retry_after_seconds)},
        )
    if isinstance(exc, ChatGenerationError):
        logger.warning("chat_generation_error", extra={"err": str(exc)})
        raise HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail=GENERATION_FAILED)
    if isinstance(exc, WorkspaceStoreError):
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(exc))
    raise exc


_HANDLED = (
    ConversationNotFound,
    ActionNotFound,
    ConversationBusy,
    RateLimitExceeded,
    ChatGenerationError,
    WorkspaceStoreError,
)


@router.get("/ai/context", response_model=ChatContext)
async def get_context(
    page_type: PageType = Query("other"),
    project_id: str | None = Query(None),
    client_id: str | None = Query(None),
    user: User = Depends(require_permission(Permission.WORKSPACE_READ)),
) -> ChatContext:
    return await build_context(
        get_workspace_store(),
        user,
        page_type=page_type,
        project_id=project_id,
        client_id=client_id,
    )


# ----------------------------------------------------------------------
# Conversations
# ----------------------------------------------------------------------
@router.post("/chat/conversations", response_model=Conversation, status_code=status.HTTP_201_CREATED)
def create_conversation(
    req: ConversationCreate,
    user: User = Depends(require_permission(Permission.ASSISTANT_USE)),
) -> Conversation:
    title = (req.title or "").strip() or None
    return get_conversation_store().create_conversation(_organization_id(user), user.user_id, title)


@router.get("/chat/conversations", response_model=List[Conversation])
def list_conversations(user: User = Depends(require_permission(Permission.ASSISTANT_USE))) -> List[Conversation]:
    return get_conversation_store().list_conversations(_organization_id(user), user.user_id)


@router.get("/chat/search", response_model=List[ChatSearchHit])
def search_conversations(
    q: str = Query(..., min_length=2, alias="query"),
    limit: int = Query(20, ge=1, le=50),
    user: User = Depends(require_permission(Permission.ASSISTANT_USE)),
) -> List[ChatSearchHit]:
    return get_conversation_store().search(_organization_id(user), user.user_id, q, limit=limit)


@router.get("/chat/conversations/{conversation_id}", response_model=ConversationWithMessages)
def get_conversation(
    conversation_id: str,
    user: User = Depends(require_permission(Permission.ASSISTANT_USE)),
) -> ConversationWithMessages:
    service = get_chat_session_service()
    try:
        messages = service.history(user, conversation_id)
    except _HANDLED as exc:
        _raise_http(exc)
    conv = get_conversation_store().get_conversation(conversation_id)
    return ConversationWithMessages(conversation=conv, messages=messages)


@router.patch("/chat/conversations/{conversation_id}", response_model=Conversation)
def rename_conversation(
    conversation_id: str,
    req: ConversationUpdate,
    user: User = Depends(require_permission(Permission.ASSISTANT_USE)),
) -> Conversation:
    store = get_conversation_store()
    conv = store.get_conversation(conversation_id)
    if conv is None or conv.user_id != user.user_id:
        raise HTTPException(status_code=404, detail="Conversation not found")
    title = req.title.strip()
    if not title:
        raise HTTPException(status_code=400, detail="Title cannot be empty")
    return store.rename_conversation(conversation_id, title)


@router.delete("/chat/conversations/{conversation_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_conversation(
    conversation_id: str,
    user: User = Depends(require_permission(Permission.ASSISTANT_USE)),
) -> None:
    store = get_conversation_store()
    conv = store.get_conversation(conversation_id)
    if conv is None or conv.user_id != user.user_id:
        raise HTTPException(status_code=404, detail="Conversation not found")
    store.delete_conversation(conversation_id)


# ----------------------------------------------------------------------
# Messages
# ----------------------------------------------------------------------
@router.post("/chat/conversations/{conversation_id}/messages", response_model=ChatTurn)
async def send_message(
    conversation_id: str,
    msg: ChatMessageCreate,
    user: User = Depends(require_permission(Permission.ASSISTANT_USE)),
) -> ChatTurn:
    content = msg.content.strip()
    if not content:
        raise HTTPException(status_code=400, detail="Message cannot be empty")
    service = get_chat_session_service()
    try:
        turn = await service.send_message(
            user,
            conversation_id,
            content,
            attachments=msg.attachments,
            page=msg.page,
        )
    except _HANDLED as exc:
        _raise_http(exc)
    if turn.assistant_message is not None:
        turn.assistant_message = present_message(turn.assistant_message, service.config.max_suggestions)
    return turn


@router.post("/chat/conversations/{conversation_id}/stop")
async def stop_generation(
    conversation_id: str,
    user: User = Depends(require_permission(Permission.ASSISTANT_USE)),
) -> Dict[str, bool]:
    try:
        stopped = get_chat_session_service().stop_generation(user, conversation_id)
    except _HANDLED as exc:
        _raise_http(exc)
    return {"stopped": stopped}


@router.delete("/chat/conversations/{conversation_id}/messages")
def clear_messages(
    conversation_id: str,
    user: User = Depends(require_permission(Permission.ASSISTANT_USE)),
) -> Dict[str, int]:
    try:
        removed = get_chat_session_service().clear(user, conversation_id)
    except _HANDLED as exc:
        _raise_http(exc)
    return {"deleted": removed}


@router.post("/chat/conversations/{conversation_id}/messages/{message_id}/confirm", response_model=ChatMessage)
async def confirm_action(
    conversation_id: str,
    message_id: str,
    user: User = Depends(require_permission(Permission.ASSISTANT_APPLY)),
) -> ChatMessage:
    service = get_chat_session_service()
    try:
        message = await service.confirm_action(user, conversation_id, message_id)
    except _HANDLED as exc:
        _raise_http(exc)
    return present_message(message, service.config.max_suggestions)


@router.post("/chat/conversations/{conversation_id}/messages/{message_id}/confirm-all", response_model=ChatMessage)
async def confirm_all_actions(
    conversation_id: str,
    message_id: str,
    user: User = Depends(require_permission(Permission.ASSISTANT_APPLY)),
) -> ChatMessage:
    service = get_chat_session_service()
    try:
        message = await service.confirm_all_actions(user, conversation_id, message_id)
    except _HANDLED as exc:
        _raise_http(exc)
    return present_message(message, service.config.max_suggestions)


@router.post("/chat/conversations/{conversation_id}/messages/{message_id}/cancel")
async def cancel_batch(
    conversation_id: str,
    message_id: str,
    user: User = Depends(require_permission(Permission.ASSISTANT_APPLY)),
) -> Dict[str, bool]:
    try:
        cancelled = get_chat_session_service().cancel_batch(user, conversation_id, message_id)
    except _HANDLED as exc:
        _raise_http(exc)
    return {"cancelled": cancelled}
