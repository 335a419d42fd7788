from __future__ import annotations

from dataclasses import dataclass
from datetime import UTC, datetime
from threading import RLock
from typing import Any, Dict, List, Optional, Protocol
import uuid

from ..domain.actions import SuggestedAction
from ..domain.chat_models import (
    ActionState,
    Attachment,
    ChatMessage,
    ChatSearchHit,
    Conversation,
    MultiActionState,
)


DEFAULT_TITLE = "New Chat"
TITLE_MAX_LENGTH = 50
LIST_LIMIT = 50

_MUTABLE_MESSAGE_FIELDS = {"action", "multi_action", "suggested_actions", "metadata"}


class ConversationNotFound(KeyError):
    pass


class ConversationStore(Protocol):
    def create_conversation(self, organization_id: str, user_id: str, title: Optional[str] = None) -> Conversation: ...

    def list_conversations(self, organization_id: str, user_id: str) -> List[Conversation]: ...

    def get_conversation(self, conversation_id: str) -> Optional[Conversation]: ...

    def rename_conversation(self, conversation_id: str, title: str) -> Conversation: ...

    def delete_conversation(self, conversation_id: str) -> None: ...

    def add_message(self, conversation_id: str, role: str, content: str, **fields: Any) -> ChatMessage: ...

    def get_message(self, conversation_id: str, message_id: str) -> Optional[ChatMessage]: ...

    def update_message(self, conversation_id: str, message_id: str, **changes: Any) -> ChatMessage: ...

    def delete_message(self, conversation_id: str, message_id: str) -> None: ...

    def list_messages(self, conversation_id: str) -> List[ChatMessage]: ...

    def clear_messages(self, conversation_id: str) -> int: ...

    def search(self, organization_id: str, user_id: str, query: str, limit: int = 20) -> List[ChatSearchHit]: ...


def generate_title(content: str) -> str:
    """Derive a conversation title from its first message."""
    text = content.strip()
    if len(text) <= TITLE_MAX_LENGTH:
        return text or DEFAULT_TITLE
    truncated = text[:TITLE_MAX_LENGTH]
    last_space = truncated.rfind(" ")
    if last_space > 20:
        return truncated[:last_space] + "..."
    return truncated + "..."


@dataclass
class _Conversation:
    conversation_id: str
    organization_id: str
    user_id: str
    title: str
    created_at: str
    updated_at: str
    titled: bool = False


class InMemoryConversationStore:
    def __init__(self) -> None:
        self._conversations: Dict[str, _Conversation] = {}
        self._messages: Dict[str, List[ChatMessage]] = {}
        self._lock = RLock()

    def _now_iso(self) -> str:
        return datetime.now(UTC).isoformat().replace("+00:00", "Z")

    def _conversation_model(self, conv: _Conversation) -> Conversation:
        return Conversation(
            conversation_id=conv.conversation_id,
            organization_id=conv.organization_id,
            user_id=conv.user_id,
            title=conv.title,
            created_at=conv.created_at,
            updated_at=conv.updated_at,
        )

    def _require(self, conversation_id: str) -> _Conversation:
        conv = self._conversations.get(conversation_id)
        if not conv:
            raise ConversationNotFound("Conversation not found")
        return conv

    def _find(self, conversation_id: str, message_id: str) -> int:
        for idx, message in enumerate(self._messages.get(conversation_id, [])):
            if message.message_id == message_id:
                return idx
        raise ConversationNotFound("Message not found")

    def _build_snippet(self, text: str, needle: str, radius: int = 60) -> str:
        lowered = text.lower()
        idx = lowered.find(needle)
        if idx == -1:
            snippet = text[: radius * 2].strip()
            return snippet + ("…" if len(text) > len(snippet) else "")
        start = max(0, idx - radius)
        end = min(len(text), idx + len(needle) + radius)
        snippet = text[start:end].strip()
        if start > 0:
            snippet = "…" + snippet
        if end < len(text):
            snippet += "…"
        return snippet

    def create_conversation(self, organization_id: str, user_id: str, title: Optional[str] = None) -> Conversation:
        with self._lock:
            cid = uuid.uuid4().hex
            now = self._now_iso()
            conv = _Conversation(
                conversation_id=cid,
                organization_id=organization_id,
                user_id=user_id,
                title=(title or "").strip() or DEFAULT_TITLE,
                created_at=now,
                updated_at=now,
                titled=bool((title or "").strip()),
            )
            self._conversations[cid] = conv
            self._messages[cid] = []
            return self._conversation_model(conv)

    def list_conversations(self, organization_id: str, user_id: str) -> List[Conversation]:
        with self._lock:
            out = [
                self._conversation_model(c)
                for c in self._conversations.values()
                if c.organization_id == organization_id and c.user_id == user_id
            ]
            out.sort(key=lambda c: c.updated_at, reverse=True)
            return out[:LIST_LIMIT]

    def get_conversation(self, conversation_id: str) -> Optional[Conversation]:
        with self._lock:
            conv = self._conversations.get(conversation_id)
            return self._conversation_model(conv) if conv else None

    def rename_conversation(self, conversation_id: str, title: str) -> Conversation:
        with self._lock:
            conv = self._require(conversation_id)
            conv.title = title.strip() or conv.title
            conv.titled = True
            conv.updated_at = self._now_iso()
            return self._conversation_model(conv)

    def delete_conversation(self, conversation_id: str) -> None:
        with self._lock:
            self._require(conversation_id)
            del self._conversations[conversation_id]
            self._messages.pop(conversation_id, None)

    def add_message(
        self,
        conversation_id: str,
        role: str,
        content: str,
        *,
        attachments: Optional[List[Attachment]] = None,
        action: Optional[ActionState] = None,
        multi_action: Optional[MultiActionState] = None,
        suggested_actions: Optional[List[SuggestedAction]] = None,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> ChatMessage:
        with self._lock:
            conv = self._require(conversation_id)
            now = self._now_iso()
            message = ChatMessage(
                message_id=uuid.uuid4().hex,
                conversation_id=conversation_id,
                role=role,  # type: ignore[arg-type]
                content=content,
                created_at=now,
                attachments=attachments,
                action=action,
                multi_action=multi_action,
                suggested_actions=suggested_actions,
                metadata=dict(metadata) if metadata else None,
            )
            self._messages.setdefault(conversation_id, []).append(message)
            if role == "user" and not conv.titled:
                conv.title = generate_title(content)
                conv.titled = True
            conv.updated_at = now
            return message.model_copy(deep=True)

    def get_message(self, conversation_id: str, message_id: str) -> Optional[ChatMessage]:
        with self._lock:
            try:
                idx = self._find(conversation_id, message_id)
            except ConversationNotFound:
                return None
            return self._messages[conversation_id][idx].model_copy(deep=True)

    def update_message(self, conversation_id: str, message_id: str, **changes: Any) -> ChatMessage:
        """Replace the mutable parts of a message; content stays as written."""
        unknown = set(changes) - _MUTABLE_MESSAGE_FIELDS
        if unknown:
            raise ValueError(f"Cannot update message fields: {', '.join(sorted(unknown))}")
        with self._lock:
            idx = self._find(conversation_id, message_id)
            current = self._messages[conversation_id][idx]
            updated = current.model_copy(update=changes, deep=True)
            self._messages[conversation_id][idx] = updated
            return updated.model_copy(deep=True)

    def delete_message(self, conversation_id: str, message_id: str) -> None:
        with self._lock:
            idx = self._find(conversation_id, message_id)
            del self._messages[conversation_id][idx]

    def list_messages(self, conversation_id: str) -> List[ChatMessage]:
        with self._lock:
            return [m.model_copy(deep=True) for m in self._messages.get(conversation_id, [])]

    def clear_messages(self, conversation_id: str) -> int:
        with self._lock:
            self._require(conversation_id)
            removed = len(self._messages.get(conversation_id, []))
            self._messages[conversation_id] = []
            return removed

    def search(self, organization_id: str, user_id: str, query: str, limit: int = 20) -> List[ChatSearchHit]:
        needle = query.strip().lower()
        if not needle:
            return []
        capped = max(1, min(limit, 50))
        with self._lock:
            hits: List[ChatSearchHit] = []
            owned = [
                c
                for c in sorted(self._conversations.values(), key=lambda c: c.updated_at, reverse=True)
                if c.organization_id == organization_id and c.user_id == user_id
            ]
            for conv in owned:
                conv_model = self._conversation_model(conv)
                if needle in conv.title.lower():
                    hits.append(ChatSearchHit(conversation=conv_model, snippet=conv.title))
                    if len(hits) >= capped:
                        return hits
                for message in reversed(self._messages.get(conv.conversation_id, [])):
                    if needle in message.content.lower():
                        hits.append(
                            ChatSearchHit(
                                conversation=conv_model,
                                message=message.model_copy(deep=True),
                                snippet=self._build_snippet(message.content, needle),
                            )
                        )
                        if len(hits) >= capped:
                            return hits
            return hits


_store: InMemoryConversationStore | None = None


def get_conversation_store() -> InMemoryConversationStore:
    global _store
    if _store is None:
        _store = InMemoryConversationStore()
    return _store
