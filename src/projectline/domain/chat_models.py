from __future__ import annotations

from typing import Any, Dict, List, Optional, Literal
from pydantic import BaseModel, Field

from .actions import CreatedEntity, ProposedAction, SuggestedAction


Role = Literal["user", "assistant"]
ActionStatus = Literal["pending", "executing", "success", "error"]
PageType = Literal[
    "projects_list",
    "project_detail",
    "my_tasks",
    "clients_list",
    "client_detail",
    "settings",
    "inbox",
    "other",
]


class Attachment(BaseModel):
    id: str
    name: str
    type: str
    extracted_text: Optional[str] = None


class ActionState(BaseModel):
    type: str
    data: Dict[str, Any] = Field(default_factory=dict)
    status: ActionStatus = "pending"
    error: Optional[str] = None
    created_entity: Optional[CreatedEntity] = None

    @classmethod
    def pending(cls, action: ProposedAction) -> "ActionState":
        return cls(type=action.type, data=dict(action.data), status="pending")

    def as_action(self) -> ProposedAction:
        return ProposedAction(type=self.type, data=dict(self.data))


class MultiActionState(BaseModel):
    actions: List[ActionState]
    current_index: int = 0
    is_executing: bool = False
    created_ids: Dict[str, str] = Field(default_factory=dict)


class Conversation(BaseModel):
    conversation_id: str
    organization_id: str
    user_id: str
    title: str
    created_at: str
    updated_at: str


class ChatMessage(BaseModel):
    message_id: str
    conversation_id: str
    role: Role
    content: str
    created_at: str
    attachments: Optional[List[Attachment]] = None
    action: Optional[ActionState] = None
    multi_action: Optional[MultiActionState] = None
    suggested_actions: Optional[List[SuggestedAction]] = None
    metadata: Optional[dict] = None


class ConversationWithMessages(BaseModel):
    conversation: Conversation
    messages: List[ChatMessage]


class ConversationCreate(BaseModel):
    title: Optional[str] = None


class ConversationUpdate(BaseModel):
    title: str = Field(min_length=1, max_length=200)


class PageContext(BaseModel):
    page_type: PageType = "other"
    project_id: Optional[str] = None
    client_id: Optional[str] = None
    filters: Optional[Dict[str, Any]] = None


class ChatMessageCreate(BaseModel):
    content: str = Field(min_length=1)
    attachments: Optional[List[Attachment]] = None
    page: Optional[PageContext] = None


class ChatResponse(BaseModel):
    """Parsed assistant reply: prose plus any trailing directives."""

    content: str
    action: Optional[ProposedAction] = None
    actions: Optional[List[ProposedAction]] = None
    suggested_actions: Optional[List[SuggestedAction]] = None


class ChatSearchHit(BaseModel):
    conversation: Conversation
    message: Optional[ChatMessage] = None
    snippet: str


class AISettings(BaseModel):
    user_id: str
    ai_provider: Optional[str] = None
    ai_api_key: Optional[str] = None
    ai_model_preference: Optional[str] = None


class AISettingsUpdate(BaseModel):
    ai_provider: Optional[str] = None
    ai_api_key: Optional[str] = None
    ai_model_preference: Optional[str] = None


class AISettingsView(BaseModel):
    ai_provider: Optional[str] = None
    ai_model_preference: Optional[str] = None
    api_key_hint: Optional[str] = None
    configured: bool = False


class AIConnectionResult(BaseModel):
    success: bool
    provider: str
    model: str


class ChatModelOption(BaseModel):
    provider: str
    model: str
    label: str
    description: Optional[str] = None
    available: bool


class ChatTurn(BaseModel):
    """Outcome of sending one message; ``assistant_message`` is None when stopped."""

    user_message: ChatMessage
    assistant_message: Optional[ChatMessage] = None
    stopped: bool = False
