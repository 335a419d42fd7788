"""Conversation state machine on top of the stores and the assistant.

One service instance serves the whole process. Message content is written
once; only the action state attached to an assistant message changes after
it is stored:

    pending -> executing -> success | error      (error -> executing on retry)

A multi-action message runs through the batch orchestrator with
``is_executing`` set for the duration of the run and ``current_index``
pointing at the item in flight.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Dict, List, Optional, Tuple

from ..domain.actions import ActionExecutionResult
from ..domain.chat_models import (
    ActionState,
    AISettings,
    Attachment,
    ChatMessage,
    ChatTurn,
    MultiActionState,
    PageContext,
)
from ..infrastructure.conversation_store import (
    ConversationNotFound,
    InMemoryConversationStore,
    get_conversation_store,
)
from ..infrastructure.settings_store import InMemorySettingsStore, get_settings_store
from ..infrastructure.workspace_store import (
    InMemoryWorkspaceStore,
    OrganizationScope,
    get_workspace_store,
)
from ..security.auth import User
from .action_executor import ClientSideCallbacks, execute_action
from .batch_orchestrator import execute_batch, prepare_action
from .chat_ai import send_chat_message
from .chat_config import ChatConfig
from .chat_providers import ProviderError
from .context_builder import build_context
from .model_router import ModelRouter, ProviderConfigError


logger = logging.getLogger(__name__)


class ChatGenerationError(Exception):
    """The assistant could not produce a reply; the message is user-safe."""


class ConversationBusy(Exception):
    """A reply is already being generated for the conversation."""


class ActionNotFound(LookupError):
    pass


def present_message(message: ChatMessage, max_suggestions: int) -> ChatMessage:
    """Return the message as shown to a client, with suggestions capped."""
    if not message.suggested_actions or len(message.suggested_actions) <= max_suggestions:
        return message
    return message.model_copy(update={"suggested_actions": message.suggested_actions[: max(0, max_suggestions)]})


def _apply_result(state: ActionState, result: ActionExecutionResult) -> ActionState:
    return state.model_copy(
        update={
            "status": "success" if result.success else "error",
            "error": None if result.success else result.error,
            "created_entity": result.created_entity,
        }
    )


class ChatSessionService:
    def __init__(
        self,
        conversations: Optional[InMemoryConversationStore] = None,
        workspace: Optional[InMemoryWorkspaceStore] = None,
        settings: Optional[InMemorySettingsStore] = None,
        router: Optional[ModelRouter] = None,
        config: Optional[ChatConfig] = None,
    ) -> None:
        self._conversations = conversations
        self._workspace = workspace
        self._settings = settings
        self._router = router
        self._config = config
        self._generations: Dict[str, asyncio.Task] = {}
        self._stopped: set[str] = set()
        self._sending: set[str] = set()
        self._batch_cancels: Dict[Tuple[str, str], asyncio.Event] = {}

    # ------------------------------------------------------------------
    # Collaborators (resolved lazily so test fixtures can reset singletons)
    # ------------------------------------------------------------------
    @property
    def conversations(self) -> InMemoryConversationStore:
        return self._conversations or get_conversation_store()

    @property
    def workspace(self) -> InMemoryWorkspaceStore:
        return self._workspace or get_workspace_store()

    @property
    def settings(self) -> InMemorySettingsStore:
        return self._settings or get_settings_store()

    @property
    def config(self) -> ChatConfig:
        return self._config or ChatConfig.from_env()

    def _owned(self, user: User, conversation_id: str):
        conv = self.conversations.get_conversation(conversation_id)
        if conv is None or conv.user_id != user.user_id:
            raise ConversationNotFound("Conversation not found")
        return conv

    def _message(self, conversation_id: str, message_id: str) -> ChatMessage:
        message = self.conversations.get_message(conversation_id, message_id)
        if message is None or message.role != "assistant":
            raise ActionNotFound("Message not found")
        return message

    def _save_outcome(self, conversation_id: str, message: ChatMessage, **changes) -> ChatMessage:
        """Store action state; if the message was cleared meanwhile, just report it."""
        try:
            return self.conversations.update_message(conversation_id, message.message_id, **changes)
        except ConversationNotFound:
            logger.info("action_message_gone", extra={"conversation_id": conversation_id, "message_id": message.message_id})
            return message.model_copy(update=changes)

    def is_generating(self, conversation_id: str) -> bool:
        task = self._generations.get(conversation_id)
        return task is not None and not task.done()

    # ------------------------------------------------------------------
    # Sending
    # ------------------------------------------------------------------
    async def send_message(
        self,
        user: User,
        conversation_id: str,
        content: str,
        *,
        attachments: Optional[List[Attachment]] = None,
        page: Optional[PageContext] = None,
    ) -> ChatTurn:
        conv = self._owned(user, conversation_id)
        if conversation_id in self._sending:
            raise ConversationBusy("A reply is already being generated")
        self._sending.add(conversation_id)
        try:
            return await self._send(user, conv.conversation_id, content, attachments, page)
        finally:
            self._sending.discard(conversation_id)

    async def _send(
        self,
        user: User,
        conversation_id: str,
        content: str,
        attachments: Optional[List[Attachment]],
        page: Optional[PageContext],
    ) -> ChatTurn:
        prior = [{"role": m.role, "content": m.content} for m in self.conversations.list_messages(conversation_id)]
        user_message = self.conversations.add_message(conversation_id, "user", content, attachments=attachments)

        page = page or PageContext()
        context = await build_context(
            self.workspace,
            user,
            page_type=page.page_type,
            project_id=page.project_id,
            client_id=page.client_id,
            filters=page.filters,
            attachments=attachments,
        )
        settings: Optional[AISettings] = self.settings.get(user.user_id)

        task = asyncio.create_task(
            send_chat_message(
                context,
                prior + [{"role": "user", "content": content}],
                user_id=user.user_id,
                settings=settings,
                router=self._router,
                config=self.config,
            )
        )
        self._generations[conversation_id] = task
        self._stopped.discard(conversation_id)
        try:
            reply = await task
        except asyncio.CancelledError:
            if conversation_id in self._stopped:
                logger.info("chat_generation_stopped", extra={"conversation_id": conversation_id})
                return ChatTurn(user_message=user_message, stopped=True)
            task.cancel()
            raise
        except (ProviderError, ProviderConfigError) as exc:
            self.conversations.delete_message(conversation_id, user_message.message_id)
            logger.warning("chat_generation_failed", extra={"conversation_id": conversation_id, "err": str(exc)})
            raise ChatGenerationError(str(exc)) from exc
        except Exception:
            self.conversations.delete_message(conversation_id, user_message.message_id)
            raise
        finally:
            self._generations.pop(conversation_id, None)
            self._stopped.discard(conversation_id)

        parsed = reply.response
        action = None
        multi_action = None
        if parsed.actions:
            multi_action = MultiActionState(actions=[ActionState.pending(a) for a in parsed.actions])
        elif parsed.action is not None:
            action = ActionState.pending(parsed.action)

        assistant = self.conversations.add_message(
            conversation_id,
            "assistant",
            parsed.content,
            action=action,
            multi_action=multi_action,
            suggested_actions=parsed.suggested_actions,
            metadata={"provider": reply.provider, "model": reply.model, "tokens_used": reply.tokens_used},
        )
        return ChatTurn(user_message=user_message, assistant_message=assistant)

    def stop_generation(self, user: User, conversation_id: str) -> bool:
        """Abort the in-flight reply; nothing is stored for it."""
        self._owned(user, conversation_id)
        task = self._generations.get(conversation_id)
        if task is None or task.done():
            return False
        self._stopped.add(conversation_id)
        task.cancel()
        return True

    # ------------------------------------------------------------------
    # Actions
    # ------------------------------------------------------------------
    def _scope(self, user: User) -> OrganizationScope:
        membership = self.workspace.ensure_membership(user.user_id, user.email, user.name)
        return OrganizationScope(self.workspace, membership.organization_id)

    async def confirm_action(
        self,
        user: User,
        conversation_id: str,
        message_id: str,
        callbacks: Optional[ClientSideCallbacks] = None,
    ) -> ChatMessage:
        """Execute a message's single pending action (or retry a failed one)."""
        self._owned(user, conversation_id)
        message = self._message(conversation_id, message_id)
        state = message.action
        if state is None:
            raise ActionNotFound("Message has no action")
        if state.status not in ("pending", "error"):
            return message

        state = state.model_copy(update={"status": "executing", "error": None})
        self.conversations.update_message(conversation_id, message_id, action=state)

        scope = self._scope(user)
        result = await execute_action(prepare_action(state.as_action(), {}, scope.org_id), scope, callbacks)
        return self._save_outcome(conversation_id, message, action=_apply_result(state, result))

    async def confirm_all_actions(
        self,
        user: User,
        conversation_id: str,
        message_id: str,
        callbacks: Optional[ClientSideCallbacks] = None,
    ) -> ChatMessage:
        """Run every not-yet-successful action of a multi-action message in order."""
        self._owned(user, conversation_id)
        message = self._message(conversation_id, message_id)
        multi = message.multi_action
        if multi is None:
            raise ActionNotFound("Message has no actions")
        if multi.is_executing:
            return message
        todo = [i for i, a in enumerate(multi.actions) if a.status != "success"]
        if not todo:
            return message

        state = multi.model_copy(update={"is_executing": True, "current_index": todo[0]}, deep=True)
        self.conversations.update_message(conversation_id, message_id, multi_action=state)
        key = (conversation_id, message_id)
        cancel_event = asyncio.Event()
        self._batch_cancels[key] = cancel_event

        def on_progress(index: int, phase: str, result: Optional[ActionExecutionResult]) -> None:
            target = todo[index]
            if phase == "started":
                state.current_index = target
                state.actions[target] = state.actions[target].model_copy(update={"status": "executing", "error": None})
            elif result is not None:
                state.actions[target] = _apply_result(state.actions[target], result)
                if result.created_entity is not None:
                    state.created_ids[result.created_entity.type] = result.created_entity.id
            self._save_outcome(conversation_id, message, multi_action=state)

        scope = self._scope(user)
        try:
            await execute_batch(
                [multi.actions[i].as_action() for i in todo],
                scope,
                callbacks,
                org_id=scope.org_id,
                on_progress=on_progress,
                cancel_event=cancel_event,
            )
        finally:
            self._batch_cancels.pop(key, None)
            for i, item in enumerate(state.actions):
                if item.status in ("pending", "executing"):
                    state.actions[i] = item.model_copy(update={"status": "error", "error": "Execution interrupted"})
            state.is_executing = False
            updated = self._save_outcome(conversation_id, message, multi_action=state)
        return updated

    def cancel_batch(self, user: User, conversation_id: str, message_id: str) -> bool:
        """Ask a running batch to stop before its next action."""
        self._owned(user, conversation_id)
        event = self._batch_cancels.get((conversation_id, message_id))
        if event is None:
            return False
        event.set()
        return True

    # ------------------------------------------------------------------
    # Housekeeping
    # ------------------------------------------------------------------
    def clear(self, user: User, conversation_id: str) -> int:
        self._owned(user, conversation_id)
        return self.conversations.clear_messages(conversation_id)

    def history(self, user: User, conversation_id: str) -> List[ChatMessage]:
        self._owned(user, conversation_id)
        cap = self.config.max_suggestions
        return [present_message(m, cap) for m in self.conversations.list_messages(conversation_id)]


_service: ChatSessionService | None = None


def get_chat_session_service() -> ChatSessionService:
    global _service
    if _service is None:
        _service = ChatSessionService()
    return _service


def reset_chat_session_service() -> None:
    global _service
    _service = None
