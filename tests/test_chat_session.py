import asyncio
import json

import pytest

from src.projectline.domain.chat_models import PageContext
from src.projectline.infrastructure.conversation_store import ConversationNotFound, get_conversation_store
from src.projectline.security import rate_limit
from src.projectline.security.rate_limit import RateLimitExceeded
from src.projectline.services import chat_providers
from src.projectline.services.action_executor import ClientSideCallbacks
from src.projectline.services.batch_orchestrator import CANCELLED_ERROR
from src.projectline.services.chat_providers import ProviderError
from src.projectline.services.chat_session import (
    ActionNotFound,
    ChatGenerationError,
    ConversationBusy,
    get_chat_session_service,
)
from src.projectline.services.model_router import PROVIDER_NOT_CONFIGURED
from .utils import make_user


USER = make_user()


def _actions(*items):
    return "On it.\nACTIONS_JSON: " + json.dumps([{"type": t, "data": d} for t, d in items])


def _action(kind, data):
    return "Sure thing.\nACTION_JSON: " + json.dumps({"type": kind, "data": data})


@pytest.fixture
def service():
    return get_chat_session_service()


@pytest.fixture
def org_id(workspace):
    return workspace.ensure_membership(USER.user_id, USER.email, USER.name).organization_id


@pytest.fixture
def conversation(org_id):
    return get_conversation_store().create_conversation(org_id, USER.user_id)


@pytest.fixture
def blocking_provider(monkeypatch):
    monkeypatch.setenv("OPENAI_API_KEY", "sk-test-key")
    started = asyncio.Event()

    async def generate(selection, system_prompt, history, *, config=None):
        started.set()
        await asyncio.Event().wait()

    monkeypatch.setattr(chat_providers, "generate", generate)
    return started


@pytest.mark.asyncio
async def test_send_stores_both_messages(service, conversation, fake_provider):
    fake_provider.queue("You have no overdue tasks.")
    turn = await service.send_message(USER, conversation.conversation_id, "What is overdue?")

    assert turn.user_message.content == "What is overdue?"
    assert turn.assistant_message.content == "You have no overdue tasks."
    assert turn.assistant_message.metadata == {"provider": "openai", "model": "gpt-4o-mini", "tokens_used": 42}
    assert [m.role for m in service.history(USER, conversation.conversation_id)] == ["user", "assistant"]
    assert get_conversation_store().get_conversation(conversation.conversation_id).title == "What is overdue?"


@pytest.mark.asyncio
async def test_prior_turns_and_page_reach_the_provider(service, workspace, org_id, conversation, fake_provider):
    project = workspace.create_project(org_id, {"name": "Portal"})
    await service.send_message(USER, conversation.conversation_id, "first")
    await service.send_message(
        USER,
        conversation.conversation_id,
        "second",
        page=PageContext(page_type="project_detail", project_id=project.id),
    )

    second = fake_provider.calls[1]
    assert second["history"] == [
        {"role": "user", "content": "first"},
        {"role": "assistant", "content": "Sure."},
        {"role": "user", "content": "second"},
    ]
    assert "- Page: project detail" in second["system_prompt"]
    assert "## Current Project Detail: Portal" in second["system_prompt"]


@pytest.mark.asyncio
async def test_provider_failure_rolls_back_user_message(service, conversation, fake_provider):
    fake_provider.error = ProviderError("Failed to call OpenAI (GPT-4): boom")
    with pytest.raises(ChatGenerationError):
        await service.send_message(USER, conversation.conversation_id, "hello")
    assert service.history(USER, conversation.conversation_id) == []


@pytest.mark.asyncio
async def test_missing_provider_configuration(service, conversation):
    with pytest.raises(ChatGenerationError) as exc:
        await service.send_message(USER, conversation.conversation_id, "hello")
    assert str(exc.value) == PROVIDER_NOT_CONFIGURED
    assert service.history(USER, conversation.conversation_id) == []


@pytest.mark.asyncio
async def test_rate_limited_turn_is_rolled_back(monkeypatch, service, conversation, fake_provider):
    monkeypatch.setattr(rate_limit, "_rate_limiting_disabled", lambda: False)
    monkeypatch.setenv("PROJECTLINE_AI_RATE_LIMIT", "1")

    await service.send_message(USER, conversation.conversation_id, "one")
    with pytest.raises(RateLimitExceeded):
        await service.send_message(USER, conversation.conversation_id, "two")
    assert [m.content for m in service.history(USER, conversation.conversation_id)] == ["one", "Sure."]


@pytest.mark.asyncio
async def test_other_users_conversation_is_not_found(service, conversation, fake_provider):
    intruder = make_user("user-2", "eve@example.com", "Eve")
    with pytest.raises(ConversationNotFound):
        await service.send_message(intruder, conversation.conversation_id, "hi")
    with pytest.raises(ConversationNotFound):
        service.history(intruder, conversation.conversation_id)


@pytest.mark.asyncio
async def test_stop_generation_keeps_user_message_only(service, conversation, blocking_provider):
    cid = conversation.conversation_id
    pending = asyncio.create_task(service.send_message(USER, cid, "long question"))
    await asyncio.wait_for(blocking_provider.wait(), timeout=5)

    assert service.is_generating(cid)
    assert service.stop_generation(USER, cid) is True
    turn = await asyncio.wait_for(pending, timeout=5)

    assert turn.stopped is True
    assert turn.assistant_message is None
    assert [m.role for m in service.history(USER, cid)] == ["user"]
    assert service.stop_generation(USER, cid) is False


@pytest.mark.asyncio
async def test_second_send_while_generating_is_rejected(service, conversation, blocking_provider):
    cid = conversation.conversation_id
    pending = asyncio.create_task(service.send_message(USER, cid, "first"))
    await asyncio.wait_for(blocking_provider.wait(), timeout=5)

    with pytest.raises(ConversationBusy):
        await service.send_message(USER, cid, "second")

    service.stop_generation(USER, cid)
    await asyncio.wait_for(pending, timeout=5)


@pytest.mark.asyncio
async def test_history_caps_suggestions_but_store_keeps_all(service, conversation, fake_provider):
    suggestions = [{"label": f"S{i}", "prompt": f"Prompt {i}"} for i in range(5)]
    fake_provider.queue("Here you go.\nSUGGESTED_ACTIONS: " + json.dumps(suggestions))
    turn = await service.send_message(USER, conversation.conversation_id, "summary please")

    assert len(turn.assistant_message.suggested_actions) == 5
    shown = service.history(USER, conversation.conversation_id)[-1]
    assert [s.label for s in shown.suggested_actions] == ["S0", "S1", "S2"]


# ----------------------------------------------------------------------
# Single action
# ----------------------------------------------------------------------
@pytest.mark.asyncio
async def test_confirm_single_action(service, workspace, org_id, conversation, fake_provider):
    fake_provider.queue(_action("create_project", {"name": "Apollo"}))
    turn = await service.send_message(USER, conversation.conversation_id, "new project Apollo")
    msg = turn.assistant_message
    assert msg.action.status == "pending"
    assert msg.content == "Sure thing."

    done = await service.confirm_action(USER, conversation.conversation_id, msg.message_id)
    assert done.action.status == "success"
    assert done.action.created_entity.name == "Apollo"
    assert [p.name for p in workspace.list_projects(org_id)] == ["Apollo"]

    again = await service.confirm_action(USER, conversation.conversation_id, msg.message_id)
    assert again.action.status == "success"
    assert len(workspace.list_projects(org_id)) == 1


@pytest.mark.asyncio
async def test_failed_action_can_be_retried(service, workspace, org_id, conversation, fake_provider):
    project = workspace.create_project(org_id, {"name": "Portal"})
    fake_provider.queue(_action("create_task", {"title": "Ship", "projectId": project.id, "assigneeId": "user-2"}))
    turn = await service.send_message(USER, conversation.conversation_id, "task for Ben")
    mid = turn.assistant_message.message_id

    failed = await service.confirm_action(USER, conversation.conversation_id, mid)
    assert failed.action.status == "error"
    assert failed.action.error == "Assignee is not a member of this organization"

    workspace.add_member(org_id, "user-2", "ben@example.com", "Ben")
    retried = await service.confirm_action(USER, conversation.conversation_id, mid)
    assert retried.action.status == "success"
    assert retried.action.error is None


@pytest.mark.asyncio
async def test_change_theme_runs_through_callbacks(service, conversation, fake_provider):
    fake_provider.queue(_action("change_theme", {"theme": "dark"}))
    turn = await service.send_message(USER, conversation.conversation_id, "dark mode")
    themes = []
    done = await service.confirm_action(
        USER,
        conversation.conversation_id,
        turn.assistant_message.message_id,
        ClientSideCallbacks(set_theme=themes.append),
    )
    assert done.action.status == "success"
    assert themes == ["dark"]


@pytest.mark.asyncio
async def test_confirm_requires_an_action(service, conversation, fake_provider):
    turn = await service.send_message(USER, conversation.conversation_id, "hi")
    with pytest.raises(ActionNotFound):
        await service.confirm_action(USER, conversation.conversation_id, turn.assistant_message.message_id)
    with pytest.raises(ActionNotFound):
        await service.confirm_action(USER, conversation.conversation_id, turn.user_message.message_id)


# ----------------------------------------------------------------------
# Multi action
# ----------------------------------------------------------------------
@pytest.mark.asyncio
async def test_confirm_all_runs_batch_with_placeholders(service, workspace, org_id, conversation, fake_provider):
    fake_provider.queue(
        _actions(
            ("create_project", {"name": "Launch"}),
            ("create_workstream", {"name": "Phase 1", "projectId": "$NEW_PROJECT_ID"}),
            ("create_task", {"title": "Kickoff", "projectId": "$NEW_PROJECT_ID", "workstreamId": "$NEW_WORKSTREAM_ID"}),
        )
    )
    turn = await service.send_message(USER, conversation.conversation_id, "set up Launch")
    multi = turn.assistant_message.multi_action
    assert [a.status for a in multi.actions] == ["pending"] * 3
    assert turn.assistant_message.action is None

    done = await service.confirm_all_actions(USER, conversation.conversation_id, turn.assistant_message.message_id)
    state = done.multi_action
    assert [a.status for a in state.actions] == ["success"] * 3
    assert state.is_executing is False
    assert state.current_index == 2
    assert set(state.created_ids) == {"project", "workstream", "task"}

    [project] = workspace.list_projects(org_id)
    [task] = workspace.list_project_tasks(project.id)
    assert task.workstream_id == state.created_ids["workstream"]


@pytest.mark.asyncio
async def test_confirm_all_continues_past_failures_and_retries_only_failed(
    service, workspace, org_id, conversation, fake_provider
):
    fake_provider.queue(
        _actions(
            ("create_project", {"name": "P"}),
            ("create_task", {"title": "Orphan"}),
            ("create_client", {"name": "C"}),
        )
    )
    turn = await service.send_message(USER, conversation.conversation_id, "go")
    mid = turn.assistant_message.message_id

    first = await service.confirm_all_actions(USER, conversation.conversation_id, mid)
    assert [a.status for a in first.multi_action.actions] == ["success", "error", "success"]
    assert first.multi_action.actions[1].error == "Project ID is required"

    second = await service.confirm_all_actions(USER, conversation.conversation_id, mid)
    assert [a.status for a in second.multi_action.actions] == ["success", "error", "success"]
    assert len(workspace.list_projects(org_id)) == 1
    assert len(workspace.list_clients(org_id)) == 1


@pytest.mark.asyncio
async def test_cancel_batch_between_actions(service, workspace, org_id, conversation, fake_provider):
    fake_provider.queue(
        _actions(
            ("change_theme", {"theme": "light"}),
            ("create_project", {"name": "Never"}),
            ("create_client", {"name": "Nope"}),
        )
    )
    turn = await service.send_message(USER, conversation.conversation_id, "do it")
    cid = conversation.conversation_id
    mid = turn.assistant_message.message_id
    cancelled = []

    def set_theme(theme):
        cancelled.append(service.cancel_batch(USER, cid, mid))

    done = await service.confirm_all_actions(USER, cid, mid, ClientSideCallbacks(set_theme=set_theme))
    assert cancelled == [True]
    assert [a.status for a in done.multi_action.actions] == ["success", "error", "error"]
    assert done.multi_action.actions[1].error == CANCELLED_ERROR
    assert workspace.list_projects(org_id) == []
    assert service.cancel_batch(USER, cid, mid) is False


@pytest.mark.asyncio
async def test_batch_outcome_survives_clearing_the_conversation(
    service, workspace, org_id, conversation, fake_provider
):
    fake_provider.queue(
        _actions(
            ("change_theme", {"theme": "dark"}),
            ("create_project", {"name": "Still created"}),
        )
    )
    turn = await service.send_message(USER, conversation.conversation_id, "go")
    cid = conversation.conversation_id

    def set_theme(theme):
        service.clear(USER, cid)

    done = await service.confirm_all_actions(
        USER, cid, turn.assistant_message.message_id, ClientSideCallbacks(set_theme=set_theme)
    )
    assert [a.status for a in done.multi_action.actions] == ["success", "success"]
    assert done.multi_action.is_executing is False
    assert service.history(USER, cid) == []
    assert [p.name for p in workspace.list_projects(org_id)] == ["Still created"]


@pytest.mark.asyncio
async def test_clear_conversation(service, conversation, fake_provider):
    await service.send_message(USER, conversation.conversation_id, "hi")
    assert service.clear(USER, conversation.conversation_id) == 2
    assert service.history(USER, conversation.conversation_id) == []
