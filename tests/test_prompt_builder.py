import pytest

from src.projectline.domain.chat_models import Attachment
from src.projectline.services.context_builder import build_context
from src.projectline.services.prompt_builder import MAX_ATTACHMENT_CHARS, build_chat_system_prompt
from .utils import make_user


@pytest.mark.asyncio
async def test_prompt_lists_workspace_and_reference_ids(workspace):
    user = make_user()
    org_id = workspace.ensure_membership(user.user_id, user.email, user.name).organization_id
    project = workspace.create_project(org_id, {"name": "Portal"})
    ws = workspace.create_workstream({"project_id": project.id, "name": "Build"})
    task = workspace.create_task(project.id, {"name": "Wire API", "assignee_id": user.user_id, "priority": "high"})
    client = workspace.create_client(org_id, {"name": "Globex"})

    ctx = await build_context(workspace, user, page_type="project_detail", project_id=project.id)
    prompt = build_chat_system_prompt(ctx)

    assert "## Current Context" in prompt
    assert "- Page: project detail" in prompt
    assert "- Portal [planned]" in prompt
    assert "- Wire API [todo] (high) - Portal" in prompt
    assert "## Current Project Detail: Portal" in prompt
    assert f"Organization ID: {org_id}" in prompt
    assert "Current User ID: user-1" in prompt
    assert f'- "Portal": {project.id}' in prompt
    assert f'- "Build": {ws.id}' in prompt
    assert f'- "Wire API" [todo]: {task.id}' in prompt
    assert f'- "Globex": {client.id}' in prompt
    assert "$NEW_PROJECT_ID" in prompt
    assert "SUGGESTED_ACTIONS:" in prompt


@pytest.mark.asyncio
async def test_prompt_truncates_long_lists(workspace):
    user = make_user()
    org_id = workspace.ensure_membership(user.user_id, user.email, user.name).organization_id
    for i in range(25):
        workspace.create_project(org_id, {"name": f"Project {i:02d}"})

    prompt = build_chat_system_prompt(await build_context(workspace, user))
    assert "## Projects (25)" in prompt
    assert "...and 5 more projects" in prompt


@pytest.mark.asyncio
async def test_prompt_truncates_attachments(workspace):
    long_text = "x" * (MAX_ATTACHMENT_CHARS + 100)
    attachments = [Attachment(id="a", name="notes.txt", type="text/plain", extracted_text=long_text)]
    prompt = build_chat_system_prompt(await build_context(workspace, make_user(), attachments=attachments))
    assert "## Attached Documents" in prompt
    assert "--- notes.txt ---" in prompt
    assert "x" * MAX_ATTACHMENT_CHARS + "\n[truncated]" in prompt
    assert "x" * (MAX_ATTACHMENT_CHARS + 1) not in prompt


@pytest.mark.asyncio
async def test_empty_workspace_prompt(workspace):
    prompt = build_chat_system_prompt(await build_context(workspace, make_user()))
    assert "No projects yet" in prompt
    assert "No tasks yet" in prompt
    assert "No notifications" in prompt
    assert "No workstreams" in prompt
