"""Execute one assistant-proposed action against the workspace.

Every action kind has a typed payload (``domain.actions``) and exactly one
handler here; the registry is keyed by ``ActionType`` and must cover the
whole enum. ``execute_action`` never raises.
"""

from __future__ import annotations

import asyncio
import inspect
import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, Optional

from ..domain.actions import (
    ActionExecutionResult,
    ActionType,
    ActionValidationError,
    AddProjectMemberData,
    AssignTaskData,
    ChangeThemeData,
    CreateClientData,
    CreateNoteData,
    CreateProjectData,
    CreateTaskData,
    CreatedEntity,
    CreateWorkstreamData,
    DeleteTaskData,
    ProposedAction,
    UpdateClientData,
    UpdateNoteData,
    UpdateProjectData,
    UpdateTaskData,
    UpdateWorkstreamData,
    VALID_THEMES,
)
from ..infrastructure.workspace_store import WorkspaceMutations, WorkspaceStoreError
from ..observability.metrics import record_action


LOG = logging.getLogger("projectline.actions")

UNEXPECTED_ERROR = "An unexpected error occurred"


@dataclass
class ClientSideCallbacks:
    """Hooks for actions that only make sense in the caller's UI."""

    set_theme: Optional[Callable[[str], Any]] = None


Handler = Callable[[Dict[str, Any], WorkspaceMutations, Optional[ClientSideCallbacks]], Awaitable[ActionExecutionResult]]

_HANDLERS: Dict[ActionType, Handler] = {}


def _handles(action_type: ActionType) -> Callable[[Handler], Handler]:
    def register(fn: Handler) -> Handler:
        _HANDLERS[action_type] = fn
        return fn

    return register


def _ok(entity_type: Optional[str] = None, row: Any = None, name: Optional[str] = None) -> ActionExecutionResult:
    if entity_type and row is not None:
        return ActionExecutionResult(
            success=True,
            created_entity=CreatedEntity(type=entity_type, id=row.id, name=name if name is not None else row.name),
        )
    return ActionExecutionResult(success=True)


async def _call(fn: Callable[..., Any], *args: Any) -> Any:
    return await asyncio.to_thread(fn, *args)


# ----------------------------------------------------------------------
# Tasks
# ----------------------------------------------------------------------
@_handles(ActionType.CREATE_TASK)
async def _create_task(data, store, callbacks):
    p = CreateTaskData.from_data(data)
    row = await _call(
        store.create_task,
        p.project_id,
        {
            "name": p.title,
            "description": p.description,
            "priority": p.priority,
            "workstream_id": p.workstream_id,
            "assignee_id": p.assignee_id,
        },
    )
    return _ok("task", row)


@_handles(ActionType.UPDATE_TASK)
async def _update_task(data, store, callbacks):
    p = UpdateTaskData.from_data(data)
    fields: Dict[str, Any] = {}
    if p.title:
        fields["name"] = p.title
    if p.status:
        fields["status"] = p.status
    if p.priority:
        fields["priority"] = p.priority
    if "assignee_id" in p.model_fields_set:
        fields["assignee_id"] = p.assignee_id
    await _call(store.update_task, p.task_id, fields)
    return _ok()


@_handles(ActionType.DELETE_TASK)
async def _delete_task(data, store, callbacks):
    p = DeleteTaskData.from_data(data)
    await _call(store.delete_task, p.task_id)
    return _ok()


@_handles(ActionType.ASSIGN_TASK)
async def _assign_task(data, store, callbacks):
    p = AssignTaskData.from_data(data)
    await _call(store.update_task_assignee, p.task_id, p.assignee_id)
    return _ok()


# ----------------------------------------------------------------------
# Projects
# ----------------------------------------------------------------------
@_handles(ActionType.CREATE_PROJECT)
async def _create_project(data, store, callbacks):
    p = CreateProjectData.from_data(data)
    row = await _call(
        store.create_project,
        p.org_id,
        {"name": p.name, "description": p.description, "client_id": p.client_id},
    )
    return _ok("project", row)


@_handles(ActionType.UPDATE_PROJECT)
async def _update_project(data, store, callbacks):
    p = UpdateProjectData.from_data(data)
    fields: Dict[str, Any] = {}
    if p.name:
        fields["name"] = p.name
    if p.status:
        fields["status"] = p.status
    if "description" in p.model_fields_set:
        fields["description"] = p.description
    await _call(store.update_project, p.project_id, fields)
    return _ok()


@_handles(ActionType.ADD_PROJECT_MEMBER)
async def _add_project_member(data, store, callbacks):
    p = AddProjectMemberData.from_data(data)
    await _call(store.add_project_member, p.project_id, p.user_id, p.role)
    return _ok()


# ----------------------------------------------------------------------
# Workstreams
# ----------------------------------------------------------------------
@_handles(ActionType.CREATE_WORKSTREAM)
async def _create_workstream(data, store, callbacks):
    p = CreateWorkstreamData.from_data(data)
    row = await _call(
        store.create_workstream,
        {"project_id": p.project_id, "name": p.name, "description": p.description},
    )
    return _ok("workstream", row)


@_handles(ActionType.UPDATE_WORKSTREAM)
async def _update_workstream(data, store, callbacks):
    p = UpdateWorkstreamData.from_data(data)
    await _call(store.update_workstream, p.workstream_id, {"name": p.name, "description": p.description})
    return _ok()


# ----------------------------------------------------------------------
# Clients
# ----------------------------------------------------------------------
@_handles(ActionType.CREATE_CLIENT)
async def _create_client(data, store, callbacks):
    p = CreateClientData.from_data(data)
    row = await _call(
        store.create_client,
        p.org_id,
        {"name": p.name, "primary_contact_email": p.email, "primary_contact_phone": p.phone},
    )
    return _ok("client", row)


@_handles(ActionType.UPDATE_CLIENT)
async def _update_client(data, store, callbacks):
    p = UpdateClientData.from_data(data)
    fields: Dict[str, Any] = {}
    if p.name:
        fields["name"] = p.name
    if p.email:
        fields["primary_contact_email"] = p.email
    if p.phone:
        fields["primary_contact_phone"] = p.phone
    if p.status:
        fields["status"] = p.status
    await _call(store.update_client, p.client_id, fields)
    return _ok()


# ----------------------------------------------------------------------
# Notes
# ----------------------------------------------------------------------
@_handles(ActionType.CREATE_NOTE)
async def _create_note(data, store, callbacks):
    p = CreateNoteData.from_data(data)
    row = await _call(store.create_note, p.project_id, {"title": p.title, "content": p.content})
    return _ok("note", row, name=row.title)


@_handles(ActionType.UPDATE_NOTE)
async def _update_note(data, store, callbacks):
    p = UpdateNoteData.from_data(data)
    await _call(store.update_note, p.note_id, {"title": p.title, "content": p.content})
    return _ok()


# ----------------------------------------------------------------------
# Not backed by the workspace
# ----------------------------------------------------------------------
@_handles(ActionType.ADD_TEAM_MEMBER)
async def _add_team_member(data, store, callbacks):
    return ActionExecutionResult(success=False, error="Adding team members is not supported via this interface")


@_handles(ActionType.CHANGE_THEME)
async def _change_theme(data, store, callbacks):
    p = ChangeThemeData.from_data(data)
    if p.theme not in VALID_THEMES:
        return ActionExecutionResult(success=False, error=f"Invalid theme. Must be one of: {', '.join(VALID_THEMES)}")
    if callbacks is None or callbacks.set_theme is None:
        return ActionExecutionResult(success=False, error="Theme change is not available")
    outcome = callbacks.set_theme(p.theme)
    if inspect.isawaitable(outcome):
        await outcome
    return _ok()


_unhandled = set(ActionType) - set(_HANDLERS)
if _unhandled:
    raise RuntimeError(f"No handler registered for: {sorted(t.value for t in _unhandled)}")


def _resolve_type(raw: str) -> Optional[ActionType]:
    try:
        return ActionType(raw)
    except ValueError:
        return None


async def execute_action(
    action: ProposedAction,
    store: WorkspaceMutations,
    callbacks: Optional[ClientSideCallbacks] = None,
) -> ActionExecutionResult:
    action_type = _resolve_type(action.type)
    if action_type is None:
        record_action("unknown", False)
        LOG.info("action_unknown_type", extra={"type": action.type})
        return ActionExecutionResult(success=False, error=f"Unknown action type: {action.type}")

    try:
        result = await _HANDLERS[action_type](action.data, store, callbacks)
    except (ActionValidationError, WorkspaceStoreError) as exc:
        result = ActionExecutionResult(success=False, error=str(exc) or UNEXPECTED_ERROR)
    except Exception as exc:
        LOG.exception("action_failed_unexpectedly", extra={"type": action_type.value})
        result = ActionExecutionResult(success=False, error=str(exc) or UNEXPECTED_ERROR)

    record_action(action_type.value, result.success)
    LOG.info(
        "action_executed",
        extra={"type": action_type.value, "success": result.success, "err": result.error},
    )
    return result
