from __future__ import annotations

"""Directive types exchanged between the assistant and the action executor.

A directive arrives from model output as ``{"type": ..., "data": {...}}``.
``data`` keeps the camelCase field names the model is instructed to use;
each action kind validates it through its own payload model below.
"""

from enum import Enum
from typing import Any, ClassVar, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator, model_validator

from .workspace_models import ProjectRole, TaskPriority


class ActionType(str, Enum):
    CREATE_TASK = "create_task"
    UPDATE_TASK = "update_task"
    DELETE_TASK = "delete_task"
    ASSIGN_TASK = "assign_task"
    CREATE_PROJECT = "create_project"
    UPDATE_PROJECT = "update_project"
    ADD_PROJECT_MEMBER = "add_project_member"
    CREATE_WORKSTREAM = "create_workstream"
    UPDATE_WORKSTREAM = "update_workstream"
    CREATE_CLIENT = "create_client"
    UPDATE_CLIENT = "update_client"
    CREATE_NOTE = "create_note"
    UPDATE_NOTE = "update_note"
    ADD_TEAM_MEMBER = "add_team_member"
    CHANGE_THEME = "change_theme"


# Placeholder token -> entity type whose most recent id replaces it.
PLACEHOLDERS: Dict[str, str] = {
    "$NEW_PROJECT_ID": "project",
    "$NEW_WORKSTREAM_ID": "workstream",
    "$NEW_TASK_ID": "task",
    "$NEW_CLIENT_ID": "client",
}

# Actions that receive the caller's organization id when the model omits it.
ORG_SCOPED_ACTIONS = frozenset({ActionType.CREATE_PROJECT.value, ActionType.CREATE_CLIENT.value})

VALID_THEMES = ("light", "dark", "system")


class ProposedAction(BaseModel):
    """A single directive as emitted by the model.

    ``type`` stays a plain string so unknown kinds survive parsing and are
    reported by the executor instead of being dropped.
    """

    type: str
    data: Dict[str, Any] = Field(default_factory=dict)

    @field_validator("data", mode="before")
    @classmethod
    def _none_is_empty(cls, value: Any) -> Any:
        return {} if value is None else value


class SuggestedAction(BaseModel):
    label: str
    prompt: str


class CreatedEntity(BaseModel):
    type: str
    id: str
    name: str


class ActionExecutionResult(BaseModel):
    success: bool
    error: Optional[str] = None
    created_entity: Optional[CreatedEntity] = None


class ActionValidationError(ValueError):
    """Raised when directive data does not satisfy its payload model."""


class ActionPayload(BaseModel):
    """Base for per-action payloads.

    Required fields that are absent, ``None`` or blank are all reported as
    missing, so handlers never see a half-filled required value.
    """

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    # Fixed message used whenever any required field is missing.
    missing_message: ClassVar[Optional[str]] = None

    @model_validator(mode="before")
    @classmethod
    def _blank_required_values_are_missing(cls, data: Any) -> Any:
        if not isinstance(data, dict):
            return data
        required = set()
        for name, field in cls.model_fields.items():
            if field.is_required():
                required.add(name)
                if field.alias:
                    required.add(field.alias)
        cleaned: Dict[str, Any] = {}
        for key, value in data.items():
            if key in required and (value is None or (isinstance(value, str) and not value.strip())):
                continue
            cleaned[key] = value
        return cleaned

    @classmethod
    def from_data(cls, data: Any) -> "ActionPayload":
        try:
            return cls.model_validate(data if data is not None else {})
        except ValidationError as exc:
            raise ActionValidationError(cls._describe(exc)) from None

    @classmethod
    def _label(cls, key: Any) -> str:
        for name, field in cls.model_fields.items():
            if key in (name, field.alias):
                return field.title or name
        return str(key)

    @classmethod
    def _describe(cls, exc: ValidationError) -> str:
        missing: List[str] = []
        invalid: List[str] = []
        for err in exc.errors():
            loc = err.get("loc") or ()
            if not loc:
                invalid.append("action data must be an object")
                continue
            label = cls._label(loc[0])
            if err.get("type") == "missing":
                missing.append(label)
            else:
                invalid.append(f"{label} ({err.get('msg')})")
        if missing:
            if cls.missing_message:
                return cls.missing_message
            if len(missing) == 1:
                return f"{missing[0]} is required"
            return f"{', '.join(missing[:-1])} and {missing[-1]} are required"
        return "Invalid " + "; ".join(invalid)


class CreateTaskData(ActionPayload):
    project_id: str = Field(alias="projectId", title="Project ID")
    title: Optional[str] = None
    description: Optional[str] = None
    priority: Optional[TaskPriority] = Field(default=None, title="Priority")
    workstream_id: Optional[str] = Field(default=None, alias="workstreamId")
    assignee_id: Optional[str] = Field(default=None, alias="assigneeId")


class UpdateTaskData(ActionPayload):
    task_id: str = Field(alias="taskId", title="Task ID")
    title: Optional[str] = None
    status: Optional[str] = None
    priority: Optional[TaskPriority] = Field(default=None, title="Priority")
    assignee_id: Optional[str] = Field(default=None, alias="assigneeId")


class DeleteTaskData(ActionPayload):
    task_id: str = Field(alias="taskId", title="Task ID")


class AssignTaskData(ActionPayload):
    task_id: str = Field(alias="taskId", title="Task ID")
    assignee_id: Optional[str] = Field(default=None, alias="assigneeId")


class CreateProjectData(ActionPayload):
    org_id: str = Field(alias="orgId", title="Organization ID")
    name: Optional[str] = None
    description: Optional[str] = None
    client_id: Optional[str] = Field(default=None, alias="clientId")


class UpdateProjectData(ActionPayload):
    project_id: str = Field(alias="projectId", title="Project ID")
    name: Optional[str] = None
    status: Optional[str] = None
    description: Optional[str] = None


class AddProjectMemberData(ActionPayload):
    missing_message = "Project ID and User ID are required"

    project_id: str = Field(alias="projectId", title="Project ID")
    user_id: str = Field(alias="userId", title="User ID")
    role: ProjectRole = Field(default="member", title="Role")

    @field_validator("role", mode="before")
    @classmethod
    def _default_role(cls, value: Any) -> Any:
        return value or "member"


class CreateWorkstreamData(ActionPayload):
    missing_message = "Project ID and name are required"

    project_id: str = Field(alias="projectId", title="Project ID")
    name: str = Field(title="Name")
    description: Optional[str] = None


class UpdateWorkstreamData(ActionPayload):
    workstream_id: str = Field(alias="workstreamId", title="Workstream ID")
    name: Optional[str] = None
    description: Optional[str] = None


class CreateClientData(ActionPayload):
    org_id: str = Field(alias="orgId", title="Organization ID")
    name: Optional[str] = None
    email: Optional[str] = None
    phone: Optional[str] = None


class UpdateClientData(ActionPayload):
    client_id: str = Field(alias="clientId", title="Client ID")
    name: Optional[str] = None
    email: Optional[str] = None
    phone: Optional[str] = None
    status: Optional[str] = None


class CreateNoteData(ActionPayload):
    project_id: str = Field(alias="projectId", title="Project ID")
    title: Optional[str] = None
    content: Optional[str] = None


class UpdateNoteData(ActionPayload):
    note_id: str = Field(alias="noteId", title="Note ID")
    title: Optional[str] = None
    content: Optional[str] = None


class ChangeThemeData(ActionPayload):
    theme: str = Field(title="Theme value")
