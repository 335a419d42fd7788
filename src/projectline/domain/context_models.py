from __future__ import annotations

from typing import Any, Dict, List, Optional
from pydantic import BaseModel, Field

from .chat_models import PageType


class WorkloadInsights(BaseModel):
    total_tasks: int = 0
    completed_tasks: int = 0
    in_progress_tasks: int = 0
    overdue_tasks: int = 0
    due_today: int = 0
    due_this_week: int = 0
    high_priority_tasks: int = 0
    urgent_tasks: int = 0
    has_urgent_overdue: bool = False
    is_overloaded: bool = False
    oldest_overdue_days: Optional[int] = None


class OrganizationSummary(BaseModel):
    id: str
    name: str


class ProjectSummary(BaseModel):
    id: str
    name: str
    status: str
    client_name: Optional[str] = None
    due_date: Optional[str] = None


class ClientSummary(BaseModel):
    id: str
    name: str
    status: str
    project_count: int = 0


class TeamSummary(BaseModel):
    id: str
    name: str
    member_count: int = 0


class MemberSummary(BaseModel):
    id: str
    name: str
    email: str
    role: str


class UserTaskSummary(BaseModel):
    id: str
    title: str
    status: str
    priority: str
    project_id: Optional[str] = None
    project_name: str = "Unknown"
    due_date: Optional[str] = None


class InboxSummary(BaseModel):
    id: str
    title: str
    type: str
    read: bool
    created_at: str


class NamedRef(BaseModel):
    id: str
    name: str


class ProjectTaskSummary(BaseModel):
    id: str
    title: str
    status: str
    priority: str
    assignee: Optional[str] = None


class NoteSummary(BaseModel):
    id: str
    title: str
    content: Optional[str] = None


class FileSummary(BaseModel):
    id: str
    name: str
    type: str


class ProjectMemberSummary(BaseModel):
    id: str
    name: str
    role: str


class CurrentProject(BaseModel):
    id: str
    name: str
    description: Optional[str] = None
    status: str
    workstreams: List[NamedRef] = Field(default_factory=list)
    tasks: List[ProjectTaskSummary] = Field(default_factory=list)
    notes: List[NoteSummary] = Field(default_factory=list)
    files: List[FileSummary] = Field(default_factory=list)
    members: List[ProjectMemberSummary] = Field(default_factory=list)


class ClientProjectSummary(BaseModel):
    id: str
    name: str
    status: str


class CurrentClient(BaseModel):
    id: str
    name: str
    email: Optional[str] = None
    phone: Optional[str] = None
    status: str
    projects: List[ClientProjectSummary] = Field(default_factory=list)


class AppData(BaseModel):
    organization: OrganizationSummary
    projects: List[ProjectSummary] = Field(default_factory=list)
    clients: List[ClientSummary] = Field(default_factory=list)
    teams: List[TeamSummary] = Field(default_factory=list)
    members: List[MemberSummary] = Field(default_factory=list)
    user_tasks: List[UserTaskSummary] = Field(default_factory=list)
    inbox: List[InboxSummary] = Field(default_factory=list)
    workload_insights: Optional[WorkloadInsights] = None
    current_project: Optional[CurrentProject] = None
    current_client: Optional[CurrentClient] = None


class ContextAttachment(BaseModel):
    name: str
    content: str


class ChatContext(BaseModel):
    page_type: PageType = "other"
    project_id: Optional[str] = None
    client_id: Optional[str] = None
    filters: Optional[Dict[str, Any]] = None
    current_user_id: Optional[str] = None
    app_data: AppData
    attachments: Optional[List[ContextAttachment]] = None
