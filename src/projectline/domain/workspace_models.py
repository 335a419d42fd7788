from __future__ import annotations

from datetime import date, datetime
from typing import List, Literal, Optional
from pydantic import BaseModel, Field


TaskPriority = Literal["no-priority", "low", "medium", "high", "urgent"]
ProjectRole = Literal["owner", "pic", "member", "viewer"]
OrgRole = Literal["admin", "member", "viewer"]


class Organization(BaseModel):
    id: str
    name: str
    created_at: datetime


class OrganizationMember(BaseModel):
    organization_id: str
    user_id: str
    email: str
    full_name: Optional[str] = None
    role: OrgRole = "member"


class Team(BaseModel):
    id: str
    organization_id: str
    name: str
    member_ids: List[str] = Field(default_factory=list)


class Client(BaseModel):
    id: str
    organization_id: str
    name: str
    status: str = "active"
    primary_contact_email: Optional[str] = None
    primary_contact_phone: Optional[str] = None
    created_at: datetime
    updated_at: datetime


class ProjectMember(BaseModel):
    user_id: str
    role: ProjectRole = "member"


class Project(BaseModel):
    id: str
    organization_id: str
    name: str
    description: Optional[str] = None
    status: str = "planned"
    client_id: Optional[str] = None
    start_date: Optional[date] = None
    end_date: Optional[date] = None
    members: List[ProjectMember] = Field(default_factory=list)
    created_at: datetime
    updated_at: datetime


class Workstream(BaseModel):
    id: str
    project_id: str
    name: str
    description: Optional[str] = None
    created_at: datetime


class Task(BaseModel):
    id: str
    project_id: str
    name: str
    description: Optional[str] = None
    status: str = "todo"
    priority: TaskPriority = "no-priority"
    workstream_id: Optional[str] = None
    assignee_id: Optional[str] = None
    end_date: Optional[date] = None
    created_at: datetime
    updated_at: datetime


class Note(BaseModel):
    id: str
    project_id: str
    title: str
    content: Optional[str] = None
    created_at: datetime
    updated_at: datetime


class ProjectFile(BaseModel):
    id: str
    project_id: str
    name: str
    type: str = "file"


class InboxItem(BaseModel):
    id: str
    user_id: str
    title: str
    type: str = "notification"
    is_read: bool = False
    created_at: datetime
