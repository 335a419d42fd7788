"""Assemble the read-only snapshot of organization data the assistant sees."""

from __future__ import annotations

import asyncio
import logging
from datetime import date, timedelta
from typing import Any, Dict, Iterable, List, Optional

from ..domain.chat_models import Attachment
from ..domain.context_models import (
    AppData,
    ChatContext,
    ClientProjectSummary,
    ClientSummary,
    ContextAttachment,
    CurrentClient,
    CurrentProject,
    FileSummary,
    InboxSummary,
    MemberSummary,
    NamedRef,
    NoteSummary,
    OrganizationSummary,
    ProjectMemberSummary,
    ProjectSummary,
    ProjectTaskSummary,
    TeamSummary,
    UserTaskSummary,
    WorkloadInsights,
)
from ..domain.workspace_models import OrganizationMember, Task
from ..infrastructure.workspace_store import InMemoryWorkspaceStore


logger = logging.getLogger(__name__)

INACTIVE_STATUSES = {"completed", "done", "cancelled", "archived"}
COMPLETED_STATUSES = {"completed", "done"}
IN_PROGRESS_STATUSES = {"in_progress", "in progress", "active"}
OVERLOAD_THRESHOLD = 15
URGENT_OVERDUE_DAYS = 3


def calculate_workload_insights(tasks: Iterable[Task], today: Optional[date] = None) -> WorkloadInsights:
    """Summarise a user's tasks relative to ``today``.

    Only active tasks count towards overdue, due-today, due-this-week and
    priority figures. The week ends on the coming Sunday; on a Sunday that
    is a week later.
    """
    today = today or date.today()
    end_of_week = today + timedelta(days=7 - (today.weekday() + 1) % 7)
    tasks = list(tasks)
    active = [t for t in tasks if t.status.lower() not in INACTIVE_STATUSES]

    overdue = due_today = due_this_week = 0
    oldest = 0
    for task in active:
        if task.end_date is None:
            continue
        if task.end_date < today:
            overdue += 1
            oldest = max(oldest, (today - task.end_date).days)
        elif task.end_date == today:
            due_today += 1
        elif task.end_date <= end_of_week:
            due_this_week += 1

    return WorkloadInsights(
        total_tasks=len(tasks),
        completed_tasks=sum(1 for t in tasks if t.status.lower() in COMPLETED_STATUSES),
        in_progress_tasks=sum(1 for t in tasks if t.status.lower() in IN_PROGRESS_STATUSES),
        overdue_tasks=overdue,
        due_today=due_today,
        due_this_week=due_this_week,
        high_priority_tasks=sum(1 for t in active if t.priority.lower() == "high"),
        urgent_tasks=sum(1 for t in active if t.priority.lower() == "urgent"),
        has_urgent_overdue=oldest > URGENT_OVERDUE_DAYS,
        is_overloaded=len(active) > OVERLOAD_THRESHOLD,
        oldest_overdue_days=oldest if overdue else None,
    )


def _member_name(member: OrganizationMember) -> str:
    return member.full_name or member.email


def _iso(value: Optional[date]) -> Optional[str]:
    return value.isoformat() if value else None


def _current_project(store: InMemoryWorkspaceStore, project_id: str, names: Dict[str, str]) -> Optional[CurrentProject]:
    detail = store.get_project_detail(project_id)
    if detail is None:
        return None
    p = detail.project
    return CurrentProject(
        id=p.id,
        name=p.name,
        description=p.description,
        status=p.status,
        workstreams=[NamedRef(id=w.id, name=w.name) for w in detail.workstreams],
        tasks=[
            ProjectTaskSummary(
                id=t.id,
                title=t.name,
                status=t.status,
                priority=t.priority,
                assignee=names.get(t.assignee_id) if t.assignee_id else None,
            )
            for t in detail.tasks
        ],
        notes=[NoteSummary(id=n.id, title=n.title, content=n.content) for n in detail.notes],
        files=[FileSummary(id=f.id, name=f.name, type=f.type) for f in detail.files],
        members=[
            ProjectMemberSummary(id=m.user_id, name=names.get(m.user_id, m.user_id), role=m.role)
            for m in p.members
        ],
    )


def _current_client(store: InMemoryWorkspaceStore, client_id: str) -> Optional[CurrentClient]:
    detail = store.get_client_detail(client_id)
    if detail is None:
        return None
    c = detail.client
    return CurrentClient(
        id=c.id,
        name=c.name,
        email=c.primary_contact_email,
        phone=c.primary_contact_phone,
        status=c.status,
        projects=[ClientProjectSummary(id=p.id, name=p.name, status=p.status) for p in detail.projects],
    )


async def build_context(
    store: InMemoryWorkspaceStore,
    user: Any,
    *,
    page_type: str = "other",
    project_id: Optional[str] = None,
    client_id: Optional[str] = None,
    filters: Optional[Dict[str, Any]] = None,
    attachments: Optional[List[Attachment]] = None,
    today: Optional[date] = None,
) -> ChatContext:
    """Fetch the caller's organization data concurrently and assemble a ChatContext.

    ``user`` needs ``user_id``, ``email`` and ``name``. Detail blocks are
    only included for a project or client in the caller's organization.
    """
    membership = await asyncio.to_thread(store.ensure_membership, user.user_id, user.email, user.name)
    org_id = membership.organization_id

    org, projects, clients, teams, members, user_tasks, inbox = await asyncio.gather(
        asyncio.to_thread(store.get_organization, org_id),
        asyncio.to_thread(store.list_projects, org_id),
        asyncio.to_thread(store.list_clients, org_id),
        asyncio.to_thread(store.list_teams, org_id),
        asyncio.to_thread(store.list_members, org_id),
        asyncio.to_thread(store.list_user_tasks, org_id, user.user_id),
        asyncio.to_thread(store.list_inbox, user.user_id),
    )

    names = {m.user_id: _member_name(m) for m in members}
    client_names = {c.id: c.name for c in clients}
    project_names = {p.id: p.name for p in projects}
    project_counts: Dict[str, int] = {}
    for p in projects:
        if p.client_id:
            project_counts[p.client_id] = project_counts.get(p.client_id, 0) + 1

    current_project = None
    if project_id and project_id in project_names:
        current_project = await asyncio.to_thread(_current_project, store, project_id, names)
    current_client = None
    if client_id and client_id in client_names:
        current_client = await asyncio.to_thread(_current_client, store, client_id)

    app_data = AppData(
        organization=OrganizationSummary(id=org_id, name=org.name if org else ""),
        projects=[
            ProjectSummary(
                id=p.id,
                name=p.name,
                status=p.status,
                client_name=client_names.get(p.client_id) if p.client_id else None,
                due_date=_iso(p.end_date),
            )
            for p in projects
        ],
        clients=[
            ClientSummary(id=c.id, name=c.name, status=c.status or "active", project_count=project_counts.get(c.id, 0))
            for c in clients
        ],
        teams=[TeamSummary(id=t.id, name=t.name, member_count=len(t.member_ids)) for t in teams],
        members=[MemberSummary(id=m.user_id, name=_member_name(m), email=m.email, role=m.role) for m in members],
        user_tasks=[
            UserTaskSummary(
                id=t.id,
                title=t.name,
                status=t.status,
                priority=t.priority,
                project_id=t.project_id,
                project_name=project_names.get(t.project_id, "Unknown"),
                due_date=_iso(t.end_date),
            )
            for t in user_tasks
        ],
        inbox=[
            InboxSummary(id=i.id, title=i.title, type=i.type or "notification", read=i.is_read, created_at=i.created_at.isoformat())
            for i in inbox
        ],
        workload_insights=calculate_workload_insights(user_tasks, today),
        current_project=current_project,
        current_client=current_client,
    )

    context_attachments = [
        ContextAttachment(name=a.name, content=a.extracted_text)
        for a in attachments or []
        if a.extracted_text
    ]

    logger.debug(
        "context_built",
        extra={"org_id": org_id, "projects": len(projects), "tasks": len(user_tasks), "page_type": page_type},
    )
    return ChatContext(
        page_type=page_type,  # type: ignore[arg-type]
        project_id=project_id,
        client_id=client_id,
        filters=filters,
        current_user_id=user.user_id,
        app_data=app_data,
        attachments=context_attachments or None,
    )
