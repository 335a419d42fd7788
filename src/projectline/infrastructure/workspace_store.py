from __future__ import annotations

from dataclasses import dataclass, field
from datetime import UTC, datetime
from threading import RLock
from typing import Any, Dict, List, Optional, Protocol
import uuid

from ..domain.workspace_models import (
    Client,
    InboxItem,
    Note,
    Organization,
    OrganizationMember,
    Project,
    ProjectFile,
    ProjectMember,
    Task,
    Team,
    Workstream,
)


class WorkspaceStoreError(Exception):
    """Data-layer failure; the message is safe to show to the user."""


class WorkspaceMutations(Protocol):
    """The narrow mutation surface the assistant's actions are allowed to use."""

    def create_task(self, project_id: str, fields: Dict[str, Any]) -> Task: ...

    def update_task(self, task_id: str, fields: Dict[str, Any]) -> Task: ...

    def delete_task(self, task_id: str) -> None: ...

    def update_task_assignee(self, task_id: str, assignee_id: Optional[str]) -> Task: ...

    def create_project(self, org_id: str, fields: Dict[str, Any]) -> Project: ...

    def update_project(self, project_id: str, fields: Dict[str, Any]) -> Project: ...

    def add_project_member(self, project_id: str, user_id: str, role: str = "member") -> Project: ...

    def create_workstream(self, fields: Dict[str, Any]) -> Workstream: ...

    def update_workstream(self, workstream_id: str, fields: Dict[str, Any]) -> Workstream: ...

    def create_client(self, org_id: str, fields: Dict[str, Any]) -> Client: ...

    def update_client(self, client_id: str, fields: Dict[str, Any]) -> Client: ...

    def create_note(self, project_id: str, fields: Dict[str, Any]) -> Note: ...

    def update_note(self, note_id: str, fields: Dict[str, Any]) -> Note: ...


@dataclass
class ProjectDetail:
    project: Project
    workstreams: List[Workstream] = field(default_factory=list)
    tasks: List[Task] = field(default_factory=list)
    notes: List[Note] = field(default_factory=list)
    files: List[ProjectFile] = field(default_factory=list)


@dataclass
class ClientDetail:
    client: Client
    projects: List[Project] = field(default_factory=list)


_TASK_FIELDS = {"name", "description", "status", "priority", "workstream_id", "assignee_id", "end_date"}
_PROJECT_FIELDS = {"name", "description", "status", "client_id", "start_date", "end_date"}
_CLIENT_FIELDS = {"name", "status", "primary_contact_email", "primary_contact_phone"}
_PRIORITIES = {"no-priority", "low", "medium", "high", "urgent"}


def _now() -> datetime:
    return datetime.now(UTC)


def _new_id() -> str:
    return str(uuid.uuid4())


def _clean(fields: Optional[Dict[str, Any]], allowed: set) -> Dict[str, Any]:
    return {k: v for k, v in (fields or {}).items() if k in allowed}


class InMemoryWorkspaceStore:
    """In-memory organization data: projects, tasks, clients, notes and people.

    Every lookup is optionally scoped to an organization; entities of other
    organizations are reported as not found.
    """

    def __init__(self) -> None:
        self._orgs: Dict[str, Organization] = {}
        self._members: Dict[str, List[OrganizationMember]] = {}
        self._teams: Dict[str, Team] = {}
        self._clients: Dict[str, Client] = {}
        self._projects: Dict[str, Project] = {}
        self._workstreams: Dict[str, Workstream] = {}
        self._tasks: Dict[str, Task] = {}
        self._notes: Dict[str, Note] = {}
        self._files: Dict[str, ProjectFile] = {}
        self._inbox: Dict[str, InboxItem] = {}
        self._lock = RLock()

    # ------------------------------------------------------------------
    # Lookup helpers
    # ------------------------------------------------------------------
    def _org(self, org_id: str, scope: Optional[str] = None) -> Organization:
        org = self._orgs.get(org_id)
        if not org or (scope and org.id != scope):
            raise WorkspaceStoreError("Organization not found")
        return org

    def _project(self, project_id: str, scope: Optional[str] = None) -> Project:
        proj = self._projects.get(project_id)
        if not proj or (scope and proj.organization_id != scope):
            raise WorkspaceStoreError("Project not found")
        return proj

    def _task(self, task_id: str, scope: Optional[str] = None) -> Task:
        task = self._tasks.get(task_id)
        if not task:
            raise WorkspaceStoreError("Task not found")
        if scope and self._projects[task.project_id].organization_id != scope:
            raise WorkspaceStoreError("Task not found")
        return task

    def _workstream(self, workstream_id: str, scope: Optional[str] = None) -> Workstream:
        ws = self._workstreams.get(workstream_id)
        if not ws:
            raise WorkspaceStoreError("Workstream not found")
        if scope and self._projects[ws.project_id].organization_id != scope:
            raise WorkspaceStoreError("Workstream not found")
        return ws

    def _client(self, client_id: str, scope: Optional[str] = None) -> Client:
        client = self._clients.get(client_id)
        if not client or (scope and client.organization_id != scope):
            raise WorkspaceStoreError("Client not found")
        return client

    def _note(self, note_id: str, scope: Optional[str] = None) -> Note:
        note = self._notes.get(note_id)
        if not note:
            raise WorkspaceStoreError("Note not found")
        if scope and self._projects[note.project_id].organization_id != scope:
            raise WorkspaceStoreError("Note not found")
        return note

    def _is_member(self, org_id: str, user_id: str) -> bool:
        return any(m.user_id == user_id for m in self._members.get(org_id, []))

    def _check_task_refs(self, project: Project, fields: Dict[str, Any]) -> None:
        ws_id = fields.get("workstream_id")
        if ws_id:
            ws = self._workstreams.get(ws_id)
            if not ws or ws.project_id != project.id:
                raise WorkspaceStoreError("Workstream not found")
        assignee = fields.get("assignee_id")
        if assignee and not self._is_member(project.organization_id, assignee):
            raise WorkspaceStoreError("Assignee is not a member of this organization")
        priority = fields.get("priority")
        if priority is not None and priority not in _PRIORITIES:
            raise WorkspaceStoreError(f"Invalid priority: {priority}")

    # ------------------------------------------------------------------
    # Organizations and people
    # ------------------------------------------------------------------
    def create_organization(self, name: str) -> Organization:
        with self._lock:
            org = Organization(id=_new_id(), name=name, created_at=_now())
            self._orgs[org.id] = org
            self._members[org.id] = []
            return org.model_copy()

    def add_member(
        self,
        org_id: str,
        user_id: str,
        email: str,
        full_name: Optional[str] = None,
        role: str = "member",
    ) -> OrganizationMember:
        with self._lock:
            self._org(org_id)
            if self._is_member(org_id, user_id):
                raise WorkspaceStoreError("User is already a member of this organization")
            member = OrganizationMember(
                organization_id=org_id,
                user_id=user_id,
                email=email,
                full_name=full_name,
                role=role,  # type: ignore[arg-type]
            )
            self._members[org_id].append(member)
            return member.model_copy()

    def membership_for_user(self, user_id: str) -> Optional[OrganizationMember]:
        with self._lock:
            for members in self._members.values():
                for member in members:
                    if member.user_id == user_id:
                        return member.model_copy()
            return None

    def ensure_membership(self, user_id: str, email: str, full_name: Optional[str] = None) -> OrganizationMember:
        """Return the user's membership, creating a personal workspace on first use."""
        with self._lock:
            existing = self.membership_for_user(user_id)
            if existing:
                return existing
            label = full_name or email.split("@")[0]
            org = self.create_organization(f"{label}'s Workspace")
            return self.add_member(org.id, user_id, email, full_name=full_name, role="admin")

    def get_organization(self, org_id: str) -> Optional[Organization]:
        with self._lock:
            org = self._orgs.get(org_id)
            return org.model_copy() if org else None

    def list_members(self, org_id: str) -> List[OrganizationMember]:
        with self._lock:
            return [m.model_copy() for m in self._members.get(org_id, [])]

    def create_team(self, org_id: str, name: str, member_ids: Optional[List[str]] = None) -> Team:
        with self._lock:
            self._org(org_id)
            team = Team(id=_new_id(), organization_id=org_id, name=name, member_ids=list(member_ids or []))
            self._teams[team.id] = team
            return team.model_copy()

    def list_teams(self, org_id: str) -> List[Team]:
        with self._lock:
            return [t.model_copy() for t in self._teams.values() if t.organization_id == org_id]

    def add_inbox_item(self, user_id: str, title: str, type: str = "notification") -> InboxItem:
        with self._lock:
            item = InboxItem(id=_new_id(), user_id=user_id, title=title, type=type, created_at=_now())
            self._inbox[item.id] = item
            return item.model_copy()

    def list_inbox(self, user_id: str) -> List[InboxItem]:
        with self._lock:
            items = [i.model_copy() for i in self._inbox.values() if i.user_id == user_id]
            return sorted(items, key=lambda i: i.created_at, reverse=True)

    # ------------------------------------------------------------------
    # Clients
    # ------------------------------------------------------------------
    def create_client(self, org_id: str, fields: Dict[str, Any], *, scope: Optional[str] = None) -> Client:
        with self._lock:
            self._org(org_id, scope)
            data = _clean(fields, _CLIENT_FIELDS)
            name = (data.pop("name", None) or "").strip()
            if not name:
                raise WorkspaceStoreError("Client name is required")
            now = _now()
            client = Client(
                id=_new_id(),
                organization_id=org_id,
                name=name,
                created_at=now,
                updated_at=now,
                **{k: v for k, v in data.items() if v is not None},
            )
            self._clients[client.id] = client
            return client.model_copy()

    def update_client(self, client_id: str, fields: Dict[str, Any], *, scope: Optional[str] = None) -> Client:
        with self._lock:
            client = self._client(client_id, scope)
            updates = _clean(fields, _CLIENT_FIELDS)
            if "name" in updates and not (updates["name"] or "").strip():
                raise WorkspaceStoreError("Client name cannot be empty")
            updated = client.model_copy(update={**updates, "updated_at": _now()})
            self._clients[client_id] = updated
            return updated.model_copy()

    def get_client(self, client_id: str) -> Optional[Client]:
        with self._lock:
            client = self._clients.get(client_id)
            return client.model_copy() if client else None

    def list_clients(self, org_id: str) -> List[Client]:
        with self._lock:
            return [c.model_copy() for c in self._clients.values() if c.organization_id == org_id]

    # ------------------------------------------------------------------
    # Projects
    # ------------------------------------------------------------------
    def create_project(self, org_id: str, fields: Dict[str, Any], *, scope: Optional[str] = None) -> Project:
        with self._lock:
            self._org(org_id, scope)
            data = _clean(fields, _PROJECT_FIELDS)
            name = (data.pop("name", None) or "").strip()
            if not name:
                raise WorkspaceStoreError("Project name is required")
            client_id = data.get("client_id")
            if client_id:
                self._client(client_id, org_id)
            now = _now()
            project = Project(
                id=_new_id(),
                organization_id=org_id,
                name=name,
                created_at=now,
                updated_at=now,
                **{k: v for k, v in data.items() if v is not None},
            )
            self._projects[project.id] = project
            return project.model_copy(deep=True)

    def update_project(self, project_id: str, fields: Dict[str, Any], *, scope: Optional[str] = None) -> Project:
        with self._lock:
            project = self._project(project_id, scope)
            updates = _clean(fields, _PROJECT_FIELDS)
            if "name" in updates and not (updates["name"] or "").strip():
                raise WorkspaceStoreError("Project name cannot be empty")
            if updates.get("client_id"):
                self._client(updates["client_id"], project.organization_id)
            updated = project.model_copy(update={**updates, "updated_at": _now()})
            self._projects[project_id] = updated
            return updated.model_copy(deep=True)

    def add_project_member(
        self,
        project_id: str,
        user_id: str,
        role: str = "member",
        *,
        scope: Optional[str] = None,
    ) -> Project:
        with self._lock:
            project = self._project(project_id, scope)
            if not self._is_member(project.organization_id, user_id):
                raise WorkspaceStoreError("User is not a member of this organization")
            if any(m.user_id == user_id for m in project.members):
                raise WorkspaceStoreError("User is already a member of this project")
            members = list(project.members) + [ProjectMember(user_id=user_id, role=role)]  # type: ignore[arg-type]
            updated = project.model_copy(update={"members": members, "updated_at": _now()})
            self._projects[project_id] = updated
            return updated.model_copy(deep=True)

    def get_project(self, project_id: str) -> Optional[Project]:
        with self._lock:
            project = self._projects.get(project_id)
            return project.model_copy(deep=True) if project else None

    def list_projects(self, org_id: str) -> List[Project]:
        with self._lock:
            return [p.model_copy(deep=True) for p in self._projects.values() if p.organization_id == org_id]

    # ------------------------------------------------------------------
    # Workstreams
    # ------------------------------------------------------------------
    def create_workstream(self, fields: Dict[str, Any], *, scope: Optional[str] = None) -> Workstream:
        with self._lock:
            project = self._project(str(fields.get("project_id") or ""), scope)
            name = (fields.get("name") or "").strip()
            if not name:
                raise WorkspaceStoreError("Workstream name is required")
            ws = Workstream(
                id=_new_id(),
                project_id=project.id,
                name=name,
                description=fields.get("description"),
                created_at=_now(),
            )
            self._workstreams[ws.id] = ws
            return ws.model_copy()

    def update_workstream(self, workstream_id: str, fields: Dict[str, Any], *, scope: Optional[str] = None) -> Workstream:
        with self._lock:
            ws = self._workstream(workstream_id, scope)
            updates = {k: v for k, v in (fields or {}).items() if k in ("name", "description") and v is not None}
            if "name" in updates and not updates["name"].strip():
                raise WorkspaceStoreError("Workstream name cannot be empty")
            updated = ws.model_copy(update=updates)
            self._workstreams[workstream_id] = updated
            return updated.model_copy()

    def list_workstreams(self, project_id: str) -> List[Workstream]:
        with self._lock:
            return [w.model_copy() for w in self._workstreams.values() if w.project_id == project_id]

    # ------------------------------------------------------------------
    # Tasks
    # ------------------------------------------------------------------
    def create_task(self, project_id: str, fields: Dict[str, Any], *, scope: Optional[str] = None) -> Task:
        with self._lock:
            project = self._project(project_id, scope)
            data = _clean(fields, _TASK_FIELDS)
            name = (data.pop("name", None) or "").strip()
            if not name:
                raise WorkspaceStoreError("Task name is required")
            self._check_task_refs(project, data)
            now = _now()
            task = Task(
                id=_new_id(),
                project_id=project.id,
                name=name,
                created_at=now,
                updated_at=now,
                **{k: v for k, v in data.items() if v is not None},
            )
            self._tasks[task.id] = task
            return task.model_copy()

    def update_task(self, task_id: str, fields: Dict[str, Any], *, scope: Optional[str] = None) -> Task:
        with self._lock:
            task = self._task(task_id, scope)
            updates = _clean(fields, _TASK_FIELDS)
            if "name" in updates and not (updates["name"] or "").strip():
                raise WorkspaceStoreError("Task name cannot be empty")
            self._check_task_refs(self._projects[task.project_id], updates)
            updated = task.model_copy(update={**updates, "updated_at": _now()})
            self._tasks[task_id] = updated
            return updated.model_copy()

    def delete_task(self, task_id: str, *, scope: Optional[str] = None) -> None:
        with self._lock:
            self._task(task_id, scope)
            del self._tasks[task_id]

    def update_task_assignee(self, task_id: str, assignee_id: Optional[str], *, scope: Optional[str] = None) -> Task:
        return self.update_task(task_id, {"assignee_id": assignee_id}, scope=scope)

    def get_task(self, task_id: str) -> Optional[Task]:
        with self._lock:
            task = self._tasks.get(task_id)
            return task.model_copy() if task else None

    def list_project_tasks(self, project_id: str) -> List[Task]:
        with self._lock:
            return [t.model_copy() for t in self._tasks.values() if t.project_id == project_id]

    def list_user_tasks(self, org_id: str, user_id: str) -> List[Task]:
        with self._lock:
            org_projects = {p.id for p in self._projects.values() if p.organization_id == org_id}
            return [
                t.model_copy()
                for t in self._tasks.values()
                if t.project_id in org_projects and t.assignee_id == user_id
            ]

    # ------------------------------------------------------------------
    # Notes and files
    # ------------------------------------------------------------------
    def create_note(self, project_id: str, fields: Dict[str, Any], *, scope: Optional[str] = None) -> Note:
        with self._lock:
            project = self._project(project_id, scope)
            title = (fields.get("title") or "").strip()
            if not title:
                raise WorkspaceStoreError("Note title is required")
            now = _now()
            note = Note(
                id=_new_id(),
                project_id=project.id,
                title=title,
                content=fields.get("content"),
                created_at=now,
                updated_at=now,
            )
            self._notes[note.id] = note
            return note.model_copy()

    def update_note(self, note_id: str, fields: Dict[str, Any], *, scope: Optional[str] = None) -> Note:
        with self._lock:
            note = self._note(note_id, scope)
            updates = {k: v for k, v in (fields or {}).items() if k in ("title", "content") and v is not None}
            if "title" in updates and not updates["title"].strip():
                raise WorkspaceStoreError("Note title cannot be empty")
            updated = note.model_copy(update={**updates, "updated_at": _now()})
            self._notes[note_id] = updated
            return updated.model_copy()

    def list_notes(self, project_id: str) -> List[Note]:
        with self._lock:
            return [n.model_copy() for n in self._notes.values() if n.project_id == project_id]

    def add_file(self, project_id: str, name: str, type: str = "file") -> ProjectFile:
        with self._lock:
            self._project(project_id)
            item = ProjectFile(id=_new_id(), project_id=project_id, name=name, type=type)
            self._files[item.id] = item
            return item.model_copy()

    def list_files(self, project_id: str) -> List[ProjectFile]:
        with self._lock:
            return [f.model_copy() for f in self._files.values() if f.project_id == project_id]

    # ------------------------------------------------------------------
    # Detail views
    # ------------------------------------------------------------------
    def get_project_detail(self, project_id: str) -> Optional[ProjectDetail]:
        with self._lock:
            project = self.get_project(project_id)
            if not project:
                return None
            return ProjectDetail(
                project=project,
                workstreams=self.list_workstreams(project_id),
                tasks=self.list_project_tasks(project_id),
                notes=self.list_notes(project_id),
                files=self.list_files(project_id),
            )

    def get_client_detail(self, client_id: str) -> Optional[ClientDetail]:
        with self._lock:
            client = self.get_client(client_id)
            if not client:
                return None
            projects = [
                p.model_copy(deep=True) for p in self._projects.values() if p.client_id == client_id
            ]
            return ClientDetail(client=client, projects=projects)


class OrganizationScope:
    """Mutation view of a store restricted to one organization."""

    def __init__(self, store: InMemoryWorkspaceStore, org_id: str) -> None:
        self._store = store
        self.org_id = org_id

    def create_task(self, project_id: str, fields: Dict[str, Any]) -> Task:
        return self._store.create_task(project_id, fields, scope=self.org_id)

    def update_task(self, task_id: str, fields: Dict[str, Any]) -> Task:
        return self._store.update_task(task_id, fields, scope=self.org_id)

    def delete_task(self, task_id: str) -> None:
        self._store.delete_task(task_id, scope=self.org_id)

    def update_task_assignee(self, task_id: str, assignee_id: Optional[str]) -> Task:
        return self._store.update_task_assignee(task_id, assignee_id, scope=self.org_id)

    def create_project(self, org_id: str, fields: Dict[str, Any]) -> Project:
        return self._store.create_project(org_id, fields, scope=self.org_id)

    def update_project(self, project_id: str, fields: Dict[str, Any]) -> Project:
        return self._store.update_project(project_id, fields, scope=self.org_id)

    def add_project_member(self, project_id: str, user_id: str, role: str = "member") -> Project:
        return self._store.add_project_member(project_id, user_id, role, scope=self.org_id)

    def create_workstream(self, fields: Dict[str, Any]) -> Workstream:
        return self._store.create_workstream(fields, scope=self.org_id)

    def update_workstream(self, workstream_id: str, fields: Dict[str, Any]) -> Workstream:
        return self._store.update_workstream(workstream_id, fields, scope=self.org_id)

    def create_client(self, org_id: str, fields: Dict[str, Any]) -> Client:
        return self._store.create_client(org_id, fields, scope=self.org_id)

    def update_client(self, client_id: str, fields: Dict[str, Any]) -> Client:
        return self._store.update_client(client_id, fields, scope=self.org_id)

    def create_note(self, project_id: str, fields: Dict[str, Any]) -> Note:
        return self._store.create_note(project_id, fields, scope=self.org_id)

    def update_note(self, note_id: str, fields: Dict[str, Any]) -> Note:
        return self._store.update_note(note_id, fields, scope=self.org_id)


_store: InMemoryWorkspaceStore | None = None


def get_workspace_store() -> InMemoryWorkspaceStore:
    global _store
    if _store is None:
        _store = InMemoryWorkspaceStore()
    return _store
