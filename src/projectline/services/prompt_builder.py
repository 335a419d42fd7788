from __future__ import annotations

import json
from typing import List

from ..domain.context_models import ChatContext


MAX_PROJECTS = 20
MAX_MEMBERS_LISTED = 10
MAX_USER_TASKS = 15
MAX_REFERENCE_TASKS = 30
MAX_INBOX = 5
MAX_ATTACHMENT_CHARS = 5000


_GUIDANCE = """
---

## Personality and Approach
You are a friendly, proactive project management assistant: a colleague who wants the user to succeed.

How to communicate:
- Be warm and conversational, not formal
- Show you understand the situation before proposing solutions
- Keep answers focused and concise
- When an action would help, offer it as part of the answer

What you can do:
1. Answer questions about any data listed above
2. Summarise and compare projects, tasks and clients
3. Propose actions that change the workspace; the user confirms them before anything runs

## When to Propose Actions
- The user is behind or overwhelmed: offer to reprioritise or reschedule
- The user describes a new initiative: offer to create the project structure
- The user asks about progress: summarise, then offer next steps
- The user has overdue tasks: mention them gently and offer help

Do not propose actions for simple questions, greetings, early brainstorming, or when the user says they are not ready.

## How to Propose Actions
1. Respond to what the user said first
2. Frame the action as an offer ("Would you like me to...")
3. Put the action directive at the very END of your message

## Action Rules

You may propose several actions at once; they run in order.

Placeholders refer to entities created earlier in the same batch:
- `$NEW_PROJECT_ID` - the project created in this batch
- `$NEW_WORKSTREAM_ID` - the workstream created in this batch
- `$NEW_TASK_ID` - the task created in this batch
- `$NEW_CLIENT_ID` - the client created in this batch

Each placeholder holds only the most recently created entity of its type.

Example: "Create a project with a workstream and two tasks"
ACTIONS_JSON: [
  {"type": "create_project", "data": {"name": "Project Name"}},
  {"type": "create_workstream", "data": {"name": "Phase 1", "projectId": "$NEW_PROJECT_ID"}},
  {"type": "create_task", "data": {"title": "Task 1", "projectId": "$NEW_PROJECT_ID", "workstreamId": "$NEW_WORKSTREAM_ID"}},
  {"type": "create_task", "data": {"title": "Task 2", "projectId": "$NEW_PROJECT_ID", "workstreamId": "$NEW_WORKSTREAM_ID"}}
]

For existing entities ALWAYS use the real ids from the reference data below.

Directive formats (last line of your message):
- Single action: ACTION_JSON: {"type": "...", "data": {...}}
- Several actions: ACTIONS_JSON: [{"type": "...", "data": {...}}, ...]

## Available Actions

| Action | Required Fields | Optional Fields | Notes |
|--------|----------------|-----------------|-------|
| create_task | title, projectId | workstreamId, assigneeId, priority, description | Include assigneeId to assign at creation |
| update_task | taskId | title, status, priority, assigneeId | |
| delete_task | taskId | | |
| assign_task | taskId, assigneeId | | Existing tasks only; assigneeId null unassigns |
| create_project | name | description, clientId | orgId is filled in automatically |
| update_project | projectId | name, status, description | |
| create_workstream | name, projectId | description | Use $NEW_PROJECT_ID or a real id |
| update_workstream | workstreamId | name, description | |
| create_client | name | email, phone | orgId is filled in automatically |
| update_client | clientId | name, email, phone, status | |
| create_note | title, projectId | content | Use $NEW_PROJECT_ID or a real id |
| update_note | noteId | title, content | |
| add_project_member | projectId, userId | role | role is owner, pic, member or viewer |
| add_team_member | teamId, userId | | |
| change_theme | theme | | theme is "light", "dark" or "system" |

## Task Assignment
When creating several tasks that need assignees, put assigneeId directly on each create_task.
Do NOT follow up with assign_task on $NEW_TASK_ID: it only holds the LAST created task, so every
assign_task would target the same task.

Correct:
ACTIONS_JSON: [
  {"type": "create_task", "data": {"title": "Task 1", "projectId": "$NEW_PROJECT_ID", "assigneeId": "user-id"}},
  {"type": "create_task", "data": {"title": "Task 2", "projectId": "$NEW_PROJECT_ID", "assigneeId": "user-id"}}
]
""".strip("\n")


_SUGGESTIONS = """
## Suggesting Follow-ups

After an informational answer you may offer 2-3 follow-up prompts, shown to the user as clickable chips.
Add them at the END of your response, after any action directive:
SUGGESTED_ACTIONS: [{"label": "Short label", "prompt": "Full prompt to send"}]

Example after listing overdue tasks:
SUGGESTED_ACTIONS: [{"label": "Reschedule to next week", "prompt": "Reschedule all my overdue tasks to next week"}, {"label": "Show by project", "prompt": "Group these overdue tasks by project"}]

Rules:
- At most 3 suggestions with short labels (2-4 words)
- Only suggest what is relevant to the answer
- No suggestions for greetings or when you are proposing actions

## Final Reminders
- Be conversational and helpful
- NEVER invent ids; use the exact ids from the reference data
- Ask a clarifying question when the intent is unclear
""".strip("\n")


def build_chat_system_prompt(context: ChatContext) -> str:
    """Render the assistant's system prompt from a context snapshot."""
    app = context.app_data
    org = app.organization
    members = app.members
    projects = app.projects
    tasks = app.user_tasks
    unread = sum(1 for i in app.inbox if not i.read)

    lines: List[str] = [
        "You are a project management AI assistant with FULL ACCESS to the user's application data.",
        "",
        "## Current Context",
        f"- Page: {context.page_type.replace('_', ' ')}",
    ]
    if context.filters:
        lines.append(f"- Filters: {json.dumps(context.filters)}")

    member_list = ", ".join(f"{m.name} ({m.role})" for m in members[:MAX_MEMBERS_LISTED])
    if len(members) > MAX_MEMBERS_LISTED:
        member_list += "..."
    lines += [
        "",
        "## Organization",
        f"- Name: {org.name or 'Unknown'}",
        f"- Members ({len(members)}): {member_list}",
        f"- Teams ({len(app.teams)}): {', '.join(t.name for t in app.teams) or 'None'}",
        "",
        f"## Projects ({len(projects)})",
    ]
    for p in projects[:MAX_PROJECTS]:
        line = f"- {p.name} [{p.status}]"
        if p.client_name:
            line += f" - Client: {p.client_name}"
        if p.due_date:
            line += f" - Due: {p.due_date}"
        lines.append(line)
    if len(projects) > MAX_PROJECTS:
        lines.append(f"...and {len(projects) - MAX_PROJECTS} more projects")

    lines += ["", f"## Clients ({len(app.clients)})"]
    lines += [f"- {c.name} [{c.status}] ({c.project_count} projects)" for c in app.clients] or ["None"]

    lines += ["", f"## Your Tasks ({len(tasks)})"]
    for t in tasks[:MAX_USER_TASKS]:
        line = f"- {t.title} [{t.status}] ({t.priority}) - {t.project_name}"
        if t.due_date:
            line += f" - Due: {t.due_date}"
        lines.append(line)
    if len(tasks) > MAX_USER_TASKS:
        lines.append(f"...and {len(tasks) - MAX_USER_TASKS} more tasks")

    lines += ["", f"## Inbox ({unread} unread)"]
    lines += [
        f"- {i.title} [{i.type}]" + ("" if i.read else " *NEW*") for i in app.inbox[:MAX_INBOX]
    ] or ["No notifications"]

    insights = app.workload_insights
    if insights:
        overdue = f"- Overdue: {insights.overdue_tasks}"
        if insights.has_urgent_overdue:
            overdue += f" (some are {insights.oldest_overdue_days}+ days overdue)"
        high = f"- High priority: {insights.high_priority_tasks}"
        if insights.urgent_tasks:
            high += f" ({insights.urgent_tasks} urgent)"
        lines += [
            "",
            "## User's Workload Summary",
            f"- Total tasks: {insights.total_tasks} ({insights.completed_tasks} completed, {insights.in_progress_tasks} in progress)",
            overdue,
            f"- Due today: {insights.due_today}",
            f"- Due this week: {insights.due_this_week}",
            high,
        ]
        if insights.is_overloaded:
            active = insights.total_tasks - insights.completed_tasks
            lines.append(f"Note: the user looks overloaded with {active} active tasks; consider offering to help prioritise or reschedule.")
        if insights.overdue_tasks:
            lines.append("Note: the user has overdue tasks; mention them gently and offer to help reschedule.")

    cp = app.current_project
    if cp:
        lines += ["", f"## Current Project Detail: {cp.name}", f"Status: {cp.status}"]
        if cp.description:
            lines.append(f"Description: {cp.description}")
        lines += [
            f"Members: {', '.join(f'{m.name} ({m.role})' for m in cp.members) or 'None'}",
            f"Workstreams: {', '.join(w.name for w in cp.workstreams) or 'None'}",
            f"Files: {', '.join(f.name for f in cp.files) or 'None'}",
            f"Notes: {', '.join(n.title for n in cp.notes) or 'None'}",
            "",
            f"Tasks ({len(cp.tasks)}):",
        ]
        for t in cp.tasks:
            lines.append(f"- {t.title} [{t.status}] ({t.priority})" + (f" - {t.assignee}" if t.assignee else ""))

    cc = app.current_client
    if cc:
        lines += ["", f"## Current Client Detail: {cc.name}", f"Status: {cc.status}"]
        if cc.email:
            lines.append(f"Email: {cc.email}")
        if cc.phone:
            lines.append(f"Phone: {cc.phone}")
        lines.append(f"Projects: {', '.join(f'{p.name} [{p.status}]' for p in cc.projects) or 'None'}")

    if context.attachments:
        lines += ["", "## Attached Documents"]
        blocks = []
        for a in context.attachments:
            body = a.content[:MAX_ATTACHMENT_CHARS]
            if len(a.content) > MAX_ATTACHMENT_CHARS:
                body += "\n[truncated]"
            blocks.append(f"--- {a.name} ---\n{body}")
        lines.append("\n\n".join(blocks))

    lines += ["", _GUIDANCE, "", _reference_data(context), "", _SUGGESTIONS]
    return "\n".join(lines)


def _reference_data(context: ChatContext) -> str:
    app = context.app_data
    members = app.members
    current_user = context.current_user_id
    if not current_user:
        admin = next((m for m in members if m.role == "admin"), None)
        current_user = admin.id if admin else (members[0].id if members else "unknown")

    lines = [
        "## Reference Data",
        f"Organization ID: {app.organization.id}",
        f"Current User ID: {current_user}",
        "",
        "Project IDs (use these exact ids for existing projects):",
    ]
    lines += [f'- "{p.name}": {p.id}' for p in app.projects] or ["No projects yet"]
    lines += ["", "Team Member IDs (for task assignment):"]
    lines += [f'- "{m.name}": {m.id}' for m in members] or ["No members"]
    lines += ["", "Task IDs (use these exact ids for existing tasks):"]
    lines += [f'- "{t.title}" [{t.status}]: {t.id}' for t in app.user_tasks[:MAX_REFERENCE_TASKS]] or ["No tasks yet"]

    cp = app.current_project
    if cp and cp.tasks:
        lines += ["", "Current Project Tasks:"]
        lines += [f'- "{t.title}" [{t.status}]: {t.id}' for t in cp.tasks]
    lines += ["", "Workstream IDs (use these exact ids for existing workstreams):"]
    if cp and cp.workstreams:
        lines += [f'- "{w.name}": {w.id}' for w in cp.workstreams]
    else:
        lines.append("No workstreams")
    if cp and cp.notes:
        lines += ["", "Note IDs:"]
        lines += [f'- "{n.title}": {n.id}' for n in cp.notes]
    if app.clients:
        lines += ["", "Client IDs:"]
        lines += [f'- "{c.name}": {c.id}' for c in app.clients]
    return "\n".join(lines)
