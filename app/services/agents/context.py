"""Context builders -- one bounded, read-only snapshot per draft request.

Every builder reads through the tool registry in the ``draft`` phase with
the profile's read allow-list, so a builder can only call tools its agent
is allowed to call.  The returned pack is plain JSON-ready data; no
connection or repo handle ever leaves this module.
"""

from __future__ import annotations

from datetime import date, datetime
from typing import Any, Awaitable, Callable

from app.services.agents.profiles import AgentProfile
from app.services.agents.registry import Registry, ToolContext
from app.services.agents.types import AgentScope, SessionContext, require_session

CONCIERGE_PROJECT_LIMIT = 10
CONCIERGE_NOTIFICATION_LIMIT = 10
CONCIERGE_TASK_LIMIT = 20
PLANNER_TASK_LIMIT = 50
NOTES_LIMIT = 50
EVENTS_LIMIT = 30


def to_jsonable(value: Any) -> Any:
    """Recursively convert DB values (datetimes, records) to JSON-ready data."""
    if isinstance(value, dict):
        return {k: to_jsonable(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [to_jsonable(v) for v in value]
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    return value


def _pick(row: dict, mapping: dict[str, str]) -> dict:
    return {out: to_jsonable(row.get(col)) for out, col in mapping.items()}


class _Reader:
    """Runs read tools for one profile in the draft phase."""

    def __init__(self, registry: Registry, profile: AgentProfile, session: SessionContext):
        self._registry = registry
        self._ctx = ToolContext(session=session, phase="draft", allowed=profile.draft_tools)

    async def __call__(self, tool: str, **params: Any) -> Any:
        return await self._registry.execute(self._ctx, tool, params)


# ---------------------------------------------------------------------------
# Builders
# ---------------------------------------------------------------------------


async def build_concierge_context(
    read: _Reader, session: SessionContext, scope: AgentScope, handoff: dict
) -> dict:
    me = await read("get_session_context")
    projects = await read("list_projects", limit=CONCIERGE_PROJECT_LIMIT)
    notifications = await read("list_notifications", limit=CONCIERGE_NOTIFICATION_LIMIT)
    tasks: list[dict] = []
    if scope.project_id is not None:
        tasks = await read("list_tasks", projectId=scope.project_id, limit=CONCIERGE_TASK_LIMIT)
    return {
        "session": me,
        "scope": scope.to_dict(),
        "projects": [
            _pick(p, {"id": "id", "title": "title", "status": "status", "updatedAt": "updated_at"})
            for p in projects
        ],
        "notifications": [
            _pick(n, {"id": "id", "type": "type", "title": "title", "read": "read",
                      "createdAt": "created_at"})
            for n in notifications
        ],
        "tasks": [
            _pick(t, {"id": "id", "title": "title", "status": "status", "priority": "priority"})
            for t in tasks
        ],
    }


async def build_task_planner_context(
    read: _Reader, session: SessionContext, scope: AgentScope, handoff: dict
) -> dict:
    me = await read("get_session_context")
    project = None
    members: list[dict] = []
    tasks: list[dict] = []
    if scope.project_id is not None:
        detail = await read("get_project_detail", projectId=scope.project_id)
        project = _pick(detail["project"], {
            "id": "id", "title": "title", "description": "description",
            "status": "status", "ownerId": "created_by_id",
        })
        members = detail["members"]
        rows = await read("list_tasks", projectId=scope.project_id, limit=PLANNER_TASK_LIMIT)
        tasks = [
            _pick(t, {
                "id": "id", "title": "title", "description": "description",
                "status": "status", "priority": "priority",
                "assignedToId": "assigned_to_id", "orderIndex": "order_index",
                "dueDate": "due_date",
            })
            for t in rows
        ]
    return {
        "session": me,
        "scope": scope.to_dict(),
        "project": project,
        "collaborators": members,
        "tasks": tasks,
    }


def _unlocked_notes(handoff: dict) -> dict[int, str]:
    """``handoffContext.unlockedNotes`` as ``{noteId: content}``; malformed
    entries are skipped."""
    raw = handoff.get("unlockedNotes")
    if not isinstance(raw, list):
        return {}
    out: dict[int, str] = {}
    for item in raw:
        if not isinstance(item, dict):
            continue
        note_id = item.get("noteId")
        content = item.get("content")
        if (
            isinstance(note_id, int)
            and not isinstance(note_id, bool)
            and note_id > 0
            and isinstance(content, str)
            and content
        ):
            out[note_id] = content
    return out


async def build_notes_vault_context(
    read: _Reader, session: SessionContext, scope: AgentScope, handoff: dict
) -> dict:
    unlocked = _unlocked_notes(handoff)
    rows = await read("list_notes", limit=NOTES_LIMIT)
    notes = []
    for n in rows:
        note = {
            "id": n["id"],
            "createdAt": to_jsonable(n["created_at"]),
            "shareStatus": n["share_status"],
            "isLocked": bool(n["is_locked"]),
        }
        if not note["isLocked"]:
            note["unlockedContent"] = n["content"]
        elif n["id"] in unlocked:
            note["unlockedContent"] = unlocked[n["id"]]
        notes.append(note)
    return {"userId": session.user_id, "notes": notes}


async def build_events_publisher_context(
    read: _Reader, session: SessionContext, scope: AgentScope, handoff: dict
) -> dict:
    rows = await read("list_public_events", limit=EVENTS_LIMIT)
    events = []
    for e in rows:
        event = _pick(e, {
            "id": "id", "title": "title", "description": "description",
            "eventDate": "event_date", "region": "region", "imageUrl": "image_url",
            "enableRsvp": "enable_rsvp", "authorName": "author_name",
            "createdAt": "created_at",
        })
        event["likeCount"] = int(e.get("like_count") or 0)
        event["commentCount"] = int(e.get("comment_count") or 0)
        event["isOwner"] = e["created_by_id"] == session.user_id
        events.append(event)
    return {"userId": session.user_id, "events": events}


_Builder = Callable[[_Reader, SessionContext, AgentScope, dict], Awaitable[dict]]

_BUILDERS: dict[str, _Builder] = {
    "workspace_concierge": build_concierge_context,
    "task_planner": build_task_planner_context,
    "notes_vault": build_notes_vault_context,
    "events_publisher": build_events_publisher_context,
}


async def build_context(
    registry: Registry,
    profile: AgentProfile,
    session: SessionContext | None,
    scope: AgentScope,
    handoff: dict | None = None,
) -> dict:
    """Assemble the context pack for *profile*.

    Raises ``UNAUTHORIZED`` without a session; ``NOT_FOUND`` / ``FORBIDDEN``
    propagate unchanged from the read tools when the scoped project is
    missing or inaccessible.
    """
    session = require_session(session)
    builder = _BUILDERS[profile.id]
    read = _Reader(registry, profile, session)
    return await builder(read, session, scope, handoff or {})
