"""Read and write tools available to agents.

Read tools back the context builders during draft.  Write tools run
during apply, always on ``ctx.conn`` (the apply transaction), and
re-check existence and ownership of every referenced entity: ids in a
plan come from the model and are never trusted.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Annotated, Any

from pydantic import BaseModel, ConfigDict, Field

from app.errors import AgentForbiddenError, AgentNotFoundError, InvalidInputError, InvalidStateError
from app.repos import event_repo, note_repo, notification_repo, project_repo, task_repo, user_repo
from app.services.agents.profiles import PROFILES
from app.services.agents.registry import Registry, ToolContext
from app.services.agents.schemas._base import PositiveId
from app.services.agents.schemas.events_publisher import (
    CommentAdd,
    CommentRemove,
    EventCreate,
    EventDelete,
    EventUpdate,
    LikeToggle,
    RsvpChange,
)
from app.services.agents.schemas.notes_vault import NoteCreate, NoteDelete, NoteUpdate
from app.services.agents.schemas.task_planner import (
    TaskCreate,
    TaskDelete,
    TaskStatusChange,
    TaskUpdate,
)

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Request models
# ---------------------------------------------------------------------------


class _Input(BaseModel):
    model_config = ConfigDict(extra="forbid")


class NoInput(_Input):
    pass


class LimitInput(_Input):
    limit: Annotated[int, Field(ge=1, le=100)] = 10


class ProjectInput(_Input):
    projectId: PositiveId


class ListTasksInput(_Input):
    projectId: PositiveId
    limit: Annotated[int, Field(ge=1, le=100)] = 50


class TaskInput(_Input):
    taskId: PositiveId


class CreateTaskInput(TaskCreate):
    projectId: PositiveId


class UpdateTaskInput(TaskUpdate):
    projectId: PositiveId


class UpdateTaskStatusInput(TaskStatusChange):
    projectId: PositiveId


class DeleteTaskInput(TaskDelete):
    projectId: PositiveId


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def parse_iso(value: str | None) -> datetime | None:
    """Parse an ISO 8601 timestamp into an aware UTC datetime."""
    if value is None:
        return None
    try:
        parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        raise InvalidInputError(f"Invalid ISO 8601 timestamp: {value!r}")
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


async def require_project_access(
    project_id: int, user_id: str, *, write: bool = False, conn=None
) -> dict:
    """Return the project row or raise NOT_FOUND / FORBIDDEN."""
    access = await project_repo.get_project_access(project_id, user_id, conn=conn)
    if access is None:
        raise AgentNotFoundError(f"Project {project_id} not found")
    if not access["can_read"] or (write and not access["can_write"]):
        raise AgentForbiddenError("You do not have access to this project")
    return access["project"]


async def _require_task_in_project(conn, task_id: int, project_id: int) -> dict:
    task = await task_repo.get_task(task_id, conn=conn)
    if task is None or task["project_id"] != project_id:
        raise AgentNotFoundError(f"Task {task_id} not found in project {project_id}")
    return task


async def _require_own_note(conn, note_id: int, user_id: str) -> dict:
    note = await note_repo.get_note(note_id, conn=conn)
    # another user's note is reported as missing
    if note is None or note["created_by_id"] != user_id:
        raise AgentNotFoundError(f"Note {note_id} not found")
    return note


async def _require_event(conn, event_id: int) -> dict:
    event = await event_repo.get_event(event_id, conn=conn)
    if event is None:
        raise AgentNotFoundError(f"Event {event_id} not found")
    return event


async def _require_own_event(conn, event_id: int, user_id: str) -> dict:
    event = await _require_event(conn, event_id)
    if event["created_by_id"] != user_id:
        raise AgentForbiddenError(f"Only the creator can modify event {event_id}")
    return event


# ---------------------------------------------------------------------------
# Read tools
# ---------------------------------------------------------------------------


async def get_session_context(params: NoInput, ctx: ToolContext) -> dict:
    user = await user_repo.get_user_by_id(ctx.session.user_id)
    return {
        "userId": ctx.session.user_id,
        "activeOrganizationId": ctx.session.active_organization_id,
        "name": user["name"] if user else None,
    }


async def list_projects(params: LimitInput, ctx: ToolContext) -> list[dict]:
    return await project_repo.list_projects_for_user(ctx.session.user_id, limit=params.limit)


async def get_project_detail(params: ProjectInput, ctx: ToolContext) -> dict:
    project = await require_project_access(params.projectId, ctx.session.user_id)
    members = await project_repo.list_project_members(params.projectId)
    return {"project": project, "members": members}


async def list_tasks(params: ListTasksInput, ctx: ToolContext) -> list[dict]:
    await require_project_access(params.projectId, ctx.session.user_id)
    return await task_repo.list_tasks(params.projectId, limit=params.limit)


async def get_task_detail(params: TaskInput, ctx: ToolContext) -> dict:
    task = await task_repo.get_task(params.taskId)
    if task is None:
        raise AgentNotFoundError(f"Task {params.taskId} not found")
    await require_project_access(task["project_id"], ctx.session.user_id)
    return task


async def list_notifications(params: LimitInput, ctx: ToolContext) -> list[dict]:
    return await notification_repo.list_notifications(ctx.session.user_id, limit=params.limit)


async def list_notes(params: LimitInput, ctx: ToolContext) -> list[dict]:
    return await note_repo.list_notes_by_owner(ctx.session.user_id, limit=params.limit)


async def list_public_events(params: LimitInput, ctx: ToolContext) -> list[dict]:
    return await event_repo.list_public_events(limit=params.limit)


# ---------------------------------------------------------------------------
# Write tools -- tasks
# ---------------------------------------------------------------------------


async def create_task(params: CreateTaskInput, ctx: ToolContext) -> dict:
    await require_project_access(params.projectId, ctx.session.user_id, write=True, conn=ctx.conn)
    description = params.description
    if params.acceptanceCriteria:
        criteria = "\n".join(f"- {c}" for c in params.acceptanceCriteria)
        description = f"{description}\n\nAcceptance criteria:\n{criteria}".strip()
    task_id, created = await task_repo.create_task(
        ctx.conn,
        project_id=params.projectId,
        created_by_id=ctx.session.user_id,
        title=params.title,
        description=description,
        priority=params.priority,
        client_request_id=params.clientRequestId,
        assigned_to_id=params.assignedToId,
        order_index=params.orderIndex,
        due_date=parse_iso(params.dueDate),
    )
    if not created:
        logger.info("create_task: clientRequestId %s already applied as task %d",
                    params.clientRequestId, task_id)
    return {"taskId": task_id, "created": created}


_TASK_PATCH_COLUMNS = {
    "title": "title",
    "description": "description",
    "priority": "priority",
    "assignedToId": "assigned_to_id",
    "dueDate": "due_date",
}


async def update_task(params: UpdateTaskInput, ctx: ToolContext) -> dict:
    await require_project_access(params.projectId, ctx.session.user_id, write=True, conn=ctx.conn)
    await _require_task_in_project(ctx.conn, params.taskId, params.projectId)
    patch: dict[str, Any] = {}
    for key in params.patch.model_fields_set:
        value = getattr(params.patch, key)
        if key == "dueDate":
            value = parse_iso(value)
        patch[_TASK_PATCH_COLUMNS[key]] = value
    await task_repo.update_task(ctx.conn, params.taskId, ctx.session.user_id, patch)
    return {"taskId": params.taskId}


async def update_task_status(params: UpdateTaskStatusInput, ctx: ToolContext) -> dict:
    await require_project_access(params.projectId, ctx.session.user_id, write=True, conn=ctx.conn)
    await _require_task_in_project(ctx.conn, params.taskId, params.projectId)
    await task_repo.update_task_status(ctx.conn, params.taskId, ctx.session.user_id, params.status)
    return {"taskId": params.taskId}


async def delete_task(params: DeleteTaskInput, ctx: ToolContext) -> dict:
    await require_project_access(params.projectId, ctx.session.user_id, write=True, conn=ctx.conn)
    await _require_task_in_project(ctx.conn, params.taskId, params.projectId)
    await task_repo.delete_task(ctx.conn, params.taskId)
    logger.info("delete_task: task %d deleted (%s)", params.taskId, params.reason)
    return {"taskId": params.taskId}


# ---------------------------------------------------------------------------
# Write tools -- notes
# ---------------------------------------------------------------------------


async def create_note(params: NoteCreate, ctx: ToolContext) -> dict:
    note_id = await note_repo.create_note(ctx.conn, ctx.session.user_id, params.content)
    return {"noteId": note_id}


async def update_note(params: NoteUpdate, ctx: ToolContext) -> dict:
    note = await _require_own_note(ctx.conn, params.noteId, ctx.session.user_id)
    if note["is_locked"] and not params.requiresUnlocked:
        raise AgentForbiddenError(f"Note {params.noteId} is locked")
    await note_repo.update_note_content(ctx.conn, params.noteId, params.nextContent)
    return {"noteId": params.noteId}


async def delete_note(params: NoteDelete, ctx: ToolContext) -> dict:
    await _require_own_note(ctx.conn, params.noteId, ctx.session.user_id)
    await note_repo.delete_note(ctx.conn, params.noteId)
    return {"noteId": params.noteId}


# ---------------------------------------------------------------------------
# Write tools -- events
# ---------------------------------------------------------------------------

_EVENT_PATCH_COLUMNS = {
    "title": "title",
    "description": "description",
    "eventDate": "event_date",
    "region": "region",
    "enableRsvp": "enable_rsvp",
    "sendReminders": "send_reminders",
}


async def create_event(params: EventCreate, ctx: ToolContext) -> dict:
    event_id, created = await event_repo.create_event(
        ctx.conn,
        user_id=ctx.session.user_id,
        title=params.title,
        description=params.description,
        event_date=parse_iso(params.eventDate),
        region=params.region,
        enable_rsvp=params.enableRsvp,
        send_reminders=params.sendReminders,
        image_url=str(params.imageUrl) if params.imageUrl else None,
        client_request_id=params.clientRequestId,
    )
    return {"eventId": event_id, "created": created}


async def update_event(params: EventUpdate, ctx: ToolContext) -> dict:
    await _require_own_event(ctx.conn, params.eventId, ctx.session.user_id)
    patch: dict[str, Any] = {}
    for key in params.patch.model_fields_set:
        value = getattr(params.patch, key)
        if key == "eventDate":
            value = parse_iso(value)
        patch[_EVENT_PATCH_COLUMNS[key]] = value
    await event_repo.update_event(ctx.conn, params.eventId, patch)
    return {"eventId": params.eventId}


async def delete_event(params: EventDelete, ctx: ToolContext) -> dict:
    await _require_own_event(ctx.conn, params.eventId, ctx.session.user_id)
    await event_repo.delete_event(ctx.conn, params.eventId)
    return {"eventId": params.eventId}


async def add_event_comment(params: CommentAdd, ctx: ToolContext) -> dict:
    await _require_event(ctx.conn, params.eventId)
    comment_id = await event_repo.add_comment(
        ctx.conn, params.eventId, ctx.session.user_id, params.text
    )
    return {"commentId": comment_id}


async def delete_event_comment(params: CommentRemove, ctx: ToolContext) -> dict:
    event = await _require_event(ctx.conn, params.eventId)
    comment = await event_repo.get_comment(ctx.conn, params.commentId)
    if comment is None or comment["event_id"] != params.eventId:
        raise AgentNotFoundError(f"Comment {params.commentId} not found on event {params.eventId}")
    user_id = ctx.session.user_id
    if comment["created_by_id"] != user_id and event["created_by_id"] != user_id:
        raise AgentForbiddenError(f"Not allowed to remove comment {params.commentId}")
    await event_repo.delete_comment(ctx.conn, params.commentId)
    return {"commentId": params.commentId}


async def set_event_rsvp(params: RsvpChange, ctx: ToolContext) -> dict:
    event = await _require_event(ctx.conn, params.eventId)
    if not event["enable_rsvp"]:
        raise InvalidStateError(f"RSVP is not enabled for event {params.eventId}")
    await event_repo.set_rsvp(ctx.conn, params.eventId, ctx.session.user_id, params.status)
    return {"eventId": params.eventId, "status": params.status}


async def toggle_event_like(params: LikeToggle, ctx: ToolContext) -> dict:
    await _require_event(ctx.conn, params.eventId)
    liked = await event_repo.toggle_like(ctx.conn, params.eventId, ctx.session.user_id)
    return {"eventId": params.eventId, "liked": liked}


# ---------------------------------------------------------------------------
# Registration
# ---------------------------------------------------------------------------

_READ_TOOLS = [
    ("get_session_context", get_session_context, NoInput,
     "Identity and active organization of the current user."),
    ("list_projects", list_projects, LimitInput,
     "Projects the user owns or collaborates on, most recently updated first."),
    ("get_project_detail", get_project_detail, ProjectInput,
     "One project plus its owner and collaborators.  Requires access."),
    ("list_tasks", list_tasks, ListTasksInput,
     "Newest tasks of a project the user can access."),
    ("get_task_detail", get_task_detail, TaskInput,
     "One task by id.  Requires access to its project."),
    ("list_notifications", list_notifications, LimitInput,
     "The user's newest notifications."),
    ("list_notes", list_notes, LimitInput,
     "The user's newest sticky notes, with lock state."),
    ("list_public_events", list_public_events, LimitInput,
     "Newest public events with like and comment counts."),
]

_WRITE_TOOLS = [
    ("create_task", create_task, CreateTaskInput,
     "Create a task; idempotent on clientRequestId within the project."),
    ("update_task", update_task, UpdateTaskInput, "Patch fields of an existing task."),
    ("update_task_status", update_task_status, UpdateTaskStatusInput, "Change a task's status."),
    ("delete_task", delete_task, DeleteTaskInput, "Delete a task.  Requires dangerous=true."),
    ("create_note", create_note, NoteCreate, "Create a private sticky note."),
    ("update_note", update_note, NoteUpdate, "Replace the content of one of the user's notes."),
    ("delete_note", delete_note, NoteDelete, "Delete one of the user's notes.  Requires dangerous=true."),
    ("create_event", create_event, EventCreate,
     "Publish an event; idempotent on clientRequestId per creator."),
    ("update_event", update_event, EventUpdate, "Patch an event the user created."),
    ("delete_event", delete_event, EventDelete, "Delete an event the user created."),
    ("add_event_comment", add_event_comment, CommentAdd, "Comment on an event."),
    ("delete_event_comment", delete_event_comment, CommentRemove,
     "Remove a comment (its author or the event owner only)."),
    ("set_event_rsvp", set_event_rsvp, RsvpChange, "Set the user's RSVP for an event."),
    ("toggle_event_like", toggle_event_like, LikeToggle, "Like or unlike an event."),
]


def build_registry() -> Registry:
    """Create a registry holding every production tool.

    Raises ``ValueError`` if any agent profile allow-lists a tool the
    registry lacks or of the wrong kind.
    """
    registry = Registry()
    for name, handler, model, description in _READ_TOOLS:
        registry.register(name, handler, model, description, "read")
    for name, handler, model, description in _WRITE_TOOLS:
        registry.register(name, handler, model, description, "write")
    for profile in PROFILES.values():
        registry.check_allowlists(profile.id, profile.draft_tools, profile.apply_tools)
    return registry
