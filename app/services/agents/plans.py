"""Per-agent plan semantics.

For each agent family this module knows how to:

* check a freshly validated plan against the draft-time context
  (``check_plan``),
* count it for the confirm summary (``summarize``),
* turn it into ordered write-tool calls (``apply_calls``), and
* shape the apply results (``empty_results``).

Apply is all-or-nothing: every call of one plan runs in a single
transaction, so order only matters for dependencies inside the plan
(deletes run last).
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any

from pydantic import BaseModel

from app.errors import ValidationFailedError
from app.services.agents.schemas import (
    EventsPublisherDraft,
    NoteCreate,
    NoteDelete,
    NoteUpdate,
    NotesVaultDraft,
    TaskPlanDraft,
)
from app.services.agents.types import AgentScope


@dataclass(frozen=True)
class ToolCall:
    tool: str
    params: dict[str, Any]
    result_key: str
    id_field: str | None = None  # None: count the call instead of collecting an id


# ---------------------------------------------------------------------------
# Draft-time checks
# ---------------------------------------------------------------------------


def check_plan(plan: BaseModel, scope: AgentScope, context: dict) -> BaseModel:
    """Apply rules that need the request scope or the context pack.

    Returns the (possibly scope-filled) plan; raises ``VALIDATION_FAILED``.
    """
    if isinstance(plan, TaskPlanDraft):
        return _check_task_plan(plan, scope)
    if isinstance(plan, NotesVaultDraft):
        _check_notes_plan(plan, context)
    return plan


def _check_task_plan(plan: TaskPlanDraft, scope: AgentScope) -> TaskPlanDraft:
    if scope.project_id is not None:
        if plan.scope.projectId is None:
            plan = plan.model_copy(
                update={"scope": plan.scope.model_copy(update={"projectId": scope.project_id})}
            )
        elif plan.scope.projectId != scope.project_id:
            raise ValidationFailedError(
                f"Plan targets project {plan.scope.projectId} but the request "
                f"is scoped to project {scope.project_id}"
            )
    if plan.has_writes and plan.scope.projectId is None:
        raise ValidationFailedError("A plan that changes tasks must name scope.projectId")
    return plan


def _check_notes_plan(plan: NotesVaultDraft, context: dict) -> None:
    locked = {n["id"] for n in context.get("notes", []) if n.get("isLocked")}
    for op in plan.ops_of(NoteUpdate):
        if op.noteId in locked and not op.requiresUnlocked:
            raise ValidationFailedError(
                f"Note {op.noteId} is locked; its update must set requiresUnlocked=true"
            )


# ---------------------------------------------------------------------------
# Confirm summaries
# ---------------------------------------------------------------------------


def summarize(plan: BaseModel) -> dict[str, int]:
    """Counts shown to the user before they confirm."""
    if isinstance(plan, TaskPlanDraft):
        return {
            "creates": len(plan.creates),
            "updates": len(plan.updates),
            "statusChanges": len(plan.statusChanges),
            "deletes": len(plan.deletes),
        }
    if isinstance(plan, NotesVaultDraft):
        return {
            "creates": len(plan.ops_of(NoteCreate)),
            "updates": len(plan.ops_of(NoteUpdate)),
            "deletes": len(plan.ops_of(NoteDelete)),
            "blocked": len(plan.blocked),
        }
    if isinstance(plan, EventsPublisherDraft):
        return {
            "creates": len(plan.creates),
            "updates": len(plan.updates),
            "deletes": len(plan.deletes),
            "commentsAdded": len(plan.comments.add),
            "commentsRemoved": len(plan.comments.remove),
            "rsvps": len(plan.rsvps),
            "likes": len(plan.likes),
        }
    return {}


# ---------------------------------------------------------------------------
# Apply
# ---------------------------------------------------------------------------


def empty_results(plan: BaseModel) -> dict[str, Any]:
    if isinstance(plan, TaskPlanDraft):
        return {
            "createdTaskIds": [],
            "updatedTaskIds": [],
            "statusChangedTaskIds": [],
            "deletedTaskIds": [],
        }
    if isinstance(plan, NotesVaultDraft):
        return {
            "createdNoteIds": [],
            "updatedNoteIds": [],
            "deletedNoteIds": [],
            "blockedNoteIds": [b.noteId for b in plan.blocked],
        }
    if isinstance(plan, EventsPublisherDraft):
        return {
            "createdEventIds": [],
            "updatedEventIds": [],
            "deletedEventIds": [],
            "commentsAdded": 0,
            "commentsRemoved": 0,
            "rsvpsSet": 0,
            "likesToggled": 0,
        }
    return {}


def _dump(entry: BaseModel) -> dict[str, Any]:
    return entry.model_dump(mode="json")


def apply_calls(plan: BaseModel) -> list[ToolCall]:
    """Ordered write-tool calls for *plan*."""
    if isinstance(plan, TaskPlanDraft):
        project = {"projectId": plan.scope.projectId}
        return (
            [ToolCall("create_task", {**_dump(c), **project}, "createdTaskIds", "taskId")
             for c in plan.creates]
            + [ToolCall("update_task", {**_dump(u), **project}, "updatedTaskIds", "taskId")
               for u in plan.updates]
            + [ToolCall("update_task_status", {**_dump(s), **project},
                        "statusChangedTaskIds", "taskId")
               for s in plan.statusChanges]
            + [ToolCall("delete_task", {**_dump(d), **project}, "deletedTaskIds", "taskId")
               for d in plan.deletes]
        )
    if isinstance(plan, NotesVaultDraft):
        calls = []
        for op in plan.operations:
            if isinstance(op, NoteCreate):
                calls.append(ToolCall("create_note", _dump(op), "createdNoteIds", "noteId"))
            elif isinstance(op, NoteUpdate):
                calls.append(ToolCall("update_note", _dump(op), "updatedNoteIds", "noteId"))
            else:
                calls.append(ToolCall("delete_note", _dump(op), "deletedNoteIds", "noteId"))
        return calls
    if isinstance(plan, EventsPublisherDraft):
        return (
            [ToolCall("create_event", _dump(c), "createdEventIds", "eventId") for c in plan.creates]
            + [ToolCall("update_event", _dump(u), "updatedEventIds", "eventId") for u in plan.updates]
            + [ToolCall("add_event_comment", _dump(c), "commentsAdded") for c in plan.comments.add]
            + [ToolCall("delete_event_comment", _dump(c), "commentsRemoved")
               for c in plan.comments.remove]
            + [ToolCall("set_event_rsvp", _dump(r), "rsvpsSet") for r in plan.rsvps]
            + [ToolCall("toggle_event_like", _dump(like), "likesToggled") for like in plan.likes]
            + [ToolCall("delete_event", _dump(d), "deletedEventIds", "eventId") for d in plan.deletes]
        )
    return []


def record_result(results: dict[str, Any], call: ToolCall, output: dict) -> None:
    if call.id_field is None:
        results[call.result_key] += 1
    else:
        results[call.result_key].append(output[call.id_field])


def plan_project_id(plan: BaseModel) -> int | None:
    """The project a plan writes to, when it has one."""
    if isinstance(plan, TaskPlanDraft) and plan.has_writes:
        return plan.scope.projectId
    return None
