"""Plan schemas for every agent family."""

from app.services.agents.schemas.events_publisher import EventsPublisherDraft
from app.services.agents.schemas.notes_vault import (
    NoteCreate,
    NoteDelete,
    NoteUpdate,
    NotesVaultDraft,
)
from app.services.agents.schemas.task_planner import TaskPlanDraft
from app.services.agents.schemas.workspace_concierge import ConciergeOutput

__all__ = [
    "ConciergeOutput",
    "EventsPublisherDraft",
    "NoteCreate",
    "NoteDelete",
    "NoteUpdate",
    "NotesVaultDraft",
    "TaskPlanDraft",
]
