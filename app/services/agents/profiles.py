"""Agent profiles -- one immutable descriptor per agent family.

Each profile carries two disjoint tool sets: ``draft_tools`` (read tools
usable while building context) and ``apply_tools`` (write tools usable
only during apply).  Overlap is rejected at construction.
"""

from __future__ import annotations

from dataclasses import dataclass

from pydantic import BaseModel

from app.errors import AgentNotFoundError
from app.services.agents.schemas import (
    ConciergeOutput,
    EventsPublisherDraft,
    NotesVaultDraft,
    TaskPlanDraft,
)


@dataclass(frozen=True)
class AgentProfile:
    id: str
    name: str
    description: str
    output_schema: type[BaseModel]
    draft_tools: frozenset[str]
    apply_tools: frozenset[str]

    def __post_init__(self) -> None:
        overlap = self.draft_tools & self.apply_tools
        if overlap:
            raise ValueError(
                f"Profile '{self.id}' lists tools in both phases: {sorted(overlap)}"
            )

    @property
    def has_apply_phase(self) -> bool:
        return bool(self.apply_tools)


WORKSPACE_CONCIERGE = AgentProfile(
    id="workspace_concierge",
    name="Workspace Concierge",
    description=(
        "Read-first front door: answers questions about the workspace and "
        "hands off to the right domain agent."
    ),
    output_schema=ConciergeOutput,
    draft_tools=frozenset(
        {"get_session_context", "list_projects", "list_notifications", "list_tasks"}
    ),
    apply_tools=frozenset(),
)

TASK_PLANNER = AgentProfile(
    id="task_planner",
    name="Task Planner",
    description=(
        "Turns goals into an actionable backlog and safely applies task "
        "mutations via Draft, Confirm, Apply."
    ),
    output_schema=TaskPlanDraft,
    draft_tools=frozenset(
        {"get_session_context", "get_project_detail", "list_tasks", "get_task_detail"}
    ),
    apply_tools=frozenset(
        {"create_task", "update_task", "update_task_status", "delete_task"}
    ),
)

NOTES_VAULT = AgentProfile(
    id="notes_vault",
    name="Notes Vault",
    description="Organizes, creates, updates and deletes the user's notes without touching note passwords.",
    output_schema=NotesVaultDraft,
    draft_tools=frozenset({"get_session_context", "list_notes"}),
    apply_tools=frozenset({"create_note", "update_note", "delete_note"}),
)

EVENTS_PUBLISHER = AgentProfile(
    id="events_publisher",
    name="Events Publisher",
    description="Publishes and maintains events, comments, RSVPs and likes.",
    output_schema=EventsPublisherDraft,
    draft_tools=frozenset({"get_session_context", "list_public_events"}),
    apply_tools=frozenset(
        {
            "create_event",
            "update_event",
            "delete_event",
            "add_event_comment",
            "delete_event_comment",
            "set_event_rsvp",
            "toggle_event_like",
        }
    ),
)

PROFILES: dict[str, AgentProfile] = {
    p.id: p for p in (WORKSPACE_CONCIERGE, TASK_PLANNER, NOTES_VAULT, EVENTS_PUBLISHER)
}


def get_profile(agent_id: str) -> AgentProfile:
    """Look up a profile; unknown ids are ``NOT_FOUND``."""
    profile = PROFILES.get(agent_id)
    if profile is None:
        raise AgentNotFoundError(f"Unknown agent '{agent_id}'")
    return profile
