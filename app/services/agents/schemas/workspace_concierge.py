"""Workspace concierge output schema.

The concierge only reads: it answers, or hands off to a domain agent.
"""

from __future__ import annotations

from typing import Annotated, Any, Literal

from pydantic import Field, StringConstraints, model_validator

from app.services.agents.schemas._base import StrictModel

NonEmpty = Annotated[str, StringConstraints(min_length=1)]


class ConciergeScope(StrictModel):
    orgId: str | int | None = None
    projectId: str | int | None = None


class ConciergeIntent(StrictModel):
    type: Literal["answer", "handoff", "draft_plan"]
    scope: ConciergeScope = Field(default_factory=ConciergeScope)


class ConciergeAnswer(StrictModel):
    summary: NonEmpty
    details: list[str] | None = None


class Handoff(StrictModel):
    targetAgent: Literal["task_planner", "notes_vault", "events_publisher"]
    context: dict[str, Any] = Field(default_factory=dict)
    userIntent: NonEmpty


class ToolCall(StrictModel):
    tool: NonEmpty
    input: Any = None


class AffectedEntity(StrictModel):
    type: NonEmpty
    id: str | int | None = None


class ProposedChange(StrictModel):
    summary: NonEmpty
    affectedEntities: list[AffectedEntity] = Field(default_factory=list)


class ActionPlanDraft(StrictModel):
    readQueries: list[ToolCall] = Field(default_factory=list)
    proposedChanges: list[ProposedChange] = Field(default_factory=list)
    applyCalls: list[ToolCall] = Field(default_factory=list)


class Citation(StrictModel):
    label: NonEmpty
    ref: NonEmpty


class ConciergeOutput(StrictModel):
    agentId: Literal["workspace_concierge"] = "workspace_concierge"
    intent: ConciergeIntent
    answer: ConciergeAnswer | None = None
    handoff: Handoff | None = None
    draftPlan: ActionPlanDraft | None = None
    citations: list[Citation] | None = None

    @model_validator(mode="after")
    def _check_intent(self) -> "ConciergeOutput":
        if self.intent.type == "answer" and self.answer is None:
            raise ValueError("intent 'answer' requires an answer object")
        if self.intent.type == "handoff" and self.handoff is None:
            raise ValueError("intent 'handoff' requires a handoff object")
        return self
