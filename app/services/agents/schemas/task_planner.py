"""Task planner plan schema.

Enums mirror the ``tasks`` table: priority ``low|medium|high|urgent`` and
status ``pending|in_progress|completed|blocked``.
"""

from __future__ import annotations

from typing import Annotated, Literal

from pydantic import Field, StringConstraints, model_validator

from app.services.agents.schemas._base import (
    IsoUtc,
    PatchModel,
    PositiveId,
    Reason,
    ShortText,
    StrictModel,
    duplicate_values,
)

TaskPriority = Literal["low", "medium", "high", "urgent"]
TaskStatus = Literal["pending", "in_progress", "completed", "blocked"]


class TaskCreate(StrictModel):
    title: Annotated[str, StringConstraints(min_length=1, max_length=256)]
    description: Annotated[str, StringConstraints(max_length=5000)] = ""
    priority: TaskPriority = "medium"
    assignedToId: Annotated[str, StringConstraints(min_length=1)] | None = None
    acceptanceCriteria: list[
        Annotated[str, StringConstraints(min_length=1, max_length=200)]
    ] = Field(default_factory=list, max_length=20)
    orderIndex: Annotated[int, Field(ge=0)] | None = None
    dueDate: IsoUtc | None = None
    clientRequestId: Annotated[str, StringConstraints(min_length=8, max_length=128)]


class TaskPatch(PatchModel):
    non_nullable = frozenset({"title", "description", "priority"})

    title: Annotated[str, StringConstraints(min_length=1, max_length=256)] | None = None
    description: Annotated[str, StringConstraints(max_length=5000)] | None = None
    priority: TaskPriority | None = None
    assignedToId: Annotated[str, StringConstraints(min_length=1)] | None = None
    dueDate: IsoUtc | None = None


class TaskUpdate(StrictModel):
    taskId: PositiveId
    patch: TaskPatch
    reason: Annotated[str, StringConstraints(max_length=500)] | None = None


class TaskStatusChange(StrictModel):
    taskId: PositiveId
    status: TaskStatus
    reason: Annotated[str, StringConstraints(max_length=500)] | None = None


class TaskDelete(StrictModel):
    taskId: PositiveId
    reason: Reason
    dangerous: Literal[True]


class TaskPlanScope(StrictModel):
    orgId: str | int | None = None
    projectId: PositiveId | None = None


class TaskDiffPreview(StrictModel):
    creates: list[str] = Field(default_factory=list, max_length=50)
    updates: list[str] = Field(default_factory=list, max_length=50)
    statusChanges: list[str] = Field(default_factory=list, max_length=50)
    deletes: list[str] = Field(default_factory=list, max_length=50)


class TaskPlanDraft(StrictModel):
    agentId: Literal["task_planner"]
    scope: TaskPlanScope = Field(default_factory=TaskPlanScope)
    creates: list[TaskCreate] = Field(default_factory=list, max_length=30)
    updates: list[TaskUpdate] = Field(default_factory=list, max_length=50)
    statusChanges: list[TaskStatusChange] = Field(default_factory=list, max_length=50)
    deletes: list[TaskDelete] = Field(default_factory=list, max_length=10)
    orderingRationale: Annotated[str, StringConstraints(max_length=2000)] | None = None
    assigneeRationale: Annotated[str, StringConstraints(max_length=2000)] | None = None
    risks: list[ShortText] = Field(default_factory=list, max_length=20)
    questionsForUser: list[ShortText] = Field(default_factory=list, max_length=10)
    diffPreview: TaskDiffPreview = Field(default_factory=TaskDiffPreview)

    @model_validator(mode="after")
    def _check_plan(self) -> "TaskPlanDraft":
        dupes = duplicate_values([c.clientRequestId for c in self.creates])
        if dupes:
            raise ValueError(f"duplicate clientRequestId in creates: {', '.join(dupes)}")
        return self

    @property
    def has_writes(self) -> bool:
        return bool(self.creates or self.updates or self.statusChanges or self.deletes)
