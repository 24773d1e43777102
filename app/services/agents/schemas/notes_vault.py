"""Notes vault plan schema -- a discriminated union of note operations."""

from __future__ import annotations

from typing import Annotated, Literal, Union

from pydantic import Field, StringConstraints

from app.services.agents.schemas._base import PositiveId, Reason, StrictModel

NoteContent = Annotated[str, StringConstraints(min_length=1, max_length=20_000)]
OptionalReason = Annotated[str, StringConstraints(max_length=500)] | None


class NoteCreate(StrictModel):
    type: Literal["create"]
    content: NoteContent
    reason: OptionalReason = None


class NoteUpdate(StrictModel):
    type: Literal["update"]
    noteId: PositiveId
    nextContent: NoteContent
    reason: OptionalReason = None
    # must be true when the target note is password-protected
    requiresUnlocked: bool


class NoteDelete(StrictModel):
    type: Literal["delete"]
    noteId: PositiveId
    reason: Reason
    dangerous: Literal[True]


NoteOperation = Annotated[
    Union[NoteCreate, NoteUpdate, NoteDelete],
    Field(discriminator="type"),
]


class BlockedNote(StrictModel):
    noteId: PositiveId
    reason: Reason


class NotesVaultDraft(StrictModel):
    agentId: Literal["notes_vault"]
    operations: list[NoteOperation] = Field(default_factory=list, max_length=50)
    blocked: list[BlockedNote] = Field(default_factory=list, max_length=50)
    summary: Annotated[str, StringConstraints(min_length=1, max_length=2000)]

    def ops_of(self, kind: type) -> list:
        return [op for op in self.operations if isinstance(op, kind)]
