"""Events publisher plan schema."""

from __future__ import annotations

from typing import Annotated, Literal

from pydantic import AnyHttpUrl, Field, StringConstraints, model_validator

from app.services.agents.schemas._base import (
    IsoUtc,
    PatchModel,
    PositiveId,
    Reason,
    StrictModel,
    duplicate_values,
)

Region = Literal[
    "sofia",
    "plovdiv",
    "varna",
    "burgas",
    "ruse",
    "stara_zagora",
    "pleven",
    "sliven",
    "dobrich",
    "shumen",
]
RsvpStatus = Literal["going", "maybe", "not_going"]

Title = Annotated[str, StringConstraints(min_length=1, max_length=256)]
Description = Annotated[str, StringConstraints(min_length=1, max_length=5000)]
Note = Annotated[str, StringConstraints(max_length=500)]


class EventCreate(StrictModel):
    title: Title
    description: Description
    eventDate: IsoUtc
    region: Region
    enableRsvp: bool = False
    sendReminders: bool = False
    imageUrl: AnyHttpUrl | None = None
    clientRequestId: Annotated[str, StringConstraints(min_length=8, max_length=128)]


class EventPatch(PatchModel):
    non_nullable = frozenset(
        {"title", "description", "eventDate", "region", "enableRsvp", "sendReminders"}
    )

    title: Title | None = None
    description: Description | None = None
    eventDate: IsoUtc | None = None
    region: Region | None = None
    enableRsvp: bool | None = None
    sendReminders: bool | None = None


class EventUpdate(StrictModel):
    eventId: PositiveId
    patch: EventPatch
    reason: Note | None = None


class EventDelete(StrictModel):
    eventId: PositiveId
    reason: Reason
    dangerous: Literal[True]


class CommentAdd(StrictModel):
    eventId: PositiveId
    text: Annotated[str, StringConstraints(min_length=1, max_length=500)]


class CommentRemove(StrictModel):
    eventId: PositiveId
    commentId: PositiveId
    reason: Reason
    dangerous: Literal[True]


class CommentChanges(StrictModel):
    add: list[CommentAdd] = Field(default_factory=list, max_length=20)
    remove: list[CommentRemove] = Field(default_factory=list, max_length=10)


class RsvpChange(StrictModel):
    eventId: PositiveId
    status: RsvpStatus


class LikeToggle(StrictModel):
    eventId: PositiveId


class EventsDiffPreview(StrictModel):
    creates: list[str] = Field(default_factory=list)
    updates: list[str] = Field(default_factory=list)
    deletes: list[str] = Field(default_factory=list)
    comments: list[str] = Field(default_factory=list)
    rsvps: list[str] = Field(default_factory=list)


class EventsPublisherDraft(StrictModel):
    agentId: Literal["events_publisher"]
    creates: list[EventCreate] = Field(default_factory=list, max_length=10)
    updates: list[EventUpdate] = Field(default_factory=list, max_length=20)
    deletes: list[EventDelete] = Field(default_factory=list, max_length=5)
    comments: CommentChanges = Field(default_factory=CommentChanges)
    rsvps: list[RsvpChange] = Field(default_factory=list, max_length=20)
    likes: list[LikeToggle] = Field(default_factory=list, max_length=20)
    summary: Annotated[str, StringConstraints(min_length=1, max_length=2000)]
    risks: list[Note] = Field(default_factory=list, max_length=10)
    questionsForUser: list[Note] = Field(default_factory=list, max_length=5)
    diffPreview: EventsDiffPreview = Field(default_factory=EventsDiffPreview)

    @model_validator(mode="after")
    def _check_plan(self) -> "EventsPublisherDraft":
        dupes = duplicate_values([c.clientRequestId for c in self.creates])
        if dupes:
            raise ValueError(f"duplicate clientRequestId in creates: {', '.join(dupes)}")
        liked = duplicate_values([str(like.eventId) for like in self.likes])
        if liked:
            raise ValueError(f"event liked more than once in one plan: {', '.join(liked)}")
        return self
