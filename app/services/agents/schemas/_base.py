"""Shared pieces of the plan schemas."""

from __future__ import annotations

from typing import Annotated, Any, ClassVar

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    StringConstraints,
    model_serializer,
    model_validator,
)

# ISO 8601 UTC, e.g. 2026-02-09T07:03:00.000Z
ISO_UTC_PATTERN = r"^\d{4}-\d{2}-\d{2}T\d{2}:\d{2}:.+Z$"

IsoUtc = Annotated[str, StringConstraints(pattern=ISO_UTC_PATTERN)]
PositiveId = Annotated[int, Field(gt=0, strict=True)]
Reason = Annotated[str, StringConstraints(min_length=1, max_length=500)]
ShortText = Annotated[str, StringConstraints(min_length=1, max_length=300)]


class StrictModel(BaseModel):
    """Plan fragments reject unknown keys."""

    model_config = ConfigDict(extra="forbid")


def duplicate_values(values: list[str]) -> list[str]:
    """Values that occur more than once, in first-seen order."""
    seen: set[str] = set()
    dupes: list[str] = []
    for v in values:
        if v in seen and v not in dupes:
            dupes.append(v)
        seen.add(v)
    return dupes


class PatchModel(StrictModel):
    """Partial update.  Serialises only the keys the model actually sent,
    so an explicit ``null`` (clear the field) survives a round trip while
    an omitted key means "leave unchanged".

    Fields listed in ``non_nullable`` back NOT NULL columns: they may be
    omitted but never sent as ``null``.
    """

    non_nullable: ClassVar[frozenset[str]] = frozenset()

    @model_validator(mode="before")
    @classmethod
    def _reject_nulls(cls, data: Any) -> Any:
        if isinstance(data, dict):
            nulls = sorted(k for k in cls.non_nullable if k in data and data[k] is None)
            if nulls:
                raise ValueError(f"cannot be null (omit to leave unchanged): {', '.join(nulls)}")
        return data

    @model_serializer(mode="wrap")
    def _only_set_fields(self, handler):
        data = handler(self)
        return {k: v for k, v in data.items() if k in self.model_fields_set}
