"""Core value types shared by every agent family.

``DraftStatus`` is a closed enum with an explicit transition table:
any move not listed in ``_TRANSITIONS`` is rejected.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any

from app.errors import AgentUnauthorizedError, InvalidInputError, InvalidStateError


@dataclass(frozen=True)
class SessionContext:
    """Identity of the caller.  Supplied by the API layer; never authenticated here."""

    user_id: str
    active_organization_id: int | None = None

    def require(self) -> "SessionContext":
        if not self.user_id:
            raise AgentUnauthorizedError("No active session")
        return self


def require_session(session: SessionContext | None) -> SessionContext:
    """Return *session* or raise ``UNAUTHORIZED`` when there is none."""
    if session is None:
        raise AgentUnauthorizedError("No active session")
    return session.require()


@dataclass(frozen=True)
class AgentScope:
    """Optional organization / project scope of one request."""

    org_id: int | str | None = None
    project_id: int | None = None

    @classmethod
    def from_input(cls, raw: dict[str, Any] | None) -> "AgentScope":
        """Normalise a client-supplied scope dict.

        ``projectId`` accepts an int or a numeric string; anything else is
        ``INVALID_INPUT``.
        """
        if not raw:
            return cls()
        project_id = raw.get("projectId")
        if project_id is not None:
            if isinstance(project_id, bool) or (
                isinstance(project_id, float) and not project_id.is_integer()
            ):
                raise InvalidInputError("scope.projectId must be an integer")
            try:
                project_id = int(project_id)
            except (TypeError, ValueError):
                raise InvalidInputError("scope.projectId must be an integer")
            if project_id <= 0:
                raise InvalidInputError("scope.projectId must be positive")
        return cls(org_id=raw.get("orgId"), project_id=project_id)

    def to_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = {}
        if self.org_id is not None:
            out["orgId"] = self.org_id
        if self.project_id is not None:
            out["projectId"] = self.project_id
        return out


class DraftStatus(str, Enum):
    DRAFT = "draft"
    CONFIRMED = "confirmed"
    APPLIED = "applied"
    EXPIRED = "expired"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (DraftStatus.APPLIED, DraftStatus.EXPIRED, DraftStatus.FAILED)


_TRANSITIONS: dict[DraftStatus, frozenset[DraftStatus]] = {
    DraftStatus.DRAFT: frozenset({DraftStatus.CONFIRMED, DraftStatus.EXPIRED}),
    DraftStatus.CONFIRMED: frozenset(
        {DraftStatus.APPLIED, DraftStatus.EXPIRED, DraftStatus.FAILED}
    ),
    DraftStatus.APPLIED: frozenset(),
    DraftStatus.EXPIRED: frozenset(),
    DraftStatus.FAILED: frozenset(),
}


def can_transition(current: DraftStatus, target: DraftStatus) -> bool:
    return target in _TRANSITIONS[current]


def check_transition(current: DraftStatus, target: DraftStatus) -> None:
    """Raise ``INVALID_STATE`` unless *current* → *target* is allowed."""
    if not can_transition(current, target):
        raise InvalidStateError(
            f"Draft is '{current.value}'; cannot move to '{target.value}'"
        )

