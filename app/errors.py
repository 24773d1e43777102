"""Domain exception hierarchy for the agent service.

Services raise these instead of bare ``ValueError`` so that the global
exception handler in ``main.py`` can map them to the correct HTTP status
code without fragile string matching.

Agent failures additionally carry a stable machine-readable ``code``
(see :class:`AgentErrorCode`) so clients can branch on the failure kind
rather than on the message text.
"""

from enum import Enum


class KairosError(Exception):
    """Base for all domain exceptions."""

    code: str | None = None

    def __init__(self, message: str = "An unexpected error occurred", *, status_code: int = 500):
        super().__init__(message)
        self.status_code = status_code


# ---------------------------------------------------------------------------
# Agent orchestration errors
# ---------------------------------------------------------------------------


class AgentErrorCode(str, Enum):
    UNAUTHORIZED = "UNAUTHORIZED"
    FORBIDDEN = "FORBIDDEN"
    NOT_FOUND = "NOT_FOUND"
    VALIDATION_FAILED = "VALIDATION_FAILED"
    INVALID_STATE = "INVALID_STATE"
    EXPIRED = "EXPIRED"
    TOKEN_MISMATCH = "TOKEN_MISMATCH"
    TOOL_NOT_ALLOWED = "TOOL_NOT_ALLOWED"
    INVALID_INPUT = "INVALID_INPUT"
    APPLY_FAILED = "APPLY_FAILED"


_STATUS_BY_CODE: dict[AgentErrorCode, int] = {
    AgentErrorCode.UNAUTHORIZED: 401,
    AgentErrorCode.FORBIDDEN: 403,
    AgentErrorCode.NOT_FOUND: 404,
    AgentErrorCode.VALIDATION_FAILED: 422,
    AgentErrorCode.INVALID_STATE: 409,
    AgentErrorCode.EXPIRED: 410,
    AgentErrorCode.TOKEN_MISMATCH: 409,
    AgentErrorCode.TOOL_NOT_ALLOWED: 403,
    AgentErrorCode.INVALID_INPUT: 422,
    AgentErrorCode.APPLY_FAILED: 500,
}


class AgentError(KairosError):
    """Base for Draft/Confirm/Apply failures.  Subclasses pin ``code``."""

    code: str = AgentErrorCode.APPLY_FAILED.value

    def __init__(self, message: str | None = None):
        code = AgentErrorCode(self.code)
        super().__init__(message or code.value, status_code=_STATUS_BY_CODE[code])


class AgentUnauthorizedError(AgentError):
    code = AgentErrorCode.UNAUTHORIZED.value


class AgentForbiddenError(AgentError):
    code = AgentErrorCode.FORBIDDEN.value


class AgentNotFoundError(AgentError):
    code = AgentErrorCode.NOT_FOUND.value


class ValidationFailedError(AgentError):
    """Model output never became schema-valid within the repair budget."""

    code = AgentErrorCode.VALIDATION_FAILED.value


class InvalidStateError(AgentError):
    code = AgentErrorCode.INVALID_STATE.value


class DraftExpiredError(AgentError):
    code = AgentErrorCode.EXPIRED.value


class TokenMismatchError(AgentError):
    code = AgentErrorCode.TOKEN_MISMATCH.value


class ToolNotAllowedError(AgentError):
    code = AgentErrorCode.TOOL_NOT_ALLOWED.value


class InvalidInputError(AgentError):
    code = AgentErrorCode.INVALID_INPUT.value


class ApplyFailedError(AgentError):
    """The apply transaction was rolled back.

    ``retriable`` tells the caller whether the same confirmation token may
    be used again (draft left ``confirmed``) or a fresh draft is required
    (draft marked ``failed``).
    """

    code = AgentErrorCode.APPLY_FAILED.value

    def __init__(self, message: str | None = None, *, retriable: bool = True):
        super().__init__(message)
        self.retriable = retriable


def format_error_response(
    *,
    error: str,
    detail: object = None,
    request_id: str = "",
    code: str | None = None,
) -> dict:
    """Build a structured error response dict.

    Parameters
    ----------
    error : str
        Short error title (e.g. ``"Internal Server Error"``).
    detail : object
        Human-readable detail string or validation error list.
    request_id : str
        The request ID for tracing.
    code : str | None
        Stable machine-readable error kind, when one applies.

    Returns
    -------
    dict
        ``{"error": ..., "detail": ..., "request_id": ...}`` plus ``code``
        when given.
    """
    body = {
        "error": error,
        "detail": detail if detail is not None else error,
        "request_id": request_id,
    }
    if code:
        body["code"] = code
    return body
