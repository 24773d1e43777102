"""Agent tool registry -- maps tool names to handlers with schema validation.

The ``Registry`` is a plain class (not a singleton) so tests can create
fresh instances.  ``build_registry()`` in ``tools.py`` registers the
production read and write tools.

Every call goes through ``execute`` with a ``ToolContext`` that names the
active phase and the profile's allow-list for that phase; a read tool
can never run during apply and a write tool can never run during draft.
"""

from __future__ import annotations

import inspect
import logging
import time
from dataclasses import dataclass
from typing import Any, Callable, Literal

from pydantic import BaseModel, ValidationError

from app.errors import InvalidInputError, ToolNotAllowedError
from app.services.agents.types import SessionContext

logger = logging.getLogger(__name__)

ToolKind = Literal["read", "write"]
Phase = Literal["draft", "apply"]

_KIND_FOR_PHASE: dict[str, str] = {"draft": "read", "apply": "write"}


@dataclass(frozen=True)
class ToolContext:
    """Everything a tool handler may use besides its validated params."""

    session: SessionContext
    phase: Phase
    allowed: frozenset[str]
    conn: Any = None  # open transaction connection during apply


@dataclass
class _ToolEntry:
    """Internal record for a registered tool."""

    name: str
    handler: Callable
    request_model: type[BaseModel]
    description: str
    kind: ToolKind


class Registry:
    """Tool registry with phase-gated, schema-validated dispatch.

    Usage::

        reg = Registry()
        reg.register("list_tasks", handler_fn, ListTasksInput, "List tasks ...", "read")
        rows = await reg.execute(ctx, "list_tasks", {"projectId": 7})
    """

    def __init__(self) -> None:
        self._tools: dict[str, _ToolEntry] = {}

    # ------------------------------------------------------------------
    # Registration
    # ------------------------------------------------------------------

    def register(
        self,
        name: str,
        handler: Callable,
        request_model: type[BaseModel],
        description: str,
        kind: ToolKind,
    ) -> None:
        """Register a tool with its handler, request schema and kind.

        Raises ``ValueError`` if a tool with the same name is already
        registered or *kind* is not ``read``/``write``.
        """
        if name in self._tools:
            raise ValueError(f"Tool '{name}' is already registered")
        if kind not in ("read", "write"):
            raise ValueError(f"Tool '{name}' has unknown kind '{kind}'")

        self._tools[name] = _ToolEntry(
            name=name,
            handler=handler,
            request_model=request_model,
            description=description,
            kind=kind,
        )

    # ------------------------------------------------------------------
    # Dispatch
    # ------------------------------------------------------------------

    async def execute(self, ctx: ToolContext, name: str, params: dict[str, Any]) -> Any:
        """Validate *params* and call the tool handler.

        * Name not in ``ctx.allowed``, unknown, or wrong kind for the
          phase → ``ToolNotAllowedError``
        * Invalid params → ``InvalidInputError`` with validation details
        * Handler exceptions propagate unchanged
        """
        entry = self._tools.get(name)
        if name not in ctx.allowed or entry is None:
            raise ToolNotAllowedError(f"Tool '{name}' is not allowed in {ctx.phase} phase")
        if entry.kind != _KIND_FOR_PHASE[ctx.phase]:
            raise ToolNotAllowedError(
                f"Tool '{name}' is a {entry.kind} tool and cannot run in {ctx.phase} phase"
            )

        try:
            validated = entry.request_model.model_validate(params)
        except ValidationError as exc:
            raise InvalidInputError(f"Invalid params for '{name}': {exc}")

        start = time.perf_counter()
        if inspect.iscoroutinefunction(entry.handler):
            result = await entry.handler(validated, ctx)
        else:
            result = entry.handler(validated, ctx)
        logger.debug("tool %s (%s) ran in %dms", name, ctx.phase, _elapsed_ms(start))
        return result

    # ------------------------------------------------------------------
    # Introspection
    # ------------------------------------------------------------------

    def kind_of(self, name: str) -> ToolKind | None:
        entry = self._tools.get(name)
        return entry.kind if entry else None

    def check_allowlists(self, agent_id: str, draft_tools: frozenset[str],
                         apply_tools: frozenset[str]) -> None:
        """Raise ``ValueError`` unless every draft tool is a registered read
        tool and every apply tool a registered write tool."""
        wrong = sorted(
            [n for n in draft_tools if self.kind_of(n) != "read"]
            + [n for n in apply_tools if self.kind_of(n) != "write"]
        )
        if wrong:
            raise ValueError(
                f"Agent '{agent_id}' allow-lists tools that are missing or of the "
                f"wrong kind: {', '.join(wrong)}"
            )


# -----------------------------------------------------------------------
# Helpers
# -----------------------------------------------------------------------


def _elapsed_ms(start: float) -> int:
    return int((time.perf_counter() - start) * 1000)
