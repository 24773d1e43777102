"""JSON extraction, validation and repair for model output.

The model sometimes wraps its JSON in markdown fences or surrounds it
with prose.  ``parse_and_validate`` extracts a candidate, parses it and
validates it against a pydantic model; on failure it asks the model to
repair its own output, at most ``max_repairs`` times.
"""

from __future__ import annotations

import json
import logging
import re
from dataclasses import dataclass
from typing import Any, Generic, TypeVar

from pydantic import BaseModel, ValidationError

from app.config import get_repair_model, settings
from app.services.agents.transport import ModelTransport

logger = logging.getLogger(__name__)

T = TypeVar("T", bound=BaseModel)

REPAIR_SYSTEM_PROMPT = (
    "You are a JSON repair assistant. The user will give you an invalid JSON "
    "string and the error. Return ONLY the corrected valid JSON. No "
    "explanations, no fences, no extra text."
)

_FENCE_RE = re.compile(r"```(?:json)?[ \t]*\n?(.*?)\n?```", re.DOTALL | re.IGNORECASE)

_PAIRS = {"{": "}", "[": "]"}


@dataclass
class ParseResult(Generic[T]):
    success: bool
    data: T | None = None
    error: str | None = None
    repair_count: int = 0


def extract_json(raw: str) -> str:
    """Return the most likely JSON substring of *raw*.

    Prefers the first fenced block.  Otherwise scans from the first ``{``
    or ``[`` to its matching closer, tracking depth and skipping brackets
    inside string literals.  Returns the stripped input when no opener is
    found, and the tail from the opener when it is never closed.
    """
    fence = _FENCE_RE.search(raw)
    if fence and fence.group(1).strip():
        return fence.group(1).strip()

    starts = [i for i in (raw.find("{"), raw.find("[")) if i != -1]
    if not starts:
        return raw.strip()
    start = min(starts)
    opener = raw[start]
    closer = _PAIRS[opener]

    depth = 0
    in_string = False
    escaped = False
    for i in range(start, len(raw)):
        ch = raw[i]
        if in_string:
            if escaped:
                escaped = False
            elif ch == "\\":
                escaped = True
            elif ch == '"':
                in_string = False
            continue
        if ch == '"':
            in_string = True
        elif ch == opener:
            depth += 1
        elif ch == closer:
            depth -= 1
            if depth == 0:
                return raw[start : i + 1]
    return raw[start:]


def _describe(exc: Exception) -> str:
    if isinstance(exc, ValidationError):
        return "; ".join(
            f"{'.'.join(str(p) for p in err['loc']) or '<root>'}: {err['msg']}"
            for err in exc.errors()
        )
    return str(exc)


def _parse_once(text: str, schema: type[T], ignore_keys: tuple[str, ...]) -> T:
    value: Any = json.loads(extract_json(text))
    if isinstance(value, dict):
        for key in ignore_keys:
            value.pop(key, None)
    return schema.model_validate(value)


async def parse_and_validate(
    raw: str,
    schema: type[T],
    transport: ModelTransport,
    *,
    max_repairs: int | None = None,
    model: str | None = None,
    ignore_keys: tuple[str, ...] = (),
) -> ParseResult[T]:
    """Parse *raw* into *schema*, repairing through *transport* if needed.

    Never returns data that failed validation.  Issues at most
    *max_repairs* repair calls (default ``AGENT_MAX_REPAIRS``); a failed
    repair call ends the loop with ``success=False``.
    """
    if max_repairs is None:
        max_repairs = settings.AGENT_MAX_REPAIRS
    repair_model = model or get_repair_model()

    current = raw
    repair_count = 0
    while True:
        try:
            return ParseResult(
                success=True,
                data=_parse_once(current, schema, ignore_keys),
                repair_count=repair_count,
            )
        except (json.JSONDecodeError, ValidationError) as exc:
            error = _describe(exc)

        if repair_count >= max_repairs:
            logger.error(
                "Model output still invalid after %d repair(s) for %s: %s",
                repair_count, schema.__name__, error,
            )
            return ParseResult(success=False, error=error, repair_count=repair_count)

        repair_count += 1
        logger.warning(
            "Model output invalid for %s (repair %d/%d): %s",
            schema.__name__, repair_count, max_repairs, error,
        )
        try:
            current = await transport.complete(
                REPAIR_SYSTEM_PROMPT,
                f"Original:\n{current}\n\nError:\n{error}",
                model=repair_model,
                temperature=0,
                json_mode=True,
            )
        except Exception as exc:
            logger.error("Repair call failed: %s", exc)
            return ParseResult(
                success=False,
                error=f"Repair prompt failed: {exc}",
                repair_count=repair_count,
            )
