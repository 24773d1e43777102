"""Agent orchestrator -- the Draft → Confirm → Apply state machine.

* ``draft``   builds a context pack, asks the model for a plan, repairs and
              validates it, hashes it and persists a Draft.  Never writes
              domain data.
* ``confirm`` returns a summary and a confirmation token bound to the
              plan hash, and moves the Draft to ``confirmed``.
* ``apply``   verifies the token against a freshly recomputed hash, then
              runs every write of the plan in ONE transaction.  Either the
              whole plan commits and the Draft becomes ``applied``, or
              nothing commits.

Apply failures are split in two.  Infrastructure errors (database,
network) roll back and leave the Draft ``confirmed`` so the same token
can be retried.  Domain refusals from a tool (entity gone, access lost,
bad input) and database constraint violations roll back and mark the
Draft ``failed``; a new draft is needed.
"""

from __future__ import annotations

import logging
import time
import uuid
from datetime import datetime, timedelta, timezone
from typing import Any, Callable

import asyncpg
from pydantic import ValidationError

from app.config import settings
from app.errors import (
    AgentError,
    AgentForbiddenError,
    AgentNotFoundError,
    ApplyFailedError,
    DraftExpiredError,
    InvalidInputError,
    InvalidStateError,
    TokenMismatchError,
    ToolNotAllowedError,
    ValidationFailedError,
)
from app.repos import draft_repo
from app.repos.db import transaction as db_transaction
from app.services.agents import plans
from app.services.agents.context import build_context
from app.services.agents.json_repair import parse_and_validate
from app.services.agents.plan_hash import compute_plan_hash
from app.services.agents.profiles import AgentProfile, get_profile
from app.services.agents.prompts import (
    PROMPT_VERSION,
    render_system_prompt,
    render_user_prompt,
)
from app.services.agents.registry import Registry, ToolContext
from app.services.agents.tokens import mint_confirmation_token, verify_confirmation_token
from app.services.agents.tools import build_registry, require_project_access
from app.services.agents.transport import ModelTransport
from app.services.agents.types import (
    AgentScope,
    DraftStatus,
    SessionContext,
    check_transition,
    require_session,
)

logger = logging.getLogger(__name__)

# Tool refusals that will not go away on retry.
_NON_RETRIABLE = (
    AgentNotFoundError,
    AgentForbiddenError,
    InvalidStateError,
    InvalidInputError,
    ToolNotAllowedError,
)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def new_draft_id() -> str:
    return f"draft_{uuid.uuid4().hex}"


class AgentOrchestrator:
    """Coordinates context, prompt, model, repair and persistence.

    *transport* is the only model dependency.  *registry*, *transaction*
    and *clock* default to the production implementations and exist so
    tests can swap them.
    """

    def __init__(
        self,
        transport: ModelTransport,
        *,
        registry: Registry | None = None,
        transaction: Callable[[], Any] | None = None,
        clock: Callable[[], datetime] = _utcnow,
        max_repairs: int | None = None,
        ttl_minutes: int | None = None,
    ) -> None:
        self._transport = transport
        self._registry = registry or build_registry()
        self._transaction = transaction or db_transaction
        self._clock = clock
        self._max_repairs = settings.AGENT_MAX_REPAIRS if max_repairs is None else max_repairs
        self._ttl = timedelta(minutes=ttl_minutes or settings.AGENT_DRAFT_TTL_MINUTES)

    # ------------------------------------------------------------------
    # Draft
    # ------------------------------------------------------------------

    async def draft(
        self,
        session: SessionContext | None,
        agent_id: str,
        message: str,
        scope: dict | None = None,
        handoff_context: dict | None = None,
    ) -> dict:
        """Produce and persist a Draft.  Returns ``{draftId, plan, expiresAt}``."""
        t0 = time.perf_counter()
        session = require_session(session)
        profile = get_profile(agent_id)
        agent_scope = AgentScope.from_input(scope)

        context = await build_context(
            self._registry, profile, session, agent_scope, handoff_context
        )
        raw = await self._transport.complete(
            render_system_prompt(profile.id, context),
            render_user_prompt(message),
            model=settings.LLM_AGENT_MODEL,
            temperature=settings.LLM_AGENT_TEMPERATURE,
            json_mode=True,
        )
        result = await parse_and_validate(
            raw,
            profile.output_schema,
            self._transport,
            max_repairs=self._max_repairs,
            ignore_keys=("planHash",),
        )
        if not result.success:
            logger.error(
                "Draft for %s failed validation after %d repair(s): %s",
                profile.id, result.repair_count, result.error,
            )
            raise ValidationFailedError(
                f"Model output did not match the {profile.name} plan schema: {result.error}"
            )

        plan_model = plans.check_plan(result.data, agent_scope, context)
        plan = plan_model.model_dump(mode="json")
        plan_hash = compute_plan_hash(plan)
        draft_id = new_draft_id()
        expires_at = self._clock() + self._ttl

        await draft_repo.create_draft(
            draft_id,
            profile.id,
            session.user_id,
            agent_scope.to_dict(),
            plan,
            plan_hash,
            expires_at,
        )

        logger.info(
            "METRIC | type=agent_draft | agent=%s | draft=%s | prompt=%s | repairs=%d | wall_ms=%.0f",
            profile.id, draft_id, PROMPT_VERSION, result.repair_count,
            (time.perf_counter() - t0) * 1000,
        )
        return {
            "draftId": draft_id,
            "plan": {**plan, "planHash": plan_hash},
            "expiresAt": expires_at.isoformat(),
        }

    # ------------------------------------------------------------------
    # Confirm
    # ------------------------------------------------------------------

    async def confirm(
        self, session: SessionContext | None, agent_id: str, draft_id: str
    ) -> dict:
        """Mint a confirmation token.  Returns ``{confirmationToken, summary, expiresAt}``."""
        t0 = time.perf_counter()
        session = require_session(session)
        profile = get_profile(agent_id)
        draft, status = await self._load(session, profile, draft_id)
        if not profile.has_apply_phase:
            raise InvalidStateError(f"Agent '{profile.id}' has no apply phase")
        check_transition(status, DraftStatus.CONFIRMED)

        plan_model = self._plan_model(profile, draft)
        summary = plans.summarize(plan_model)
        token = mint_confirmation_token(
            draft_id, profile.id, draft["plan_hash"], draft["expires_at"]
        )

        updated = await draft_repo.transition_status(
            draft_id, DraftStatus.DRAFT.value, DraftStatus.CONFIRMED.value
        )
        if updated is None:
            raise InvalidStateError("Draft changed state while confirming")

        logger.info(
            "METRIC | type=agent_confirm | agent=%s | draft=%s | summary=%s | wall_ms=%.0f",
            profile.id, draft_id, summary, (time.perf_counter() - t0) * 1000,
        )
        return {
            "confirmationToken": token,
            "summary": summary,
            "expiresAt": draft["expires_at"].isoformat(),
        }

    # ------------------------------------------------------------------
    # Apply
    # ------------------------------------------------------------------

    async def apply(
        self,
        session: SessionContext | None,
        agent_id: str,
        draft_id: str,
        confirmation_token: str,
    ) -> dict:
        """Execute a confirmed plan.  Returns ``{applied: True, results}``."""
        t0 = time.perf_counter()
        session = require_session(session)
        profile = get_profile(agent_id)
        draft, status = await self._load(session, profile, draft_id)
        if status is not DraftStatus.CONFIRMED:
            check_transition(status, DraftStatus.APPLIED)

        current_hash = compute_plan_hash(draft["plan"])
        if current_hash != draft["plan_hash"]:
            logger.error("Stored plan of draft %s no longer matches its hash", draft_id)
            raise TokenMismatchError("Stored plan does not match its recorded hash")
        verify_confirmation_token(
            confirmation_token, draft_id=draft_id, agent_id=profile.id, plan_hash=current_hash
        )

        plan_model = self._plan_model(profile, draft)
        results = plans.empty_results(plan_model)
        calls = plans.apply_calls(plan_model)
        lost_race = False
        try:
            async with self._transaction() as conn:
                project_id = plans.plan_project_id(plan_model)
                if project_id is not None:
                    await require_project_access(
                        project_id, session.user_id, write=True, conn=conn
                    )
                ctx = ToolContext(
                    session=session, phase="apply", allowed=profile.apply_tools, conn=conn
                )
                for call in calls:
                    output = await self._registry.execute(ctx, call.tool, call.params)
                    plans.record_result(results, call, output)

                claimed = await draft_repo.transition_status(
                    draft_id,
                    DraftStatus.CONFIRMED.value,
                    DraftStatus.APPLIED.value,
                    conn=conn,
                    results=results,
                )
                if claimed is None:
                    lost_race = True
                    raise InvalidStateError("Draft was already applied or is no longer confirmed")
        except AgentError as exc:
            if lost_race or not isinstance(exc, _NON_RETRIABLE):
                raise
            await self._mark_failed(draft_id, exc)
            raise
        except asyncpg.IntegrityConstraintViolationError as exc:
            # the same plan hits the same constraint on every retry
            logger.error("Apply of draft %s violated a constraint: %s", draft_id, exc)
            failure = ApplyFailedError(
                f"Apply was rolled back: {exc.__class__.__name__}; create a new draft",
                retriable=False,
            )
            await self._mark_failed(draft_id, failure)
            raise failure from exc
        except Exception as exc:
            logger.exception("Apply of draft %s rolled back", draft_id)
            raise ApplyFailedError(
                "Apply failed and was rolled back; retry with the same token",
                retriable=True,
            ) from exc

        logger.info(
            "METRIC | type=agent_apply | agent=%s | draft=%s | calls=%d | wall_ms=%.0f",
            profile.id, draft_id, len(calls), (time.perf_counter() - t0) * 1000,
        )
        return {"applied": True, "results": results}

    # ------------------------------------------------------------------
    # Read
    # ------------------------------------------------------------------

    async def get_draft(self, session: SessionContext | None, draft_id: str) -> dict:
        """The caller's own draft, for display.  Other users' drafts are NOT_FOUND."""
        session = require_session(session)
        draft = await draft_repo.get_draft(draft_id)
        if draft is None or draft["user_id"] != session.user_id:
            raise AgentNotFoundError(f"Draft '{draft_id}' not found")
        return {
            "draftId": draft["id"],
            "agentId": draft["agent_id"],
            "status": draft["status"],
            "scope": draft["scope"],
            "plan": {**draft["plan"], "planHash": draft["plan_hash"]},
            "createdAt": _iso(draft.get("created_at")),
            "expiresAt": _iso(draft["expires_at"]),
            "results": draft.get("results"),
            "failureReason": draft.get("failure_reason"),
        }

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    async def _load(
        self, session: SessionContext, profile: AgentProfile, draft_id: str
    ) -> tuple[dict, DraftStatus]:
        """Load the caller's draft for *profile*, expiring it when its window
        has passed."""
        draft = await draft_repo.get_draft(draft_id)
        if (
            draft is None
            or draft["user_id"] != session.user_id
            or draft["agent_id"] != profile.id
        ):
            raise AgentNotFoundError(f"Draft '{draft_id}' not found")

        status = DraftStatus(draft["status"])
        if status is DraftStatus.EXPIRED:
            raise DraftExpiredError("Draft has expired; create a new draft")
        if not status.is_terminal and self._clock() >= draft["expires_at"]:
            await draft_repo.transition_status(
                draft_id, status.value, DraftStatus.EXPIRED.value
            )
            logger.info("Draft %s expired in status %s", draft_id, status.value)
            raise DraftExpiredError("Draft has expired; create a new draft")
        return draft, status

    @staticmethod
    def _plan_model(profile: AgentProfile, draft: dict):
        body = {k: v for k, v in draft["plan"].items() if k != "planHash"}
        try:
            return profile.output_schema.model_validate(body)
        except ValidationError as exc:
            raise ValidationFailedError(f"Stored plan is no longer valid: {exc}")

    async def _mark_failed(self, draft_id: str, exc: AgentError) -> None:
        reason = f"{exc.code}: {exc}"
        updated = await draft_repo.transition_status(
            draft_id,
            DraftStatus.CONFIRMED.value,
            DraftStatus.FAILED.value,
            failure_reason=reason[:500],
        )
        if updated is not None:
            logger.error("Draft %s marked failed: %s", draft_id, reason)


def _iso(value: datetime | None) -> str | None:
    return value.isoformat() if value is not None else None
