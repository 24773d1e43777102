"""Agents router -- Draft → Confirm → Apply endpoints for every agent family."""

from typing import Any

from fastapi import APIRouter, Depends
from pydantic import BaseModel, ConfigDict, Field

from app.api.deps import get_orchestrator, get_session
from app.services.agents import PROFILES, AgentOrchestrator, SessionContext, get_profile

router = APIRouter(prefix="/agents", tags=["agents"])


# ---------------------------------------------------------------------------
# Request models
# ---------------------------------------------------------------------------


class DraftRequest(BaseModel):
    """Request body for creating a draft."""

    model_config = ConfigDict(extra="forbid")

    message: str = Field(..., min_length=1, max_length=20_000, description="Natural-language request")
    scope: dict[str, Any] | None = Field(
        None, description="Optional {orgId, projectId}; projectId may be an int or numeric string"
    )
    handoffContext: dict[str, Any] | None = Field(
        None, description="Context handed over by another agent or the UI"
    )


class ConfirmRequest(BaseModel):
    """Request body for confirming a draft."""

    model_config = ConfigDict(extra="forbid")

    draftId: str = Field(..., min_length=1)


class ApplyRequest(BaseModel):
    """Request body for applying a confirmed draft."""

    model_config = ConfigDict(extra="forbid")

    draftId: str = Field(..., min_length=1)
    confirmationToken: str = Field(..., min_length=1)


# ---------------------------------------------------------------------------
# Profiles
# ---------------------------------------------------------------------------


@router.get("")
async def list_agents(session: SessionContext = Depends(get_session)) -> dict:
    """List agent profiles and the tools each phase may use."""
    return {
        "items": [
            {
                "id": p.id,
                "name": p.name,
                "description": p.description,
                "hasApplyPhase": p.has_apply_phase,
                "draftTools": sorted(p.draft_tools),
                "applyTools": sorted(p.apply_tools),
            }
            for p in PROFILES.values()
        ]
    }


@router.get("/drafts/{draft_id}")
async def get_draft(
    draft_id: str,
    session: SessionContext = Depends(get_session),
    orchestrator: AgentOrchestrator = Depends(get_orchestrator),
) -> dict:
    """Return one of the caller's drafts with its status and plan."""
    return await orchestrator.get_draft(session, draft_id)


# ---------------------------------------------------------------------------
# Draft / Confirm / Apply
# ---------------------------------------------------------------------------


@router.post("/{agent_id}/draft")
async def create_draft(
    agent_id: str,
    body: DraftRequest,
    session: SessionContext = Depends(get_session),
    orchestrator: AgentOrchestrator = Depends(get_orchestrator),
) -> dict:
    """Ask the agent for a plan.  Nothing is written to domain data."""
    get_profile(agent_id)
    return await orchestrator.draft(
        session, agent_id, body.message, body.scope, body.handoffContext
    )


@router.post("/{agent_id}/confirm")
async def confirm_draft(
    agent_id: str,
    body: ConfirmRequest,
    session: SessionContext = Depends(get_session),
    orchestrator: AgentOrchestrator = Depends(get_orchestrator),
) -> dict:
    """Approve a draft; returns the summary and a confirmation token."""
    return await orchestrator.confirm(session, agent_id, body.draftId)


@router.post("/{agent_id}/apply")
async def apply_draft(
    agent_id: str,
    body: ApplyRequest,
    session: SessionContext = Depends(get_session),
    orchestrator: AgentOrchestrator = Depends(get_orchestrator),
) -> dict:
    """Execute a confirmed draft in one transaction."""
    return await orchestrator.apply(session, agent_id, body.draftId, body.confirmationToken)
