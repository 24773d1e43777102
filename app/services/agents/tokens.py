"""Confirmation tokens -- signed, hash-bound credentials for one apply call.

A token is a JWT signed with ``JWT_SECRET`` under its own audience, so a
session token can never be replayed as a confirmation token or vice
versa.  It binds the draft id, the agent and the plan hash; its expiry
is the draft's own ``expires_at``.
"""

from __future__ import annotations

import uuid
from datetime import datetime, timezone

import jwt

from app.auth import ALGORITHM
from app.config import settings
from app.errors import TokenMismatchError

CONFIRM_AUDIENCE = "agent-apply"


def mint_confirmation_token(
    draft_id: str, agent_id: str, plan_hash: str, expires_at: datetime
) -> str:
    """Mint a token authorizing apply of *draft_id* with plan *plan_hash*."""
    payload = {
        "sub": draft_id,
        "agent": agent_id,
        "plan_hash": plan_hash,
        "aud": CONFIRM_AUDIENCE,
        "iat": datetime.now(timezone.utc),
        "exp": expires_at,
        "jti": uuid.uuid4().hex,
    }
    return jwt.encode(payload, settings.JWT_SECRET, algorithm=ALGORITHM)


def verify_confirmation_token(
    token: str, *, draft_id: str, agent_id: str, plan_hash: str
) -> dict:
    """Decode *token* and check it is bound to this draft and plan.

    Any failure (bad signature, expired signature, wrong draft, wrong
    agent, wrong hash) raises ``TOKEN_MISMATCH``.  Draft expiry itself is
    checked by the caller before this runs, so it surfaces as ``EXPIRED``.
    """
    try:
        claims = jwt.decode(
            token,
            settings.JWT_SECRET,
            algorithms=[ALGORITHM],
            audience=CONFIRM_AUDIENCE,
            options={"require": ["sub", "agent", "plan_hash", "exp", "aud"]},
        )
    except jwt.PyJWTError as exc:
        raise TokenMismatchError(f"Invalid confirmation token: {exc}")

    if claims["sub"] != draft_id or claims["agent"] != agent_id:
        raise TokenMismatchError("Confirmation token was issued for a different draft")
    if claims["plan_hash"] != plan_hash:
        raise TokenMismatchError("Confirmation token does not match the current plan")
    return claims
