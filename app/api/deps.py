"""Request dependencies -- JWT auth, session context and the shared orchestrator."""

from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from app.auth import decode_token
from app.repos.user_repo import get_user_by_id
from app.services.agents import AgentOrchestrator, LLMTransport, SessionContext

import jwt as pyjwt

_bearer_scheme = HTTPBearer(auto_error=False)

_orchestrator: AgentOrchestrator | None = None


async def get_current_user(
    credentials: HTTPAuthorizationCredentials | None = Depends(_bearer_scheme),
) -> dict:
    """Extract and validate the current user from the JWT bearer token.

    Returns the user dict from the database.
    Raises 401 if token is missing, invalid, expired, or user not found.
    """
    if credentials is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Missing authentication token",
        )

    try:
        payload = decode_token(credentials.credentials)
    except pyjwt.ExpiredSignatureError:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Token has expired",
        )
    except pyjwt.PyJWTError:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid authentication token",
        )

    user_id = payload.get("sub")
    if not user_id:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid token payload",
        )

    user = await get_user_by_id(user_id)
    if user is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="User not found",
        )

    return user


async def get_session(user: dict = Depends(get_current_user)) -> SessionContext:
    """Project the authenticated user onto the agent core's session type."""
    return SessionContext(
        user_id=user["id"],
        active_organization_id=user.get("active_organization_id"),
    )


def get_orchestrator() -> AgentOrchestrator:
    """Process-wide orchestrator backed by the configured LLM provider."""
    global _orchestrator
    if _orchestrator is None:
        _orchestrator = AgentOrchestrator(LLMTransport())
    return _orchestrator
