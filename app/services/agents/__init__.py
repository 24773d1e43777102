"""Agent orchestration package -- Draft → Confirm → Apply for LLM-proposed writes."""

from app.services.agents.orchestrator import AgentOrchestrator
from app.services.agents.profiles import PROFILES, AgentProfile, get_profile
from app.services.agents.transport import LLMTransport, ModelTransport
from app.services.agents.types import AgentScope, DraftStatus, SessionContext

__all__ = [
    "AgentOrchestrator",
    "AgentProfile",
    "AgentScope",
    "DraftStatus",
    "LLMTransport",
    "ModelTransport",
    "PROFILES",
    "SessionContext",
    "get_profile",
]
