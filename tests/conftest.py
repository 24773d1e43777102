"""Shared test fixtures -- reduces boilerplate across test modules.

Provides:
- ``set_test_config`` -- autouse fixture that patches common settings
- ``USER_ID`` / ``OTHER_USER_ID`` / ``PROJECT_ID`` / ``MOCK_USER`` -- reusable IDs
- ``auth_header`` -- helper to generate JWT auth headers
- ``test_client`` -- pre-built TestClient against the app
"""

import os

os.environ.setdefault("TESTING", "1")

import pytest
from fastapi.testclient import TestClient

from app.auth import create_token
from app.main import app


def pytest_configure(config):
    """Register custom markers.

    Tests that need a real Postgres should be decorated with
    ``@pytest.mark.integration`` and are skipped with ``-m 'not integration'``.
    """
    config.addinivalue_line(
        "markers",
        "integration: tests requiring external services (database, LLM provider)",
    )


# ---------------------------------------------------------------------------
# Canonical test identifiers (used by most test modules)
# ---------------------------------------------------------------------------

USER_ID = "user_2a7f9c"
OTHER_USER_ID = "user_b81e44"
PROJECT_ID = 7

MOCK_USER: dict = {
    "id": USER_ID,
    "name": "Ada Lovelace",
    "email": "ada@example.com",
    "image": None,
    "active_organization_id": 3,
}

# ---------------------------------------------------------------------------
# Environment patching
# ---------------------------------------------------------------------------

_SETTINGS_PATCHES: dict[str, object] = {
    "app.config.settings.JWT_SECRET": "test-secret-key-for-unit-tests",
    "app.config.settings.FRONTEND_URL": "http://localhost:3000",
    "app.config.settings.ANTHROPIC_API_KEY": "test-key",
    "app.config.settings.LLM_PROVIDER": "anthropic",
    "app.config.settings.LLM_AGENT_MODEL": "test-model",
    "app.config.settings.LLM_REPAIR_MODEL": "",
    "app.config.settings.AGENT_MAX_REPAIRS": 2,
    "app.config.settings.AGENT_DRAFT_TTL_MINUTES": 15,
}


@pytest.fixture(autouse=True)
def set_test_config(monkeypatch):
    """Patch common application settings for a safe test environment.

    This is ``autouse=True`` so every test automatically gets a
    deterministic, non-production configuration.
    """
    for target, value in _SETTINGS_PATCHES.items():
        monkeypatch.setattr(target, value)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def auth_header(user_id: str = USER_ID, email: str = "ada@example.com") -> dict:
    """Return an ``Authorization`` header dict with a valid JWT."""
    token = create_token(user_id, email)
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def test_client() -> TestClient:
    """A fresh ``TestClient`` instance wrapping the FastAPI app."""
    return TestClient(app)
