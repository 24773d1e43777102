"""Application configuration loaded from environment variables.

Uses ``pydantic-settings`` for automatic env-var loading, type coercion,
and ``.env`` file support.  Validates required settings on import -- fails
fast if critical vars are missing outside of tests.
"""

VERSION = "0.1.0"

import sys

from pydantic import Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


# ---------------------------------------------------------------------------
# Required var names -- checked after instantiation (not during), so tests
# that leave them blank still work.
# ---------------------------------------------------------------------------
_REQUIRED_VARS: list[str] = [
    "DATABASE_URL",
    "JWT_SECRET",
]


class Settings(BaseSettings):
    """Application settings -- sourced from environment / ``.env`` file.

    Required vars (must be set in production, may be blank in test):
      DATABASE_URL, JWT_SECRET
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # -- required in production (default empty so tests don't fail) --
    DATABASE_URL: str = ""
    JWT_SECRET: str = ""

    # -- optional with sensible defaults --
    FRONTEND_URL: str = "http://localhost:3000"
    DEBUG: bool = True
    LOG_LEVEL: str = "INFO"
    LOG_FILE: str = ""

    # -------------------------------------------------------------------------
    # Model transport.  Every agent draft goes through one provider; the
    # repair loop may use a cheaper model (LLM_REPAIR_MODEL) and always runs
    # at temperature 0.
    # -------------------------------------------------------------------------
    LLM_PROVIDER: str = "anthropic"  # "anthropic" | "openai"
    ANTHROPIC_API_KEY: str = ""
    OPENAI_API_KEY: str = ""
    LLM_AGENT_MODEL: str = "claude-haiku-4-5"
    LLM_REPAIR_MODEL: str = ""
    LLM_AGENT_TEMPERATURE: float = Field(default=0.2, ge=0.0, le=1.0)
    LLM_MAX_TOKENS: int = Field(default=4096, ge=256)

    # -------------------------------------------------------------------------
    # Draft → Confirm → Apply
    # -------------------------------------------------------------------------
    AGENT_MAX_REPAIRS: int = Field(default=2, ge=0, le=5)
    AGENT_DRAFT_TTL_MINUTES: int = Field(default=15, ge=1)

    @model_validator(mode="after")
    def _normalise_provider(self) -> "Settings":
        """Lower-case the provider and fall back to Anthropic on unknown values."""
        provider = self.LLM_PROVIDER.strip().lower()
        self.LLM_PROVIDER = provider if provider in ("anthropic", "openai") else "anthropic"
        return self


settings = Settings()


def get_repair_model() -> str:
    """Return the model used for JSON repair calls.

    Falls back to LLM_AGENT_MODEL when LLM_REPAIR_MODEL is blank.
    """
    return settings.LLM_REPAIR_MODEL or settings.LLM_AGENT_MODEL


def get_provider_api_key() -> str:
    """Return the API key for the configured provider."""
    if settings.LLM_PROVIDER == "openai":
        return settings.OPENAI_API_KEY
    return settings.ANTHROPIC_API_KEY


# Validate at import time -- but only when NOT running under pytest.
if "pytest" not in sys.modules:
    _missing = [v for v in _REQUIRED_VARS if not getattr(settings, v)]
    if _missing:
        print(
            f"[config] FATAL: missing required environment variables: "
            f"{', '.join(_missing)}",
            file=sys.stderr,
        )
        sys.exit(1)
