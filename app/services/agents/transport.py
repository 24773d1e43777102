"""Model transport -- the only way the agent core talks to a model.

The orchestrator depends on the ``ModelTransport`` protocol, never on a
provider SDK; tests inject a scripted fake.
"""

from __future__ import annotations

import logging
from typing import Protocol

from app.clients import llm_client
from app.config import get_provider_api_key, settings

logger = logging.getLogger(__name__)


class ModelTransport(Protocol):
    async def complete(
        self,
        system_prompt: str,
        user_prompt: str,
        *,
        model: str | None = None,
        temperature: float | None = None,
        json_mode: bool = False,
    ) -> str: ...


class LLMTransport:
    """``ModelTransport`` backed by ``app.clients.llm_client``."""

    def __init__(
        self,
        *,
        provider: str | None = None,
        api_key: str | None = None,
        default_model: str | None = None,
        max_tokens: int | None = None,
    ) -> None:
        self.provider = provider or settings.LLM_PROVIDER
        self.api_key = api_key if api_key is not None else get_provider_api_key()
        self.default_model = default_model or settings.LLM_AGENT_MODEL
        self.max_tokens = max_tokens or settings.LLM_MAX_TOKENS

    async def complete(
        self,
        system_prompt: str,
        user_prompt: str,
        *,
        model: str | None = None,
        temperature: float | None = None,
        json_mode: bool = False,
    ) -> str:
        result = await llm_client.chat(
            api_key=self.api_key,
            model=model or self.default_model,
            system_prompt=system_prompt,
            messages=[{"role": "user", "content": user_prompt}],
            max_tokens=self.max_tokens,
            provider=self.provider,
            temperature=temperature,
            json_mode=json_mode,
        )
        usage = result.get("usage", {})
        logger.debug(
            "LLM completion: provider=%s model=%s in=%s out=%s",
            self.provider, model or self.default_model,
            usage.get("input_tokens"), usage.get("output_tokens"),
        )
        return result["text"]
