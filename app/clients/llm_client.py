"""LLM client -- multi-provider single-completion wrapper (Anthropic + OpenAI)."""

import asyncio
import logging

import httpx

logger = logging.getLogger(__name__)

# ── Shared HTTP client (connection pooling) ─────────────────────────────────

_client: httpx.AsyncClient | None = None


def _get_client() -> httpx.AsyncClient:
    """Return (or create) the shared httpx client for LLM API calls."""
    global _client
    if _client is None:
        _client = httpx.AsyncClient(timeout=120.0)
    return _client


async def close_client() -> None:
    """Close the shared LLM HTTP client.  Called during app shutdown."""
    global _client
    if _client is not None:
        await _client.aclose()
        _client = None

# ---------------------------------------------------------------------------
# Retry configuration
# ---------------------------------------------------------------------------

# Drafts are interactive, so the retry budget is short.
MAX_RETRIES = 3
RETRY_BACKOFF_BASE = 2.0  # seconds -- exponential: 2, 4, 8
_RETRYABLE_STATUS_CODES = frozenset({429, 500, 502, 503, 529})


class LLMAPIError(Exception):
    """Non-2xx response from a provider, with the status code kept."""

    def __init__(self, provider: str, status_code: int, message: str) -> None:
        self.provider = provider
        self.status_code = status_code
        super().__init__(f"{provider} API {status_code}: {message}")


class _RetryableStatus(Exception):
    def __init__(self, error: LLMAPIError, retry_after: str | None) -> None:
        self.error = error
        self.retry_after = retry_after


def _compute_wait(retry_after: str | None, attempt: int) -> float:
    """Return seconds to wait before retrying.

    Prefers the ``retry-after`` header. Falls back to exponential backoff
    capped at 30 seconds.
    """
    if retry_after:
        try:
            return min(float(retry_after), 60.0)
        except (ValueError, TypeError):
            pass
    return min(RETRY_BACKOFF_BASE ** (attempt + 1), 30.0)


async def _retry_on_transient(coro_factory, *, max_retries: int = MAX_RETRIES):
    """Retry a coroutine factory on transient HTTP / timeout errors.

    ``coro_factory`` is a zero-arg callable that returns a new awaitable each
    time (so we can retry fresh).
    """
    for attempt in range(max_retries + 1):
        try:
            return await coro_factory()
        except (httpx.TimeoutException, httpx.TransportError) as exc:
            if attempt >= max_retries:
                raise
            wait = _compute_wait(None, attempt)
            logger.warning(
                "LLM request %s (attempt %d/%d), retrying in %.1fs",
                type(exc).__name__, attempt + 1, max_retries + 1, wait,
            )
            await asyncio.sleep(wait)
        except _RetryableStatus as exc:
            if attempt >= max_retries:
                raise exc.error
            wait = _compute_wait(exc.retry_after, attempt)
            logger.warning(
                "LLM request %d (attempt %d/%d), retrying in %.1fs",
                exc.error.status_code, attempt + 1, max_retries + 1, wait,
            )
            await asyncio.sleep(wait)
    raise RuntimeError("unreachable")  # pragma: no cover


def _raise_for_status(provider: str, response: httpx.Response) -> None:
    if response.status_code < 400:
        return
    try:
        message = response.json().get("error", {}).get("message", response.text)
    except ValueError:
        message = response.text
    error = LLMAPIError(provider, response.status_code, message)
    if response.status_code in _RETRYABLE_STATUS_CODES:
        raise _RetryableStatus(error, response.headers.get("retry-after"))
    raise error

# ---------------------------------------------------------------------------
# Anthropic
# ---------------------------------------------------------------------------

ANTHROPIC_MESSAGES_URL = "https://api.anthropic.com/v1/messages"
ANTHROPIC_API_VERSION = "2023-06-01"


def _anthropic_headers(api_key: str) -> dict:
    return {
        "x-api-key": api_key,
        "anthropic-version": ANTHROPIC_API_VERSION,
        "Content-Type": "application/json",
    }


async def chat_anthropic(
    api_key: str,
    model: str,
    system_prompt: str,
    messages: list[dict],
    max_tokens: int = 2048,
    temperature: float | None = None,
) -> dict:
    """Send a chat request to the Anthropic Messages API.

    Returns ``{"text": ..., "usage": ..., "stop_reason": ...}``.
    """
    body: dict = {
        "model": model,
        "max_tokens": max_tokens,
        "system": system_prompt,
        "messages": messages,
    }
    if temperature is not None:
        body["temperature"] = temperature

    async def _call():
        client = _get_client()
        response = await client.post(
            ANTHROPIC_MESSAGES_URL,
            headers=_anthropic_headers(api_key),
            json=body,
        )
        _raise_for_status("Anthropic", response)

        data = response.json()
        text_parts = [
            block["text"] for block in data.get("content", []) if block.get("type") == "text"
        ]
        if not text_parts:
            raise ValueError("No text block in Anthropic API response")

        usage = data.get("usage", {})
        return {
            "text": "\n".join(text_parts),
            "usage": {
                "input_tokens": usage.get("input_tokens", 0),
                "output_tokens": usage.get("output_tokens", 0),
            },
            "stop_reason": data.get("stop_reason", "end_turn"),
        }

    return await _retry_on_transient(_call)


# ---------------------------------------------------------------------------
# OpenAI
# ---------------------------------------------------------------------------

OPENAI_CHAT_URL = "https://api.openai.com/v1/chat/completions"


def _openai_headers(api_key: str) -> dict:
    return {
        "Authorization": f"Bearer {api_key}",
        "Content-Type": "application/json",
    }


async def chat_openai(
    api_key: str,
    model: str,
    system_prompt: str,
    messages: list[dict],
    max_tokens: int = 2048,
    temperature: float | None = None,
    json_mode: bool = False,
) -> dict:
    """Send a chat request to the OpenAI Chat Completions API.

    *json_mode* sets ``response_format={"type": "json_object"}``.
    """
    oai_messages = [{"role": "system", "content": system_prompt}]
    oai_messages.extend(messages)

    body: dict = {
        "model": model,
        "messages": oai_messages,
        "max_completion_tokens": max_tokens,
    }
    if temperature is not None:
        body["temperature"] = temperature
    if json_mode:
        body["response_format"] = {"type": "json_object"}

    async def _call():
        client = _get_client()
        response = await client.post(
            OPENAI_CHAT_URL,
            headers=_openai_headers(api_key),
            json=body,
        )
        _raise_for_status("OpenAI", response)

        data = response.json()
        choices = data.get("choices", [])
        if not choices:
            raise ValueError("Empty response from OpenAI API")

        content = choices[0].get("message", {}).get("content")
        if not content:
            raise ValueError("No content in OpenAI API response")

        usage = data.get("usage", {})
        return {
            "text": content,
            "usage": {
                "input_tokens": usage.get("prompt_tokens", 0),
                "output_tokens": usage.get("completion_tokens", 0),
            },
        }

    return await _retry_on_transient(_call)


# ---------------------------------------------------------------------------
# Unified entry point
# ---------------------------------------------------------------------------


async def chat(
    api_key: str,
    model: str,
    system_prompt: str,
    messages: list[dict],
    max_tokens: int = 2048,
    provider: str = "anthropic",
    temperature: float | None = None,
    json_mode: bool = False,
) -> dict:
    """Send a chat request to the configured LLM provider.

    Parameters
    ----------
    api_key : str
        API key for the chosen provider.
    model : str
        Model identifier.
    system_prompt : str
        System-level instructions for the model.
    messages : list[dict]
        Conversation as ``[{"role": "user"|"assistant", "content": str}]``.
    max_tokens : int
        Maximum tokens in the response.
    provider : str
        ``"openai"`` or ``"anthropic"`` (default).
    temperature : float | None
        Sampling temperature; provider default when ``None``.
    json_mode : bool
        Ask for a bare JSON object.  Only OpenAI has a native switch;
        Anthropic relies on the prompt.

    Returns
    -------
    dict
        ``{"text": str, "usage": {"input_tokens": int, "output_tokens": int}}``
    """
    if provider == "openai":
        return await chat_openai(
            api_key, model, system_prompt, messages, max_tokens,
            temperature=temperature, json_mode=json_mode,
        )
    return await chat_anthropic(
        api_key, model, system_prompt, messages, max_tokens,
        temperature=temperature,
    )
