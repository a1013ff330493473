"""
smartmatch/llm_client.py — Shared client for the text-generation service.

Every LLM call in the project flows through this module. Any
OpenAI-compatible chat-completions endpoint works; the base URL, key and
model come from an :class:`~core.models.LLMConfig`.

No retries here: a failed call surfaces as a typed ``GenerationError``
subclass and the caller decides what to do.
"""

from __future__ import annotations

import asyncio
import json
import logging
import re
from typing import Any
from urllib.parse import urlparse

import openai
from openai import AsyncOpenAI

from core.config import CHECK_TIMEOUT_S, GENERATION_TIMEOUT_S
from core.errors import (
    GenerationAuthError,
    GenerationError,
    GenerationNetworkError,
    GenerationTimeout,
    NotConfigured,
)
from core.models import LLMConfig, ServiceCheckResult

logger = logging.getLogger(__name__)


# ── Client construction ─────────────────────────────────────────────────────


def _make_client(config: LLMConfig, timeout: float) -> AsyncOpenAI:
    return AsyncOpenAI(
        base_url=config.base_url,
        api_key=config.api_key,
        timeout=timeout,
        max_retries=0,
    )


# ── JSON extraction helpers ─────────────────────────────────────────────────

_FENCE_RE = re.compile(r"```(?:json)?[ \t]*\n?", re.IGNORECASE)


def strip_code_fences(text: str) -> str:
    """Remove every ```json / ``` marker that LLMs wrap around their output."""
    return _FENCE_RE.sub("", text or "").strip()


def extract_json(text: str) -> Any:
    """Decode a JSON value from *text*, tolerating markdown code fences.

    1. Try direct ``json.loads`` on the stripped text.
    2. Try after stripping markdown code fences.
    3. Raise ``json.JSONDecodeError`` if both fail.

    JSON embedded in surrounding prose is not dug out: a reply such as
    ``Sorry ... {"error": "refused"}`` is a failure, not an empty result.
    """
    text = (text or "").strip()

    # Attempt 1: direct parse
    try:
        return json.loads(text)
    except json.JSONDecodeError:
        pass

    # Attempt 2: strip markdown fences
    cleaned = strip_code_fences(text)
    try:
        return json.loads(cleaned)
    except json.JSONDecodeError:
        logger.warning("No valid JSON found in LLM response. First 300 chars: %s", text[:300])
        raise


# ── Core LLM call (system + user → text) ────────────────────────────────────


async def call_llm(
    config: LLMConfig,
    system: str,
    user: str,
    *,
    timeout: float = GENERATION_TIMEOUT_S,
    temperature: float | None = None,
) -> str:
    """Send one chat completion and return the assistant's text content.

    Raises
    ------
    NotConfigured
        ``config.api_key`` is empty. No request is made.
    GenerationTimeout, GenerationAuthError, GenerationNetworkError, GenerationError
        The request failed.
    """
    if not config.api_key.strip():
        raise NotConfigured("LLM API key is not configured")

    kwargs: dict[str, Any] = {
        "model": config.model_name,
        "messages": [
            {"role": "system", "content": system},
            {"role": "user", "content": user},
        ],
    }
    if temperature is not None:
        kwargs["temperature"] = temperature

    client = _make_client(config, timeout)
    try:
        response = await asyncio.wait_for(client.chat.completions.create(**kwargs), timeout)
    except (asyncio.TimeoutError, openai.APITimeoutError) as exc:
        raise GenerationTimeout(f"LLM request timed out after {timeout:.0f}s") from exc
    except (openai.AuthenticationError, openai.PermissionDeniedError) as exc:
        raise GenerationAuthError(f"LLM authentication failed: {exc}") from exc
    except openai.APIConnectionError as exc:
        raise GenerationNetworkError(f"LLM endpoint unreachable: {exc}") from exc
    except openai.APIError as exc:
        raise GenerationError(f"LLM request failed: {exc}") from exc
    finally:
        await client.close()

    if not response.choices:
        logger.warning("LLM returned no choices")
        return ""
    content = response.choices[0].message.content or ""
    if not content.strip():
        logger.warning("LLM returned empty response. finish_reason=%s",
                       response.choices[0].finish_reason)
    return content


# ── Connectivity check ──────────────────────────────────────────────────────


def _fail(error_type: str, message: str) -> ServiceCheckResult:
    return ServiceCheckResult(success=False, error_type=error_type, message=message)


async def check_service(
    config: LLMConfig,
    *,
    timeout: float = CHECK_TIMEOUT_S,
) -> ServiceCheckResult:
    """
    Verify that *config* can reach a working chat-completions endpoint.

    Local checks first (URL shape, key, model), then a one-token completion.
    Never raises; every failure is reported in the returned result.
    """
    parsed = urlparse(config.base_url or "")
    if parsed.scheme not in ("http", "https") or not parsed.netloc:
        return _fail("invalid_url", f"Invalid API base URL: {config.base_url!r}")
    if not config.api_key.strip():
        return _fail("auth", "API key must not be empty")
    if not config.model_name.strip():
        return _fail("unknown", "Model name must not be empty")

    client = _make_client(config, timeout)
    try:
        await asyncio.wait_for(
            client.chat.completions.create(
                model=config.model_name,
                messages=[{"role": "user", "content": "test"}],
                max_tokens=1,
            ),
            timeout,
        )
    except (asyncio.TimeoutError, openai.APITimeoutError):
        return _fail("timeout", "Connection timed out; check the network or base URL")
    except (openai.AuthenticationError, openai.PermissionDeniedError):
        return _fail("auth", "Authentication failed; check the API key")
    except openai.NotFoundError:
        return _fail("not_found", f"Model {config.model_name!r} not found")
    except openai.APIConnectionError:
        return _fail("network", "Network error; check that the base URL is reachable")
    except openai.APIStatusError as exc:
        if exc.status_code >= 500:
            return _fail("server", "Server error; try again later")
        return _fail("unknown", str(exc))
    except openai.APIError as exc:
        return _fail("unknown", f"Unknown error: {exc}")
    finally:
        await client.close()

    logger.info("LLM service check passed (base_url=%s model=%s)", config.base_url, config.model_name)
    return ServiceCheckResult(success=True)
