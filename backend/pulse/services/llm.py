from __future__ import annotations

import logging
from dataclasses import dataclass
from functools import lru_cache

import httpx
import openai
from openai import AsyncOpenAI

from ..core.config import get_settings
from .gateway import RateLimitedGateway, get_llm_gateway

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class GenerationResult:
    ok: bool
    text: str = ""
    error: str | None = None
    model: str | None = None


def build_llm_client(http_client: httpx.AsyncClient | None = None) -> AsyncOpenAI | None:
    """
    Factory for the OpenAI-compatible async client.

    - If OPENROUTER_API_KEY is set, route requests via OpenRouter.
    - Otherwise use the standard OpenAI API with OPENAI_API_KEY.
    - Returns None when no key is configured; callers degrade to fallbacks.

    SDK-level retries are disabled: retry policy lives in the gateway.
    """
    settings = get_settings()
    common = {
        "max_retries": 0,
        "timeout": settings.LLM_REQUEST_TIMEOUT_SECONDS,
        "http_client": http_client,
    }

    if settings.OPENROUTER_API_KEY:
        return AsyncOpenAI(
            base_url="https://openrouter.ai/api/v1",
            api_key=settings.OPENROUTER_API_KEY.strip(),
            default_headers={
                "HTTP-Referer": settings.FRONTEND_ORIGIN or settings.APP_BASE_URL,
                "X-Title": "Pulse Social Reports",
            },
            **common,
        )

    if settings.OPENAI_API_KEY:
        return AsyncOpenAI(api_key=settings.OPENAI_API_KEY.strip(), **common)

    return None


class GenerativeTextClient:
    """
    `generate(prompt, model, ...) -> GenerationResult` over chat completions.

    Every request goes through the shared RateLimitedGateway. Provider and
    transport failures are reported as `ok=False`, never raised.
    """

    def __init__(
        self,
        client: AsyncOpenAI,
        gateway: RateLimitedGateway | None = None,
    ) -> None:
        self._client = client
        self._gateway = gateway or get_llm_gateway()

    async def _send(
        self,
        prompt: str,
        model: str,
        max_tokens: int,
        temperature: float,
    ) -> httpx.Response:
        try:
            raw = await self._client.chat.completions.with_raw_response.create(
                model=model,
                messages=[{"role": "user", "content": prompt}],
                max_tokens=max_tokens,
                temperature=temperature,
            )
        except openai.APIStatusError as e:
            # Non-2xx: hand the response to the gateway so it can decide on retry
            return e.response
        return raw.http_response

    async def generate(
        self,
        prompt: str,
        model: str,
        *,
        max_tokens: int = 2048,
        temperature: float = 0.3,
    ) -> GenerationResult:
        try:
            response = await self._gateway.call(
                lambda: self._send(prompt, model, max_tokens, temperature)
            )
        except (openai.APIError, httpx.HTTPError) as e:
            logger.warning("LLM request failed: %s", e, extra={"step": "llm_generate"})
            return GenerationResult(ok=False, error=str(e), model=model)

        if response.status_code >= 400:
            body = response.text[:500]
            logger.warning(
                "LLM provider error %s: %s",
                response.status_code,
                body,
                extra={"step": "llm_generate"},
            )
            return GenerationResult(
                ok=False,
                error=f"HTTP {response.status_code}: {body}",
                model=model,
            )

        try:
            data = response.json()
            text = data["choices"][0]["message"]["content"] or ""
        except (ValueError, KeyError, IndexError, TypeError) as e:
            logger.warning(
                "Unexpected LLM response shape: %s", e, extra={"step": "llm_generate"}
            )
            return GenerationResult(ok=False, error=f"malformed response: {e}", model=model)

        return GenerationResult(ok=True, text=text, model=data.get("model") or model)


@lru_cache(maxsize=1)
def get_text_client() -> GenerativeTextClient | None:
    """Shared client instance, or None when no LLM key is configured."""
    client = build_llm_client()
    if client is None:
        logger.warning("No LLM API key configured; AI stages will use fallbacks")
        return None
    return GenerativeTextClient(client)
