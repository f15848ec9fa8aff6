"""OpenAI-compatible chat completions adapter (aiohttp).

Works against any endpoint speaking the `/chat/completions` protocol
(OpenAI, Azure-style gateways, local servers).
"""

from __future__ import annotations

import asyncio

import aiohttp

from ..domain.errors import ExtractionError, NetworkTimeoutError, RateLimitExceededError, UpstreamHTTPError
from ..observability.logger import get_logger
from .runtime import ChatCompletion, LLMRequest, LLMRuntime, TextContent, normalize_content

logger = get_logger(__name__)


class OpenAIAdapter(LLMRuntime):
    def __init__(self, *, api_key: str | None, base_url: str = "https://api.openai.com/v1"):
        """
        Args:
            api_key: Bearer token for the endpoint.
            base_url: Base URL of an OpenAI-compatible API.
        """
        if not api_key:
            raise ValueError("LLM API key required. Set LLM_API_KEY.")
        self._api_key = api_key
        self._base_url = base_url.rstrip("/")

    async def chat(self, req: LLMRequest) -> ChatCompletion:
        payload = {
            "model": req.model,
            "messages": req.messages,
            "temperature": float(req.temperature),
            "max_tokens": int(req.max_tokens),
        }
        if req.response_format is not None:
            payload["response_format"] = req.response_format

        headers = {
            "Authorization": f"Bearer {self._api_key}",
            "Content-Type": "application/json",
        }
        url = f"{self._base_url}/chat/completions"

        timeout = aiohttp.ClientTimeout(total=max(1, int(req.timeout_seconds)))
        try:
            async with aiohttp.ClientSession(timeout=timeout) as session:
                async with session.post(url, json=payload, headers=headers) as resp:
                    if resp.status == 429:
                        raise RateLimitExceededError("LLM rate limit (429 too many requests)")
                    if resp.status >= 500:
                        body = await resp.text()
                        raise UpstreamHTTPError(resp.status, url, detail=body[:500])
                    if resp.status >= 400:
                        body = await resp.text()
                        raise ExtractionError("LLM request rejected", detail=f"status={resp.status} body={body[:500]}")
                    data = await resp.json(content_type=None)
        except asyncio.TimeoutError as e:
            raise NetworkTimeoutError(f"LLM request timeout after {req.timeout_seconds}s", detail=str(e)) from e
        except aiohttp.ClientError as e:
            raise NetworkTimeoutError("LLM network error", detail=str(e)) from e

        if not isinstance(data, dict):
            raise ExtractionError("temporary LLM failure: response is not an object")
        if data.get("error"):
            raise ExtractionError("temporary LLM failure: provider error", detail=str(data.get("error")))

        choices = data.get("choices") or []
        if not choices:
            logger.warning("llm_empty_choices", model=req.model)
            return ChatCompletion(content=None, raw=data)

        first = choices[0] if isinstance(choices[0], dict) else {}
        message = first.get("message") or {}
        usage = data.get("usage") or {}
        logger.info(
            "llm_completion",
            model=req.model,
            finish_reason=first.get("finish_reason"),
            prompt_tokens=usage.get("prompt_tokens"),
            completion_tokens=usage.get("completion_tokens"),
        )
        return ChatCompletion(
            content=normalize_content(message.get("content")) or TextContent(""),
            finish_reason=first.get("finish_reason"),
            raw=data,
        )
