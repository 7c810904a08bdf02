# health_explorer/services/anthropic_client.py
from __future__ import annotations

import asyncio
import json
import logging
from typing import Any, AsyncIterator, Dict, List, Optional

import httpx

from health_explorer.config import Settings

logger = logging.getLogger(__name__)

_TRANSIENT_STATUS = (429, 500, 502, 503, 504, 529)


class AnthropicError(RuntimeError):
    def __init__(self, message: str, *, transient: bool = False) -> None:
        super().__init__(message)
        self.transient = transient


class AnthropicClient:
    """Thin streaming client for the Anthropic Messages API.

    Configuration comes from the ``Settings`` passed in; a missing API key
    fails at construction so callers can reject the request before streaming.
    """

    def __init__(
        self,
        settings: Settings,
        *,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        if not settings.anthropic_api_key:
            raise AnthropicError("ANTHROPIC_API_KEY is not configured")

        self.api_key = settings.anthropic_api_key
        self.model = settings.anthropic_model
        self.version = settings.anthropic_version
        self.max_tokens = settings.max_tokens
        self.max_retries = settings.model_max_retries
        self.backoff_factor = settings.model_backoff_factor

        self._client = httpx.AsyncClient(
            base_url=settings.anthropic_base_url,
            timeout=settings.model_timeout,
            transport=transport,
        )

    async def aclose(self) -> None:
        await self._client.aclose()

    def _headers(self) -> Dict[str, str]:
        return {
            "x-api-key": self.api_key,
            "anthropic-version": self.version,
            "content-type": "application/json",
        }

    async def stream_completion(
        self,
        system_prompt: str,
        messages: List[Dict[str, str]],
    ) -> AsyncIterator[str]:
        """
        Stream a completion and yield text increments as they arrive.
        Transient failures are retried only until the first increment has
        been yielded; after that every failure raises AnthropicError.
        """
        payload: Dict[str, Any] = {
            "model": self.model,
            "max_tokens": self.max_tokens,
            "system": system_prompt,
            "messages": [{"role": m["role"], "content": m["content"]} for m in messages],
            "stream": True,
        }

        yielded = False
        for attempt in range(self.max_retries + 1):
            try:
                async with self._client.stream(
                    "POST", "/v1/messages", headers=self._headers(), json=payload
                ) as res:
                    if res.status_code != 200:
                        body = (await res.aread()).decode("utf-8", "replace")
                        raise AnthropicError(
                            f"HTTP {res.status_code}: {body[:200]}",
                            transient=res.status_code in _TRANSIENT_STATUS,
                        )
                    async for text in _iter_text_deltas(res):
                        yielded = True
                        yield text
                    return
            except (httpx.TransportError, AnthropicError) as e:
                transient = isinstance(e, httpx.TransportError) or e.transient
                if yielded or not transient or attempt >= self.max_retries:
                    if isinstance(e, AnthropicError):
                        raise
                    raise AnthropicError(f"Anthropic stream failed: {e}") from e
                sleep_s = self.backoff_factor * (2 ** attempt)
                logger.warning("Retrying model stream in %.1fs: %s", sleep_s, e)
                await asyncio.sleep(sleep_s)


async def _iter_text_deltas(res: httpx.Response) -> AsyncIterator[str]:
    """Decode Anthropic SSE lines into text increments."""
    async for line in res.aiter_lines():
        if not line.startswith("data:"):
            continue
        data = line[5:].strip()
        if not data:
            continue
        try:
            event = json.loads(data)
        except ValueError:
            logger.debug("Skipping undecodable stream line: %r", data[:80])
            continue

        kind = event.get("type")
        if kind == "content_block_delta":
            delta = event.get("delta") or {}
            if delta.get("type") == "text_delta" and delta.get("text"):
                yield delta["text"]
        elif kind == "error":
            error = event.get("error") or {}
            raise AnthropicError(error.get("message") or "Unknown error occurred")
        elif kind == "message_stop":
            return
