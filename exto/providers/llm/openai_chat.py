from __future__ import annotations

import logging
import time
from typing import Any

import httpx

from exto.core.config import get_settings
from exto.core.errors import ExtractionError, ProviderConfigError
from exto.services.telemetry import record_external_call


logger = logging.getLogger(__name__)


class OpenAIChatProvider:
    def __init__(self, client: httpx.AsyncClient | None = None) -> None:
        self._settings = get_settings()
        self._client = client

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is not None:
            return self._client
        # Reuse a single client per provider for connection pooling.
        timeout_s = self._settings.ext_call_timeout_ms / 1000.0
        self._client = httpx.AsyncClient(timeout=timeout_s)
        return self._client

    async def complete(
        self,
        messages: list[dict[str, Any]],
        *,
        model: str,
        max_tokens: int,
        temperature: float | None = None,
    ) -> str:
        api_key = self._settings.openai_api_key
        if not api_key:
            raise ProviderConfigError("OPENAI_API_KEY is required for the OpenAI provider")

        payload: dict[str, Any] = {"model": model, "messages": messages, "max_tokens": max_tokens}
        if temperature is not None:
            payload["temperature"] = temperature
        headers = {"Authorization": f"Bearer {api_key}"}
        url = f"{self._settings.openai_base_url.rstrip('/')}/chat/completions"

        start = time.monotonic()
        try:
            response = await self._get_client().post(url, json=payload, headers=headers)
        except httpx.HTTPError as exc:
            record_external_call(
                integration="llm.openai",
                latency_ms=(time.monotonic() - start) * 1000.0,
                success=False,
            )
            raise ExtractionError("Extraction model request failed") from exc

        latency_ms = (time.monotonic() - start) * 1000.0
        if response.status_code >= 400:
            record_external_call(integration="llm.openai", latency_ms=latency_ms, success=False)
            logger.warning("openai chat completion failed status=%s model=%s", response.status_code, model)
            error = ExtractionError(f"Extraction model error: {response.status_code}")
            setattr(error, "status_code", response.status_code)
            raise error

        record_external_call(integration="llm.openai", latency_ms=latency_ms, success=True)
        try:
            body = response.json()
            content = body["choices"][0]["message"]["content"]
        except (ValueError, KeyError, IndexError, TypeError) as exc:
            raise ExtractionError("Extraction model returned an unexpected payload") from exc
        if not isinstance(content, str):
            raise ExtractionError("Extraction model returned no text content")
        return content
