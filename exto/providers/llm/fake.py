from __future__ import annotations

from typing import Any, Callable


class FakeChatProvider:
    def __init__(
        self,
        response: str | list[str] | Callable[[list[dict[str, Any]]], str] = '{"keyValues": []}',
    ) -> None:
        # Deterministic replies keep tests stable without external calls.
        self._response = response
        self.calls: list[dict[str, Any]] = []

    async def complete(
        self,
        messages: list[dict[str, Any]],
        *,
        model: str,
        max_tokens: int,
        temperature: float | None = None,
    ) -> str:
        self.calls.append(
            {"messages": messages, "model": model, "max_tokens": max_tokens, "temperature": temperature}
        )
        if callable(self._response):
            return self._response(messages)
        if isinstance(self._response, list):
            # Replay scripted replies in order, repeating the last one.
            index = min(len(self.calls) - 1, len(self._response) - 1)
            return self._response[index]
        return self._response
