from __future__ import annotations

from typing import Any, Protocol


class ChatProvider(Protocol):
    async def complete(
        self,
        messages: list[dict[str, Any]],
        *,
        model: str,
        max_tokens: int,
        temperature: float | None = None,
    ) -> str:
        ...
