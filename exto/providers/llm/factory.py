from __future__ import annotations

from exto.core.config import get_settings
from exto.core.errors import ProviderConfigError
from exto.providers.llm.base import ChatProvider
from exto.providers.llm.fake import FakeChatProvider
from exto.providers.llm.openai_chat import OpenAIChatProvider


def get_chat_provider() -> ChatProvider:
    settings = get_settings()
    provider = (settings.llm_provider or "openai").lower()

    if provider == "fake":
        return FakeChatProvider()
    if provider == "openai":
        return OpenAIChatProvider()

    raise ProviderConfigError(f"Unsupported LLM provider: {provider}")
