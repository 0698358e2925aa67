"""Provider factory.

Extraction results become budget actuals once a reviewer confirms them, so a
misconfigured provider must fail loudly. ``mock`` is only built when it is
asked for by name.
"""

from __future__ import annotations

import logging

from profit_iq.core.config import get_settings
from profit_iq.core.errors import ModelFailure

from .base import Attachment, BaseProvider, ChatTurn, ProviderResult, ToolCall
from .mock import MockProvider

logger = logging.getLogger(__name__)

__all__ = [
    "get_provider",
    "Attachment",
    "BaseProvider",
    "ChatTurn",
    "ProviderResult",
    "ToolCall",
    "MockProvider",
]

# Provider name -> settings attribute holding its API key.
API_KEY_SETTINGS = {
    "claude": "anthropic_api_key",
    "openai": "openai_api_key",
}


def _unavailable(message: str) -> ModelFailure:
    logger.error("AI provider unavailable: %s", message)
    return ModelFailure(message)


def get_provider(provider_name: str | None) -> BaseProvider:
    """Build the provider registered as *provider_name*.

    Raises ``ModelFailure`` when no provider is named, when it is outside
    ``AI_ALLOWED_PROVIDERS``, unknown, or missing its API key.
    """
    settings = get_settings()
    name = (provider_name or "").lower().strip()

    if not name:
        raise _unavailable("No AI provider configured")
    if name not in settings.ai_allowed_providers:
        raise _unavailable(f"AI provider {name!r} is not in AI_ALLOWED_PROVIDERS")
    if name == "mock":
        return MockProvider()

    key_setting = API_KEY_SETTINGS.get(name)
    if key_setting is None:
        raise _unavailable(f"Unknown AI provider {name!r}")
    api_key = getattr(settings, key_setting)
    if not api_key:
        raise _unavailable(f"{key_setting.upper()} is not set for AI provider {name!r}")

    if name == "claude":
        from .claude import ClaudeProvider

        return ClaudeProvider(api_key=api_key)

    from .openai import OpenAIProvider

    return OpenAIProvider(api_key=api_key)
