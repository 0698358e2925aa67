"""AI Router: resolves provider, model and limits for a scope."""

from __future__ import annotations

import logging
from dataclasses import dataclass

from profit_iq.core.config import get_settings

from .providers import BaseProvider, get_provider

logger = logging.getLogger(__name__)

DOCUMENT_EXTRACT_SCOPE = "document_extract"
PROJECT_CHAT_SCOPE = "project_chat"

# scope -> (provider, model, max_tokens, timeout) settings attributes
_SCOPE_SETTINGS = {
    DOCUMENT_EXTRACT_SCOPE: (
        "ai_extract_provider",
        "ai_extract_model",
        "ai_extract_max_tokens",
        "ai_extract_timeout_seconds",
    ),
    PROJECT_CHAT_SCOPE: (
        "ai_chat_provider",
        "ai_chat_model",
        "ai_chat_max_tokens",
        "ai_chat_timeout_seconds",
    ),
}


@dataclass(frozen=True)
class ResolvedConfig:
    """Final resolved provider + model after the override chain."""

    provider: BaseProvider
    model: str
    temperature: float
    max_tokens: int
    timeout_seconds: float


def resolve(
    scope: str,
    *,
    override_provider: str | None = None,
    override_model: str | None = None,
) -> ResolvedConfig:
    """Resolve provider + model for a given *scope*.

    The caller's override wins over the scope's settings. A model outside
    the provider's allowlist is replaced by the first allowed one. Raises
    ``ModelFailure`` when the provider cannot be built.
    """
    try:
        provider_attr, model_attr, max_tokens_attr, timeout_attr = _SCOPE_SETTINGS[scope]
    except KeyError:
        raise ValueError(f"Unknown AI scope: {scope}") from None

    settings = get_settings()
    provider_name = (override_provider or getattr(settings, provider_attr) or "").lower().strip()
    model = (override_model or getattr(settings, model_attr) or "").strip()

    allowed_models = settings.ai_allowed_models.get(provider_name, [])
    if allowed_models and model not in allowed_models:
        if model:
            logger.warning(
                "Model %r not in allowlist for %r, using %r",
                model,
                provider_name,
                allowed_models[0],
            )
        model = allowed_models[0]

    return ResolvedConfig(
        provider=get_provider(provider_name),
        model=model,
        temperature=settings.ai_temperature,
        max_tokens=getattr(settings, max_tokens_attr),
        timeout_seconds=getattr(settings, timeout_attr),
    )
