"""LLM provider factory and status management."""

from dataclasses import dataclass
from typing import Literal

import structlog

from edujobs.config import Settings, get_settings
from edujobs.services.llm_base import BaseLLMClient

logger = structlog.get_logger(__name__)

# Type aliases
ProviderConfig = Literal["auto", "anthropic", "openai", "openrouter"]
ProviderResolved = Literal["anthropic", "openai", "openrouter"]


@dataclass
class LLMStatus:
    """LLM configuration status."""

    enabled: bool
    provider_config: ProviderConfig
    provider_resolved: ProviderResolved | None
    model: str | None


# Module-level singletons
_llm_client: BaseLLMClient | None = None
_llm_status: LLMStatus | None = None
_initialized: bool = False


class LLMStartupError(Exception):
    """Raised when an explicitly selected provider has no key configured."""


_KEY_ENV = {
    "anthropic": "ANTHROPIC_API_KEY",
    "openai": "OPENAI_API_KEY",
    "openrouter": "OPENROUTER_API_KEY",
}


def _key_for(settings: Settings, provider: ProviderResolved) -> str | None:
    raw = getattr(settings, f"{provider}_api_key")
    return (raw or "").strip() or None


def _resolve_provider(settings: Settings) -> tuple[ProviderResolved | None, str | None]:
    """
    Resolve which provider to use based on settings.

    Returns:
        (provider_resolved, api_key) tuple, or (None, None) if disabled
    """
    if not settings.llm_enabled:
        return None, None

    provider = settings.llm_provider
    if provider != "auto":
        key = _key_for(settings, provider)
        if not key:
            raise LLMStartupError(
                f"LLM_PROVIDER={provider} but {_KEY_ENV[provider]} not set"
            )
        return provider, key

    # Auto: Anthropic, then OpenAI, then OpenRouter
    for candidate in ("anthropic", "openai", "openrouter"):
        key = _key_for(settings, candidate)
        if key:
            return candidate, key

    return None, None


def _create_client(
    provider: ProviderResolved, api_key: str, settings: Settings
) -> BaseLLMClient:
    """Create the appropriate LLM client."""
    if provider == "anthropic":
        from edujobs.services.llm_anthropic import AnthropicLLMClient

        return AnthropicLLMClient(
            api_key=api_key,
            model=settings.generation_model,
            timeout=settings.llm_timeout,
        )
    if provider == "openai":
        from edujobs.services.llm_openai import OpenAILLMClient

        return OpenAILLMClient(
            api_key=api_key,
            model=settings.generation_model,
            timeout=settings.llm_timeout,
        )

    from edujobs.services.llm_openrouter import OpenRouterLLMClient

    return OpenRouterLLMClient(
        api_key=api_key,
        model=settings.generation_model,
        timeout=settings.llm_timeout,
    )


def _initialize() -> None:
    """Initialize the LLM subsystem (idempotent)."""
    global _llm_client, _llm_status, _initialized

    if _initialized:
        return

    settings = get_settings()
    provider_config = settings.llm_provider
    provider_resolved, api_key = _resolve_provider(settings)

    if provider_resolved and api_key:
        _llm_client = _create_client(provider_resolved, api_key, settings)
        _llm_status = LLMStatus(
            enabled=True,
            provider_config=provider_config,
            provider_resolved=provider_resolved,
            model=settings.generation_model,
        )
        logger.info(
            "llm_initialized",
            provider_config=provider_config,
            provider_resolved=provider_resolved,
            model=settings.generation_model,
        )
    else:
        _llm_client = None
        _llm_status = LLMStatus(
            enabled=False,
            provider_config=provider_config,
            provider_resolved=None,
            model=settings.generation_model,
        )
        logger.info(
            "llm_disabled",
            provider_config=provider_config,
            reason="no API key configured" if settings.llm_enabled else "kill switch",
        )

    _initialized = True


def get_llm_status() -> LLMStatus:
    """Resolve provider configuration without issuing any request."""
    _initialize()
    assert _llm_status is not None
    return _llm_status


def get_llm() -> BaseLLMClient | None:
    """
    Get the cached LLM client.

    Returns:
        BaseLLMClient if LLM is enabled and configured, None otherwise

    Raises:
        LLMStartupError: If an explicit provider is selected without its key
    """
    _initialize()
    return _llm_client


def reset_llm() -> None:
    """Reset the LLM singleton (for testing)."""
    global _llm_client, _llm_status, _initialized
    _llm_client = None
    _llm_status = None
    _initialized = False
