"""
Provider Manager — picks the content-classification provider.

Keys come from config (environment / .env). The chosen provider is cached at
module level; reset manager._provider = None to rebuild it (tests do this).

Modes (config.CLASSIFIER_PROVIDER):
  auto       — OpenAI if OPENAI_API_KEY is set, otherwise Anthropic
  openai     — OpenAI only
  anthropic  — Anthropic only
"""
from __future__ import annotations

import logging
from typing import Optional

import config
from providers.base import ClassifierProvider

logger = logging.getLogger(__name__)

# Module-level cache
_provider: Optional[ClassifierProvider] = None


def _build_openai() -> Optional[ClassifierProvider]:
    if not config.OPENAI_API_KEY:
        return None
    from providers.openai_provider import OpenAIProvider
    return OpenAIProvider(config.OPENAI_API_KEY, config.OPENAI_MODEL)


def _build_anthropic() -> Optional[ClassifierProvider]:
    if not config.ANTHROPIC_API_KEY:
        return None
    from providers.anthropic_provider import AnthropicProvider
    return AnthropicProvider(config.ANTHROPIC_API_KEY, config.ANTHROPIC_MODEL)


def _build_provider() -> ClassifierProvider:
    """
    Instantiate the provider selected by CLASSIFIER_PROVIDER.
    Raises RuntimeError if the selected provider has no key.
    """
    mode = config.CLASSIFIER_PROVIDER.strip().lower()

    if mode == "openai":
        builders = [_build_openai]
    elif mode == "anthropic":
        builders = [_build_anthropic]
    elif mode == "auto":
        builders = [_build_openai, _build_anthropic]
    else:
        raise ValueError(
            f"Unknown CLASSIFIER_PROVIDER '{config.CLASSIFIER_PROVIDER}'. "
            "Use auto, openai or anthropic."
        )

    for build in builders:
        provider = build()
        if provider is not None:
            logger.info("Loaded classification provider: %s", provider.full_name)
            return provider

    raise RuntimeError(
        "No classification provider available.\n"
        "Set at least one key in the environment or .env:\n"
        "  • OPENAI_API_KEY\n"
        "  • ANTHROPIC_API_KEY"
    )


def get_provider() -> ClassifierProvider:
    global _provider
    if _provider is None:
        _provider = _build_provider()
    return _provider
