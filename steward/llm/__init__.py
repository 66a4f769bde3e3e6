"""LLM abstraction layer - provider-agnostic interface for model calls.

Re-exports the public API so consumers can write:
    from steward.llm import LLMProvider, StreamedResult, create_provider, ...
"""

from __future__ import annotations

import requests

import config

from .base import (
    END_TURN,
    ERROR,
    MAX_TOKENS,
    TOOL_USE,
    ContentBlock,
    LLMProvider,
    Message,
    Pricing,
    ProviderCapabilities,
    RedactedThinkingBlock,
    StreamedResult,
    TextBlock,
    ThinkingBlock,
    ToolDefinition,
    ToolResultBlock,
    ToolUseBlock,
    block_from_dict,
    parse_tool_arguments,
)
from .anthropic_adapter import AnthropicProvider
from .openai_adapter import OpenAIProvider
from .gemini_adapter import GeminiProvider

PROVIDERS: dict[str, type[LLMProvider]] = {
    "anthropic": AnthropicProvider,
    "openai": OpenAIProvider,
    "gemini": GeminiProvider,
}

# Display names and info for CLIs and setup screens
PROVIDER_INFO = {
    "anthropic": {
        "name": "Claude (Anthropic)",
        "default_model": AnthropicProvider.DEFAULT_MODEL,
        "api_key_url": "https://console.anthropic.com/settings/keys",
        "pricing": "~$3-15 per million tokens",
    },
    "openai": {
        "name": "GPT (OpenAI)",
        "default_model": OpenAIProvider.DEFAULT_MODEL,
        "api_key_url": "https://platform.openai.com/api-keys",
        "pricing": "~$2.50-10 per million tokens",
    },
    "gemini": {
        "name": "Gemini (Google)",
        "default_model": GeminiProvider.DEFAULT_MODEL,
        "api_key_url": "https://aistudio.google.com/app/apikey",
        "pricing": "~$0.10 per million tokens (has free tier)",
    },
}


def create_provider(
    provider: str | None = None,
    *,
    api_key: str | None = None,
    model: str | None = None,
    base_url: str | None = None,
    session: requests.Session | None = None,
) -> LLMProvider:
    """Create a provider by name, filling unspecified settings from config.

    Raises ``ValueError`` for unknown provider names.
    """
    name = (provider or config.LLM_PROVIDER).lower()
    cls = PROVIDERS.get(name)
    if cls is None:
        raise ValueError(f"Unknown provider: {name!r} (expected one of {sorted(PROVIDERS)})")
    return cls(
        api_key if api_key is not None else config.get_api_key(name),
        model or config._provider_get("model", provider=name),
        base_url or config._provider_get("base_url", provider=name),
        session=session,
    )
