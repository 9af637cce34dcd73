"""Convenience exports for governor language-model providers."""

from .openai_chat import OpenAIChatProvider
from .provider import (
    LanguageModelProvider,
    ModelRequest,
    ProviderError,
    ProviderResponseError,
    ProviderTransportError,
    parse_json_object,
)
from .stub import StubProvider

__all__ = [
    "LanguageModelProvider",
    "ModelRequest",
    "OpenAIChatProvider",
    "ProviderError",
    "ProviderResponseError",
    "ProviderTransportError",
    "StubProvider",
    "parse_json_object",
]
