"""Provider backed by the OpenAI chat-completions endpoint."""

from __future__ import annotations

import json
import os
import urllib.error
import urllib.request
from typing import Any, Callable, Dict, Optional

from .provider import LanguageModelProvider, ProviderResponseError, ProviderTransportError

__all__ = ["API_KEY_ENV", "OpenAIChatProvider", "urllib_transport"]

Transport = Callable[[Dict[str, Any]], str]

API_KEY_ENV = "OPENAI_API_KEY"
DEFAULT_BASE_URL = "https://api.openai.com/v1/chat/completions"
RETRYABLE_STATUS = frozenset({408, 429, 500, 502, 503, 504})


def urllib_transport(url: str, api_key: str, *, timeout: float) -> Transport:
    """POST each payload as JSON to ``url`` and return the response body.

    Rate limits, timeouts and server errors surface as
    :class:`ProviderTransportError` and are retried by the provider; any other
    HTTP error is a :class:`ProviderResponseError` and is not.
    """

    def send(payload: Dict[str, Any]) -> str:
        request = urllib.request.Request(
            url,
            data=json.dumps(payload).encode("utf-8"),
            headers={"Content-Type": "application/json", "Authorization": f"Bearer {api_key}"},
            method="POST",
        )
        try:
            with urllib.request.urlopen(request, timeout=timeout) as response:
                return response.read().decode("utf-8")
        except urllib.error.HTTPError as error:
            detail = error.read().decode("utf-8", errors="replace")[:500]
            if error.code in RETRYABLE_STATUS:
                raise ProviderTransportError(f"HTTP {error.code} from {url}: {detail}") from error
            raise ProviderResponseError(f"HTTP {error.code} from {url}: {detail}") from error
        except (urllib.error.URLError, TimeoutError) as error:
            raise ProviderTransportError(f"Could not reach {url}: {error}") from error

    return send


def _message_content(raw: str) -> str:
    try:
        data = json.loads(raw)
    except json.JSONDecodeError as error:
        raise ProviderResponseError(f"Chat completion is not JSON: {error}") from error
    try:
        content = data["choices"][0]["message"]["content"]
    except (KeyError, IndexError, TypeError) as error:
        raise ProviderResponseError("Chat completion did not contain message content.") from error
    if not isinstance(content, str):
        raise ProviderResponseError("Chat completion content is not text.")
    return content


class OpenAIChatProvider(LanguageModelProvider):
    """Chat-completions client; pass ``transport`` to replace HTTP."""

    def __init__(
        self,
        *,
        model: str = "gpt-4o-mini",
        api_key: Optional[str] = None,
        base_url: str = DEFAULT_BASE_URL,
        timeout: float = 60.0,
        max_attempts: int = 3,
        retry_delay: float = 0.5,
        transport: Optional[Transport] = None,
    ) -> None:
        super().__init__(model, max_attempts=max_attempts, retry_delay=retry_delay)
        if transport is None:
            key = (api_key or os.environ.get(API_KEY_ENV) or "").strip()
            if not key:
                raise ValueError(f"{API_KEY_ENV} is not set.")
            transport = urllib_transport(base_url, key, timeout=timeout)
        self._transport = transport

    def _raw_invoke(self, payload: Dict[str, Any]) -> str:
        # metadata only steers offline providers; the API rejects unknown keys
        body = {key: value for key, value in payload.items() if key != "metadata"}
        try:
            raw = self._transport(body)
        except OSError as error:
            raise ProviderTransportError(f"Chat completion request failed: {error}") from error
        return _message_content(raw)
