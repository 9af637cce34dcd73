"""Text-generation provider contract shared by all language-model integrations."""

from __future__ import annotations

import json
import logging
import re
import time
from dataclasses import dataclass, field
from typing import Any, Dict, Optional

from ..errors import GovernorError

__all__ = [
    "LanguageModelProvider",
    "ModelRequest",
    "ProviderError",
    "ProviderResponseError",
    "ProviderTransportError",
    "parse_json_object",
]

LOGGER = logging.getLogger(__name__)


class ProviderError(GovernorError):
    """Base error raised for language-model provider failures."""


class ProviderTransportError(ProviderError):
    """Raised when the underlying transport fails to return a response."""


class ProviderResponseError(ProviderError):
    """Raised when the provider returns an empty or unusable payload."""


@dataclass(slots=True)
class ModelRequest:
    """Prompt for one persona and one task (estimate, design document, ...)."""

    persona: str
    task: str
    system_prompt: str
    prompt: str
    model: Optional[str] = None
    metadata: Dict[str, Any] = field(default_factory=dict)
    temperature: float = 0.0

    def to_payload(self, default_model: str) -> Dict[str, Any]:
        """Render a chat-completions payload; ``metadata`` rides along for stubs."""
        return {
            "model": self.model or default_model,
            "temperature": self.temperature,
            "messages": [
                {"role": "system", "content": self.system_prompt},
                {"role": "user", "content": self.prompt},
            ],
            "metadata": {"persona": self.persona, "task": self.task, **self.metadata},
        }


class LanguageModelProvider:
    """Generate text for a persona given its prompt context."""

    def __init__(self, model: str, *, max_attempts: int = 3, retry_delay: float = 0.5) -> None:
        self._model = model
        self._max_attempts = max(1, max_attempts)
        self._retry_delay = retry_delay

    @property
    def model(self) -> str:
        """Return the default model name configured for this provider."""
        return self._model

    def generate(self, request: ModelRequest) -> str:
        """Return the raw text produced for ``request``; transport errors are retried."""
        payload = request.to_payload(self._model)
        attempt = 0
        while True:
            attempt += 1
            try:
                text = self._raw_invoke(payload)
            except ProviderTransportError as error:
                LOGGER.warning(
                    "Provider call for %s/%s failed (attempt %d/%d): %s",
                    request.persona,
                    request.task,
                    attempt,
                    self._max_attempts,
                    error,
                )
                if attempt >= self._max_attempts:
                    raise
                time.sleep(self._retry_delay)
                continue
            if not text or not text.strip():
                raise ProviderResponseError(
                    f"Model returned an empty response for {request.persona}/{request.task}."
                )
            return text

    def _raw_invoke(self, payload: Dict[str, Any]) -> str:
        """Perform the transport call. Subclasses must implement."""
        raise NotImplementedError("Subclasses must implement _raw_invoke().")


def parse_json_object(raw: str) -> Dict[str, Any]:
    """Parse a JSON object out of model output, tolerating fences and chatter."""
    text = _normalise_json_string(raw.strip())
    if not text:
        raise ProviderResponseError("Model returned an empty response.")

    candidates = [text]
    repaired = _repair_json_payload(text)
    if repaired and repaired not in candidates:
        candidates.append(repaired)

    for candidate in candidates:
        try:
            data = json.loads(candidate)
        except json.JSONDecodeError:
            continue
        if isinstance(data, dict):
            return data
    raise ProviderResponseError(f"Model returned invalid JSON: {text[:200]}")


def _strip_code_fence(payload: str) -> str:
    """Remove Markdown-style code fences that wrap JSON payloads."""
    match = re.match(r"```[A-Za-z0-9_-]*\s*\n", payload)
    if not match:
        return payload
    fence_end = payload.find("```", match.end())
    if fence_end == -1:
        return payload
    return payload[match.end() : fence_end].strip()


def _normalise_json_string(payload: str) -> str:
    """Normalise typographic quotes and spaces emitted by models."""
    translation = {
        0x201C: '"',
        0x201D: '"',
        0x2018: "'",
        0x2019: "'",
        0x00A0: " ",
        0xFEFF: "",
    }
    return payload.translate(str.maketrans(translation))


def _repair_json_payload(raw: str) -> str | None:
    """Salvage the first balanced JSON object embedded in noisy output."""
    stripped = _strip_code_fence(raw)
    start = stripped.find("{")
    if start == -1:
        return None
    depth = 0
    in_string = False
    escaped = False
    for index in range(start, len(stripped)):
        char = stripped[index]
        if in_string:
            if escaped:
                escaped = False
            elif char == "\\":
                escaped = True
            elif char == '"':
                in_string = False
            continue
        if char == '"':
            in_string = True
        elif char == "{":
            depth += 1
        elif char == "}":
            depth -= 1
            if depth == 0:
                candidate = stripped[start : index + 1]
                return re.sub(r",(\s*[}\]])", r"\1", candidate)
    return None
