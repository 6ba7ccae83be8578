"""Completion client used by the generative scene provider.

The provider only needs an awaitable `(stage, prompt) -> text`; `stage` is
"scene" for batch generation and only shows up in logs. HttpLLM talks to a
KoboldCpp or OpenAI-compatible completion endpoint; tests substitute an
AsyncMock for the whole callable.
"""

from __future__ import annotations

import logging
from typing import Any, Literal, NamedTuple, Protocol

import httpx

logger = logging.getLogger(__name__)


class LLM(Protocol):
    async def __call__(self, stage: str, prompt: str) -> str: ...


ProviderFormat = Literal["koboldcpp", "openai"]


class _WireFormat(NamedTuple):
    path: str
    length_field: str
    reply_field: str


_FORMATS: dict[str, _WireFormat] = {
    "koboldcpp": _WireFormat("/api/v1/generate", "max_length", "results"),
    "openai": _WireFormat("/v1/completions", "max_tokens", "choices"),
}


class LLMError(RuntimeError):
    """The completion backend was unreachable, failed, or answered in an unknown shape."""


class HttpLLM:
    """Async completion client.

    Args:
        provider_url:    Base URL of the backend, e.g. "http://localhost:5001".
        api_key:         Bearer token, or empty string if not required.
        provider_format: "koboldcpp" or "openai".
        model:           Model identifier, sent only with the openai format.
        max_tokens:      Completion length cap. A scene batch fits in a few hundred tokens.
        timeout:         Per-request HTTP timeout in seconds. The engine's step
                         timeout applies on top of this.
    """

    def __init__(
        self,
        provider_url: str,
        api_key: str = "",
        provider_format: ProviderFormat = "koboldcpp",
        model: str = "",
        max_tokens: int = 800,
        timeout: float = 60.0,
    ) -> None:
        if provider_format not in _FORMATS:
            raise ValueError(f"Unknown provider format {provider_format!r}")
        self._base_url = provider_url.rstrip("/")
        self._api_key = api_key
        self._format = provider_format
        self._wire = _FORMATS[provider_format]
        self._model = model
        self._max_tokens = max_tokens
        self._timeout = timeout

    @property
    def endpoint(self) -> str:
        return self._base_url + self._wire.path

    def _payload(self, prompt: str) -> dict[str, Any]:
        payload: dict[str, Any] = {"prompt": prompt, self._wire.length_field: self._max_tokens}
        if self._model and self._format == "openai":
            payload["model"] = self._model
        return payload

    def _auth(self) -> dict[str, str]:
        headers = {"Content-Type": "application/json"}
        if self._api_key:
            headers["Authorization"] = f"Bearer {self._api_key}"
        return headers

    def _completion_text(self, data: Any) -> str:
        items = data.get(self._wire.reply_field) if isinstance(data, dict) else None
        if not items or not isinstance(items[0], dict) or "text" not in items[0]:
            raise LLMError(f"Unexpected response format from {self._format} backend")
        return items[0]["text"]

    async def __call__(self, stage: str, prompt: str) -> str:
        logger.debug("completion stage=%s endpoint=%s prompt_len=%d", stage, self.endpoint, len(prompt))
        try:
            async with httpx.AsyncClient(timeout=self._timeout) as client:
                resp = await client.post(self.endpoint, json=self._payload(prompt), headers=self._auth())
                resp.raise_for_status()
        except httpx.ConnectError as e:
            raise LLMError(f"Cannot connect to LLM backend at {self._base_url}") from e
        except httpx.TimeoutException as e:
            raise LLMError(f"LLM backend timed out after {self._timeout}s") from e
        except httpx.HTTPStatusError as e:
            raise LLMError(f"LLM backend returned HTTP {e.response.status_code}") from e

        text = self._completion_text(resp.json())
        logger.debug("completion stage=%s reply_len=%d", stage, len(text))
        return text
