"""LLM client — HTTP connection to a text-completion backend.

The story generator injects an LLM callable matching the protocol:

    async def __call__(self, stage: str, prompt: str) -> str: ...

`stage` identifies which generation step is calling ("story" or
"choices"). The implementation may use it for logging or routing; the
simplest implementation ignores it.

Production code constructs an HttpLLM from settings and passes it to
LLMGenerator. Tests use AsyncMock stand-ins instead.
"""

from __future__ import annotations

import logging
from typing import Literal, Protocol

import httpx

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Protocol — every LLM implementation must match this signature
# ---------------------------------------------------------------------------

class LLM(Protocol):
    async def __call__(self, stage: str, prompt: str) -> str: ...


# ---------------------------------------------------------------------------
# HttpLLM — connects to a real backend
# ---------------------------------------------------------------------------

ProviderFormat = Literal["koboldcpp", "openai", "openai_chat"]


class HttpLLM:
    """Async HTTP client for text-completion backends.

    Supported formats:
      "koboldcpp"    — POST /api/v1/generate     {"prompt": ...}
                       Response: {"results": [{"text": "..."}]}
      "openai"       — POST /v1/completions      {"model": ..., "prompt": ...}
                       Response: {"choices": [{"text": "..."}]}
      "openai_chat"  — POST /v1/chat/completions {"model": ..., "messages": [...]}
                       Response: {"choices": [{"message": {"content": "..."}}]}

    Args:
        provider_url:    Base URL of the backend, e.g. "http://localhost:5001".
        api_key:         Bearer token, or empty string if not required.
        provider_format: Wire format to use. Defaults to "koboldcpp".
        model:           Model identifier, used by the openai formats.
        system_prompt:   Sent as the system message by "openai_chat".
        temperature:     Sampling temperature, omitted when None.
        max_tokens:      Completion length limit, omitted when None.
        timeout:         HTTP timeout in seconds. Defaults to 120.
    """

    def __init__(
        self,
        provider_url: str,
        api_key: str = "",
        provider_format: ProviderFormat = "koboldcpp",
        model: str = "",
        system_prompt: str = "",
        temperature: float | None = None,
        max_tokens: int | None = None,
        timeout: float = 120.0,
    ) -> None:
        self._base_url = provider_url.rstrip("/")
        self._api_key = api_key
        self._format = provider_format
        self._model = model
        self._system_prompt = system_prompt
        self._temperature = temperature
        self._max_tokens = max_tokens
        self._timeout = timeout

    def _headers(self) -> dict[str, str]:
        headers: dict[str, str] = {"Content-Type": "application/json"}
        if self._api_key:
            headers["Authorization"] = f"Bearer {self._api_key}"
        return headers

    def _sampling(self) -> dict:
        body: dict = {}
        if self._temperature is not None:
            body["temperature"] = self._temperature
        if self._max_tokens is not None:
            body["max_tokens"] = self._max_tokens
        return body

    def _build_request(self, prompt: str) -> tuple[str, dict]:
        """Return (url, body) for the configured format."""
        if self._format == "openai_chat":
            messages = []
            if self._system_prompt:
                messages.append({"role": "system", "content": self._system_prompt})
            messages.append({"role": "user", "content": prompt})
            body: dict = {"messages": messages, "stream": False, **self._sampling()}
            if self._model:
                body["model"] = self._model
            return f"{self._base_url}/v1/chat/completions", body

        if self._format == "openai":
            body = {"prompt": prompt, **self._sampling()}
            if self._model:
                body["model"] = self._model
            return f"{self._base_url}/v1/completions", body

        # koboldcpp (default)
        body = {"prompt": prompt}
        if self._temperature is not None:
            body["temperature"] = self._temperature
        if self._max_tokens is not None:
            body["max_length"] = self._max_tokens
        return f"{self._base_url}/api/v1/generate", body

    def _parse_response(self, data: dict) -> str:
        """Extract the completion text from the response body."""
        if self._format == "openai_chat":
            choices = data.get("choices")
            if not choices or "content" not in choices[0].get("message", {}):
                raise LLMError("Unexpected response format from OpenAI chat backend")
            return choices[0]["message"]["content"]

        if self._format == "openai":
            choices = data.get("choices")
            if not choices or "text" not in choices[0]:
                raise LLMError("Unexpected response format from OpenAI-compatible backend")
            return choices[0]["text"]

        # koboldcpp
        results = data.get("results")
        if not results or "text" not in results[0]:
            raise LLMError("Unexpected response format from KoboldCpp backend")
        return results[0]["text"]

    async def __call__(self, stage: str, prompt: str) -> str:
        url, body = self._build_request(prompt)
        logger.debug("llm call stage=%s url=%s prompt_len=%d", stage, url, len(prompt))

        try:
            async with httpx.AsyncClient(timeout=self._timeout) as client:
                resp = await client.post(url, json=body, headers=self._headers())
                resp.raise_for_status()
        except httpx.ConnectError as e:
            raise LLMError(f"Cannot connect to LLM backend at {self._base_url}") from e
        except httpx.HTTPStatusError as e:
            raise LLMError(
                f"LLM backend returned HTTP {e.response.status_code}"
            ) from e
        except httpx.TimeoutException as e:
            raise LLMError(f"LLM backend timed out after {self._timeout}s") from e

        text = self._parse_response(resp.json())
        logger.debug("llm response stage=%s len=%d", stage, len(text))
        return text


# ---------------------------------------------------------------------------
# LLMError — raised by HttpLLM for all connection and protocol failures
# ---------------------------------------------------------------------------

class LLMError(RuntimeError):
    """Raised when the LLM backend cannot be reached or returns an error."""
