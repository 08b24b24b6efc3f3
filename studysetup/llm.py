"""LLM providers for the study-setup agent.

OpenAIChatLLM calls the OpenAI chat completions API. MockLLM replays
scripted responses for testing.
"""

from __future__ import annotations

import json
import logging
import os
import socket
import urllib.error
import urllib.request
from typing import Protocol, runtime_checkable

logger = logging.getLogger(__name__)


class LLMError(Exception):
    """Raised when the LLM service fails for a reason other than those below."""


class LLMTimeoutError(LLMError, TimeoutError):
    """Raised when an LLM request does not finish in time."""


class RateLimitError(LLMError):
    """Raised when the LLM service rejects a request for rate limiting."""


class AuthError(LLMError):
    """Raised when the API key is missing or rejected."""


@runtime_checkable
class LLMProvider(Protocol):
    def complete(
        self,
        messages: list[dict],
        *,
        model: str,
        temperature: float,
        max_tokens: int,
        response_format: dict | None = None,
    ) -> str: ...


def _clean_key(key: str | None) -> str | None:
    if key is None:
        return None
    return key.replace("\n", "").strip() or None


class OpenAIChatLLM:
    """OpenAI chat completions provider.

    Requires OPENAI_API_KEY environment variable or explicit api_key param.
    """

    def __init__(
        self,
        api_key: str | None = None,
        base_url: str = "https://api.openai.com/v1",
        request_timeout: float = 120.0,
    ):
        self.api_key = _clean_key(api_key or os.environ.get("OPENAI_API_KEY"))
        if not self.api_key:
            raise AuthError(
                "OpenAIChatLLM requires an OpenAI API key. "
                "Pass api_key or set OPENAI_API_KEY env var."
            )
        self._base_url = base_url.rstrip("/")
        self._request_timeout = request_timeout

    def complete(
        self,
        messages: list[dict],
        *,
        model: str,
        temperature: float,
        max_tokens: int,
        response_format: dict | None = None,
    ) -> str:
        body = {
            "model": model,
            "messages": messages,
            "temperature": temperature,
            "max_tokens": max_tokens,
        }
        if response_format is not None:
            body["response_format"] = response_format

        req = urllib.request.Request(
            f"{self._base_url}/chat/completions",
            data=json.dumps(body).encode(),
            headers={
                "Content-Type": "application/json",
                "Authorization": f"Bearer {self.api_key}",
            },
        )
        try:
            resp = urllib.request.urlopen(req, timeout=self._request_timeout)
            data = json.loads(resp.read())
        except urllib.error.HTTPError as e:
            raise _error_for_status(e.code, _error_detail(e)) from e
        except (socket.timeout, TimeoutError) as e:
            raise LLMTimeoutError(
                f"LLM request timed out after {self._request_timeout:.0f} seconds"
            ) from e
        except urllib.error.URLError as e:
            if isinstance(e.reason, (socket.timeout, TimeoutError)):
                raise LLMTimeoutError(
                    f"LLM request timed out after {self._request_timeout:.0f} seconds"
                ) from e
            raise LLMError(f"LLM request failed: {e.reason}") from e

        try:
            content = data["choices"][0]["message"]["content"]
        except (KeyError, IndexError, TypeError) as e:
            raise LLMError("No content in LLM response") from e
        return content or ""


def _error_detail(e: urllib.error.HTTPError) -> str:
    try:
        payload = json.loads(e.read())
        return payload.get("error", {}).get("message", "") or str(e)
    except (ValueError, AttributeError):
        return str(e)


def _error_for_status(status: int, detail: str) -> LLMError:
    if status == 401 or status == 403:
        return AuthError(f"Invalid API key: {detail}")
    if status == 429:
        return RateLimitError(f"Rate limit exceeded: {detail}")
    if status in (408, 504):
        return LLMTimeoutError(f"LLM request timed out: {detail}")
    return LLMError(f"LLM request failed with status {status}: {detail}")


class MockLLM:
    """LLM that replays scripted responses, for testing.

    Each scripted item is either a string (returned) or an exception
    instance (raised). Calls are recorded in ``calls``.
    """

    def __init__(self, responses: list | None = None):
        self._responses = list(responses or [])
        self.calls: list[dict] = []

    def complete(self, messages: list[dict], **options) -> str:
        self.calls.append({"messages": list(messages), **options})
        if not self._responses:
            raise LLMError("MockLLM has no scripted responses left")
        item = self._responses.pop(0)
        if isinstance(item, BaseException):
            raise item
        return item
