"""Exception hierarchy and failure classification for the LLM client.

Every raw failure of an attempt (httpx exception, deadline, HTTP status) is
classified exactly once by ``classify_error`` before any retry decision.
"""

from __future__ import annotations

import asyncio
import re

import httpx

from llm_client.gateway.types import ErrorType

_STATUS_RE = re.compile(r"\b([1-5]\d{2})\b")


class LlmClientError(Exception):
    """Base exception for all errors raised by the client layer."""


class StreamingNotSupportedError(LlmClientError):
    """Raised when a streaming call targets an adapter without streaming."""

    def __init__(self, provider: str):
        super().__init__(f"Provider {provider} does not support streaming")
        self.provider = provider


class ClassifiedError(LlmClientError):
    """A failed attempt, classified for the retry policy.

    Attributes:
        type: One of network, timeout, rate_limit, api, unknown.
        status: HTTP status, set only for ``api`` errors.
        message: Human-readable description (backend message included).
        partial_content: Streamed content gathered before the failure.
    """

    def __init__(
        self,
        type: ErrorType,
        message: str,
        status: int | None = None,
        partial_content: str = "",
    ):
        super().__init__(message)
        self.type = ErrorType(type)
        self.message = message
        self.status = status
        self.partial_content = partial_content

    @property
    def retryable(self) -> bool:
        if self.type in (ErrorType.NETWORK, ErrorType.TIMEOUT, ErrorType.RATE_LIMIT):
            return True
        return self.type == ErrorType.API and self.status is not None and self.status >= 500

    def __repr__(self) -> str:
        return f"ClassifiedError(type={self.type.value!r}, status={self.status!r}, message={self.message!r})"


def _backend_message(response: httpx.Response) -> str:
    """Extract ``error.message`` from a backend error body, if any."""
    try:
        body = response.json()
    except ValueError:
        return ""
    if isinstance(body, list):  # Gemini sometimes wraps errors in a list
        body = body[0] if body else {}
    error = body.get("error") if isinstance(body, dict) else None
    if isinstance(error, dict):
        return str(error.get("message") or "")
    if isinstance(error, str):
        return error
    return ""


def raise_for_status(response: httpx.Response) -> None:
    """Raise ``httpx.HTTPStatusError`` for non-2xx, with the backend message attached."""
    if response.is_success:
        return
    message = f"API request failed: {response.status_code} {response.reason_phrase}. {_backend_message(response)}"
    raise httpx.HTTPStatusError(message.strip(), request=response.request, response=response)


def classify_error(exc: BaseException) -> ClassifiedError:
    """Map a raw attempt failure to a ClassifiedError."""
    if isinstance(exc, ClassifiedError):
        return exc

    if isinstance(exc, (asyncio.TimeoutError, httpx.TimeoutException)):
        return ClassifiedError(ErrorType.TIMEOUT, "Request timeout")

    message = str(exc) or exc.__class__.__name__

    # TimeoutException is a TransportError, so order matters
    if isinstance(exc, httpx.TransportError):
        return ClassifiedError(ErrorType.NETWORK, message)

    status: int | None = None
    if isinstance(exc, httpx.HTTPStatusError):
        status = exc.response.status_code
    elif isinstance(getattr(exc, "status_code", None), int):
        status = exc.status_code

    if status == 429 or (status is None and ("429" in message or "rate limit" in message.lower())):
        return ClassifiedError(ErrorType.RATE_LIMIT, message)

    if status is None and message.startswith("API request failed"):
        match = _STATUS_RE.search(message)
        if match:
            status = int(match.group(1))

    if status is not None:
        return ClassifiedError(ErrorType.API, message, status=status)

    return ClassifiedError(ErrorType.UNKNOWN, message)
