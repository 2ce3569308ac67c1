"""
Provider error wrapping, retry classification and user-facing messages.
"""

import asyncio
import errno
import json
from typing import Any

import httpx
import openai

from ..errors import DeskAgentError

RETRYABLE_ERROR_CODES = frozenset({
    "UND_ERR_SOCKET",
    "ECONNRESET",
    "ETIMEDOUT",
    "EPIPE",
    "ECONNABORTED",
    "ENETRESET",
    "ECONNREFUSED",
})
RETRYABLE_STATUS_CODES = frozenset({408, 429, 500, 502, 503, 504})
RETRYABLE_MESSAGE_MARKERS = ("terminated", "fetch failed", "socket")
CONTEXT_LIMIT_MARKERS = ("max_tokens", "context length", "model output limit")

TIMEOUT_MESSAGE = (
    "Request timed out. The model took too long to respond; "
    "try again, shorten the request or use a faster model."
)


class ProviderError(DeskAgentError):
    """A failed call to the model provider, with the raw response body kept."""

    def __init__(
        self,
        message: str,
        status: int | None = None,
        body: str | None = None,
        code: str | None = None,
        retryable: bool = False,
        retry_attempts: int = 0,
    ):
        super().__init__(message)
        self.status = status
        self.body = body
        self.code = code
        self.retryable = retryable
        self.retry_attempts = retry_attempts

    @classmethod
    def from_exception(cls, exc: BaseException, retry_attempts: int = 0) -> "ProviderError":
        if isinstance(exc, ProviderError):
            exc.retry_attempts = max(exc.retry_attempts, retry_attempts)
            return exc
        wrapped = cls(
            extract_error_message(exc),
            status=_status_of(exc),
            body=_body_of(exc),
            code=_code_of(exc),
            retryable=is_retryable_error(exc),
            retry_attempts=retry_attempts,
        )
        wrapped.__cause__ = exc
        return wrapped


def _status_of(exc: BaseException) -> int | None:
    if isinstance(exc, ProviderError):
        return exc.status
    if isinstance(exc, openai.APIStatusError):
        return exc.status_code
    if isinstance(exc, httpx.HTTPStatusError):
        return exc.response.status_code
    status = getattr(exc, "status", None) or getattr(exc, "status_code", None)
    return status if isinstance(status, int) else None


def _body_of(exc: BaseException) -> str | None:
    if isinstance(exc, ProviderError):
        return exc.body
    response = getattr(exc, "response", None)
    if isinstance(response, httpx.Response):
        try:
            return response.text
        except httpx.ResponseNotRead:
            return None
    return None


def _code_of(exc: BaseException) -> str | None:
    code = getattr(exc, "code", None)
    if isinstance(code, str):
        return code
    if isinstance(exc, OSError) and exc.errno is not None:
        return errno.errorcode.get(exc.errno)
    return None


def _is_timeout(exc: BaseException) -> bool:
    if isinstance(exc, (openai.APITimeoutError, httpx.TimeoutException, asyncio.TimeoutError, TimeoutError)):
        return True
    return "timed out" in str(exc).lower() or "timeout" in type(exc).__name__.lower()


def is_retryable_error(exc: BaseException) -> bool:
    """Whether a failed model call is a transient network-class failure."""
    if isinstance(exc, ProviderError) and exc.retryable:
        return True
    if _code_of(exc) in RETRYABLE_ERROR_CODES:
        return True
    if isinstance(exc, (ConnectionError, TimeoutError, asyncio.TimeoutError, httpx.TransportError, openai.APIConnectionError)):
        return True
    if _status_of(exc) in RETRYABLE_STATUS_CODES:
        return True
    message = str(exc).lower()
    if any(marker in message for marker in RETRYABLE_MESSAGE_MARKERS):
        return True
    cause = exc.__cause__ or exc.__context__
    if cause is not None and cause is not exc:
        if "other side closed" in str(cause).lower() or _code_of(cause) in RETRYABLE_ERROR_CODES:
            return True
    return False


def is_context_limit_error(exc: BaseException) -> bool:
    """A 400 telling us the input or requested output was too large."""
    if _status_of(exc) != 400:
        return False
    text = f"{exc} {_body_of(exc) or ''}".lower()
    return any(marker in text for marker in CONTEXT_LIMIT_MARKERS)


def _message_from_body(body: str) -> str | None:
    try:
        parsed: Any = json.loads(body)
    except ValueError:
        return body.strip() or None

    if isinstance(parsed, dict):
        detail = parsed.get("detail")
        if detail:
            return detail if isinstance(detail, str) else json.dumps(detail)
        error = parsed.get("error")
        if error:
            if isinstance(error, dict) and error.get("message"):
                return str(error["message"])
            return error if isinstance(error, str) else json.dumps(error)
    return json.dumps(parsed)


def extract_error_message(exc: BaseException) -> str:
    """Best-effort human-readable message for a failed model call."""
    if _is_timeout(exc):
        return TIMEOUT_MESSAGE

    status = _status_of(exc)
    message: str | None = None

    body = _body_of(exc)
    if body:
        message = _message_from_body(body)

    if not message:
        sdk_body = getattr(exc, "body", None)
        if isinstance(sdk_body, dict):
            error = sdk_body.get("error", sdk_body)
            if isinstance(error, dict) and error.get("message"):
                message = str(error["message"])

    if not message:
        message = str(exc) or type(exc).__name__

    if status and f"[{status}]" not in message and not message.startswith(str(status)):
        message = f"[{status}] {message}"
    return message
