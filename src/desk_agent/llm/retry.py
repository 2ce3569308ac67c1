"""
Exponential-backoff retry for streamed model calls.
"""

import asyncio
import inspect
from typing import Any, Awaitable, Callable, TypeVar

import structlog

from ..errors import DeskAgentError
from .errors import ProviderError, is_retryable_error

logger = structlog.get_logger()

T = TypeVar("T")

MAX_STREAM_RETRIES = 3
RETRY_BASE_DELAY = 0.5


async def retry_with_backoff(
    operation: Callable[[int], Awaitable[T]],
    *,
    max_retries: int = MAX_STREAM_RETRIES,
    base_delay: float = RETRY_BASE_DELAY,
    on_retry: Callable[[int, float, BaseException], Any] | None = None,
    sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    is_retryable: Callable[[BaseException], bool] = is_retryable_error,
) -> T:
    """Run ``operation(attempt)`` until it succeeds or retries run out.

    The delay before retry ``n`` (1-based) is ``base_delay * 2 ** (n - 1)``.
    Non-retryable failures and the failure after the last retry are raised
    as ``ProviderError`` carrying ``retryable`` and ``retry_attempts``.
    """
    attempt = 0
    while True:
        try:
            return await operation(attempt)
        except ProviderError as exc:
            failure: Exception = exc
        except DeskAgentError:
            raise
        except Exception as exc:
            failure = exc

        retryable = is_retryable(failure)
        if not retryable or attempt >= max_retries:
            logger.error(
                "Model call failed",
                error=str(failure),
                retryable=retryable,
                retry_attempts=attempt,
            )
            wrapped = ProviderError.from_exception(failure, retry_attempts=attempt)
            wrapped.retryable = retryable
            raise wrapped

        delay = base_delay * (2 ** attempt)
        attempt += 1
        logger.warning(
            "Retryable model error, backing off",
            attempt=attempt,
            max_retries=max_retries,
            delay=delay,
            error=str(failure),
        )
        if on_retry is not None:
            result = on_retry(attempt, delay, failure)
            if inspect.isawaitable(result):
                await result
        await sleep(delay)
