"""
Retry Logic with Exponential Backoff

Retries idempotent collaborator calls (the destructive deletion) with
tenacity before the caller gives up and surfaces a fatal condition.
"""
from typing import Any, Awaitable, Callable, TypeVar

import structlog
from tenacity import (
    AsyncRetrying,
    RetryError,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from app.shared.core.config import get_settings

logger = structlog.get_logger()
T = TypeVar("T")


def _log_before_sleep(operation: str) -> Callable[[Any], None]:
    def _before_sleep(retry_state: Any) -> None:
        outcome = retry_state.outcome
        error = outcome.exception() if outcome is not None else None
        logger.warning(
            "operation_failed_will_retry",
            operation_type=operation,
            attempt=retry_state.attempt_number,
            error=str(error) if error else None,
            error_type=type(error).__name__ if error else None,
        )

    return _before_sleep


async def retry_idempotent(
    operation: str,
    func: Callable[..., Awaitable[T]],
    *args: Any,
    max_attempts: int | None = None,
    exceptions: tuple[type[BaseException], ...] = (Exception,),
    **kwargs: Any,
) -> T:
    """
    Execute an idempotent coroutine with exponential backoff.

    Raises the last underlying exception once all attempts are exhausted.
    """
    settings = get_settings()
    attempts = max_attempts or settings.DELETION_EXECUTION_MAX_ATTEMPTS
    retrying = AsyncRetrying(
        stop=stop_after_attempt(attempts),
        wait=wait_exponential(
            multiplier=settings.DELETION_EXECUTION_RETRY_MIN_WAIT,
            min=settings.DELETION_EXECUTION_RETRY_MIN_WAIT,
            max=settings.DELETION_EXECUTION_RETRY_MAX_WAIT,
        ),
        retry=retry_if_exception_type(exceptions),
        before_sleep=_log_before_sleep(operation),
        reraise=True,
    )
    try:
        async for attempt in retrying:
            with attempt:
                return await func(*args, **kwargs)
    except RetryError as exc:  # pragma: no cover - reraise=True unwraps
        raise exc.last_attempt.exception() or exc
    raise RuntimeError("Unexpected retry exhaustion")  # pragma: no cover
