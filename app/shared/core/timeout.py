"""
Bounded store operations.

Every workflow operation that touches the relational store runs under a
hard deadline. On timeout or a driver-level database failure the session
is rolled back and the caller sees a TransientStoreError, so no lock is
held across the failure boundary.
"""

import asyncio
import time
from collections.abc import Awaitable, Callable
from functools import wraps
from typing import Any, TypeVar

import structlog
from sqlalchemy.exc import DBAPIError, IntegrityError, OperationalError
from sqlalchemy.ext.asyncio import AsyncSession

from app.shared.core.config import get_settings
from app.shared.core.exceptions import TransientStoreError
from app.shared.core.ops_metrics import (
    DELETION_STORE_OPERATION_DURATION,
    DELETION_STORE_TRANSIENT_ERRORS_TOTAL,
)

logger = structlog.get_logger()

T = TypeVar("T")


async def _safe_rollback(db: AsyncSession | None) -> None:
    if db is None:
        return
    try:
        await db.rollback()
    except Exception as exc:  # pragma: no cover - connection already gone
        logger.warning("store_rollback_failed", error=str(exc))


def bounded_store_operation(
    operation: str,
) -> Callable[[Callable[..., Awaitable[T]]], Callable[..., Awaitable[T]]]:
    """
    Decorator for service methods whose instance exposes ``self.db``.

    Usage:
        @bounded_store_operation("approve_confirmation")
        async def approve(self, ...):
            ...
    """

    def decorator(func: Callable[..., Awaitable[T]]) -> Callable[..., Awaitable[T]]:
        @wraps(func)
        async def wrapper(self: Any, *args: Any, **kwargs: Any) -> T:
            timeout_seconds = get_settings().DELETION_STORE_TIMEOUT_SECONDS
            db: AsyncSession | None = getattr(self, "db", None)
            start_time = time.perf_counter()
            try:
                return await asyncio.wait_for(
                    func(self, *args, **kwargs), timeout=timeout_seconds
                )
            except asyncio.TimeoutError:
                await _safe_rollback(db)
                DELETION_STORE_TRANSIENT_ERRORS_TOTAL.labels(
                    operation=operation, reason="timeout"
                ).inc()
                logger.warning(
                    "store_operation_timed_out",
                    operation=operation,
                    timeout_seconds=timeout_seconds,
                )
                raise TransientStoreError(
                    f"Operation timed out after {timeout_seconds} seconds",
                    details={"operation": operation, "timeout_seconds": timeout_seconds},
                )
            except IntegrityError:
                await _safe_rollback(db)
                raise
            except (OperationalError, DBAPIError) as exc:
                await _safe_rollback(db)
                DELETION_STORE_TRANSIENT_ERRORS_TOTAL.labels(
                    operation=operation, reason="database"
                ).inc()
                logger.warning(
                    "store_operation_failed_transient",
                    operation=operation,
                    error=str(exc),
                    error_type=type(exc).__name__,
                )
                raise TransientStoreError(
                    "Store temporarily unavailable, retry later",
                    details={"operation": operation},
                ) from exc
            finally:
                DELETION_STORE_OPERATION_DURATION.labels(operation=operation).observe(
                    time.perf_counter() - start_time
                )

        return wrapper

    return decorator
