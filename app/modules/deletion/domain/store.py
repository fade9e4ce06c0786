"""
Durable stores for deletion requests and their confirmations.

All mutations are conditional single-statement updates so the database,
not the caller's view of the row, decides whether a transition applies.
"""

from __future__ import annotations

from collections.abc import Callable, Iterable
from datetime import datetime
from typing import Any, cast
from uuid import UUID

from sqlalchemy import func, select, update
from sqlalchemy.engine import CursorResult
from sqlalchemy.ext.asyncio import AsyncSession

from app.models.deletion import (
    ACTIVE_DELETION_STATES,
    DeletionConfirmation,
    DeletionRequest,
    DeletionRequestState,
    DeletionResourceKind,
)
from app.models.environment import Environment, EnvironmentUser

_TRANSITION_TIMESTAMP_COLUMN = {
    DeletionRequestState.APPROVED: "approved_at",
    DeletionRequestState.EXECUTED: "executed_at",
    DeletionRequestState.EXPIRED: "expired_at",
    DeletionRequestState.REJECTED: "rejected_at",
}


def _rowcount(result: Any) -> int:
    return int(cast(CursorResult[Any], result).rowcount or 0)


class DeletionRequestStore:
    def __init__(self, db: AsyncSession):
        self.db = db

    async def get(self, request_id: UUID) -> DeletionRequest | None:
        return (
            await self.db.execute(
                select(DeletionRequest)
                .where(DeletionRequest.id == request_id)
                .execution_options(populate_existing=True)
            )
        ).scalar_one_or_none()

    async def get_in_scope(
        self,
        *,
        request_id: UUID,
        project_id: str,
        resource_kind: DeletionResourceKind,
        resource_id: str,
    ) -> DeletionRequest | None:
        return (
            await self.db.execute(
                select(DeletionRequest)
                .where(
                    DeletionRequest.id == request_id,
                    DeletionRequest.project_id == project_id,
                    DeletionRequest.resource_kind == resource_kind,
                    DeletionRequest.resource_id == resource_id,
                )
                .execution_options(populate_existing=True)
            )
        ).scalar_one_or_none()

    async def lock(self, request_id: UUID) -> DeletionRequest | None:
        """
        Load the request row with a row lock held until commit/rollback.

        Concurrent approvals of the same request queue up behind this lock.
        """
        return (
            await self.db.execute(
                select(DeletionRequest)
                .where(DeletionRequest.id == request_id)
                .with_for_update()
                .execution_options(populate_existing=True)
            )
        ).scalar_one_or_none()

    async def find_active_for_resource(
        self, resource_kind: DeletionResourceKind, resource_id: str
    ) -> DeletionRequest | None:
        return (
            await self.db.execute(
                select(DeletionRequest)
                .where(
                    DeletionRequest.resource_kind == resource_kind,
                    DeletionRequest.resource_id == resource_id,
                    DeletionRequest.state.in_(list(ACTIVE_DELETION_STATES)),
                )
                .execution_options(populate_existing=True)
            )
        ).scalar_one_or_none()

    async def insert(self, request: DeletionRequest) -> DeletionRequest:
        self.db.add(request)
        await self.db.flush()
        return request

    async def transition(
        self,
        request_id: UUID,
        *,
        from_states: Iterable[DeletionRequestState],
        to_state: DeletionRequestState,
        now: datetime,
        **extra_values: Any,
    ) -> bool:
        """Compare-and-set the request state. Returns True when this call moved it."""
        values: dict[str, Any] = {"state": to_state, "updated_at": now, **extra_values}
        timestamp_column = _TRANSITION_TIMESTAMP_COLUMN.get(to_state)
        if timestamp_column:
            values[timestamp_column] = now
        result = await self.db.execute(
            update(DeletionRequest)
            .where(DeletionRequest.id == request_id)
            .where(DeletionRequest.state.in_(list(from_states)))
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        return _rowcount(result) == 1

    async def record_execution_error(self, request_id: UUID, error: str, now: datetime) -> None:
        await self.db.execute(
            update(DeletionRequest)
            .where(DeletionRequest.id == request_id)
            .where(DeletionRequest.state == DeletionRequestState.APPROVED)
            .values(last_execution_error=error[:1000], updated_at=now)
            .execution_options(synchronize_session=False)
        )

    async def list_in_state(
        self, state: DeletionRequestState, *, limit: int
    ) -> list[DeletionRequest]:
        rows = await self.db.execute(
            select(DeletionRequest)
            .where(DeletionRequest.state == state)
            .order_by(DeletionRequest.created_at.asc())
            .limit(max(1, limit))
            .execution_options(populate_existing=True)
        )
        return list(rows.scalars().all())

    async def list_expirable(self, now: datetime, *, limit: int) -> list[DeletionRequest]:
        """Pending requests whose deadline is strictly before ``now``, earliest first."""
        rows = await self.db.execute(
            select(DeletionRequest)
            .where(DeletionRequest.state == DeletionRequestState.PENDING)
            .where(DeletionRequest.expires_at < now)
            .order_by(DeletionRequest.expires_at.asc(), DeletionRequest.id.asc())
            .limit(max(1, limit))
            .execution_options(populate_existing=True)
        )
        return list(rows.scalars().all())


class DeletionConfirmationStore:
    def __init__(self, db: AsyncSession):
        self.db = db

    async def insert_batch(
        self,
        request_id: UUID,
        approver_ids: Iterable[UUID],
        code_factory: Callable[[], str],
    ) -> list[DeletionConfirmation]:
        confirmations = [
            DeletionConfirmation(
                deletion_request_id=request_id,
                approver_id=approver_id,
                visible_code=code_factory(),
            )
            for approver_id in approver_ids
        ]
        self.db.add_all(confirmations)
        await self.db.flush()
        return confirmations

    async def list_for_request(self, request_id: UUID) -> list[DeletionConfirmation]:
        rows = await self.db.execute(
            select(DeletionConfirmation)
            .where(DeletionConfirmation.deletion_request_id == request_id)
            .order_by(DeletionConfirmation.created_at.asc(), DeletionConfirmation.id.asc())
            .execution_options(populate_existing=True)
        )
        return list(rows.scalars().all())

    async def list_candidates(
        self,
        *,
        project_id: str,
        resource_kind: DeletionResourceKind,
        resource_id: str,
        request_id: UUID | None = None,
    ) -> list[tuple[UUID, UUID, str]]:
        """
        Confirmations that a submitted code may match: those of every
        request on the resource within the caller's scope, whatever its
        state, so a re-submitted code still resolves after execution.
        Returns (confirmation id, request id, code) triples.
        """
        stmt = (
            select(
                DeletionConfirmation.id,
                DeletionConfirmation.deletion_request_id,
                DeletionConfirmation.visible_code,
            )
            .join(
                DeletionRequest,
                DeletionRequest.id == DeletionConfirmation.deletion_request_id,
            )
            .where(DeletionRequest.project_id == project_id)
            .where(DeletionRequest.resource_kind == resource_kind)
            .where(DeletionRequest.resource_id == resource_id)
        )
        if request_id is not None:
            stmt = stmt.where(DeletionRequest.id == request_id)
        rows = await self.db.execute(stmt)
        return [(row[0], row[1], str(row[2])) for row in rows.all()]

    async def get(self, confirmation_id: UUID) -> DeletionConfirmation | None:
        return (
            await self.db.execute(
                select(DeletionConfirmation)
                .where(DeletionConfirmation.id == confirmation_id)
                .execution_options(populate_existing=True)
            )
        ).scalar_one_or_none()

    async def mark_confirmed(self, confirmation_id: UUID, now: datetime) -> bool:
        """Set confirmed_at only if it is still null. True when this call wrote it."""
        result = await self.db.execute(
            update(DeletionConfirmation)
            .where(DeletionConfirmation.id == confirmation_id)
            .where(DeletionConfirmation.confirmed_at.is_(None))
            .values(confirmed_at=now)
            .execution_options(synchronize_session=False)
        )
        return _rowcount(result) == 1

    async def count_outstanding(self, request_id: UUID) -> int:
        result = await self.db.execute(
            select(func.count(DeletionConfirmation.id))
            .where(DeletionConfirmation.deletion_request_id == request_id)
            .where(DeletionConfirmation.confirmed_at.is_(None))
        )
        return int(result.scalar_one() or 0)


async def get_environment_in_scope(
    db: AsyncSession, *, project_id: str, environment_id: str, lock: bool = False
) -> Environment | None:
    stmt = select(Environment).where(
        Environment.id == environment_id,
        Environment.project_id == project_id,
    )
    if lock:
        stmt = stmt.with_for_update()
    return (await db.execute(stmt)).scalar_one_or_none()


async def list_environment_admin_ids(db: AsyncSession, environment_id: str) -> list[UUID]:
    rows = await db.execute(
        select(EnvironmentUser.user_id)
        .where(EnvironmentUser.environment_id == environment_id)
        .order_by(EnvironmentUser.created_at.asc())
    )
    return [row[0] for row in rows.all()]
