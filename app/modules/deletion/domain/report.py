from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any, Iterable
from uuid import UUID

from app.models.deletion import (
    DeletionConfirmation,
    DeletionRequest,
    DeletionRequestState,
    DeletionResourceKind,
)


def as_utc(value: datetime) -> datetime:
    # SQLite hands back naive datetimes; every stored timestamp is UTC.
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


@dataclass(frozen=True)
class DeletionRequestReport:
    id: UUID | None
    state: DeletionRequestState
    resource_kind: DeletionResourceKind
    resource_id: str
    created_at: datetime | None
    expires_at: datetime | None
    backoff_interval_seconds: int | None
    total: int
    confirmed: int
    pending_approver_ids: list[UUID] = field(default_factory=list)
    immediate: bool = False
    last_execution_error: str | None = None

    @property
    def is_terminal(self) -> bool:
        return self.state.is_terminal

    def to_payload(self) -> dict[str, Any]:
        return {
            "id": str(self.id) if self.id else None,
            "state": self.state.value,
            "resource_kind": self.resource_kind.value,
            "resource_id": self.resource_id,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "expires_at": self.expires_at.isoformat() if self.expires_at else None,
            "backoff_interval_seconds": self.backoff_interval_seconds,
            "confirmations": {"confirmed": self.confirmed, "total": self.total},
            "pending_approver_ids": [str(item) for item in self.pending_approver_ids],
            "immediate": self.immediate,
            "is_terminal": self.is_terminal,
        }


def build_deletion_report(
    request: DeletionRequest,
    confirmations: Iterable[DeletionConfirmation],
) -> DeletionRequestReport:
    """Project a request and its confirmations into a status summary."""
    rows = list(confirmations)
    pending = [row.approver_id for row in rows if row.confirmed_at is None]
    created_at = as_utc(request.created_at)
    return DeletionRequestReport(
        id=request.id,
        state=DeletionRequestState(request.state),
        resource_kind=DeletionResourceKind(request.resource_kind),
        resource_id=request.resource_id,
        created_at=created_at,
        expires_at=created_at + timedelta(seconds=int(request.backoff_interval_seconds)),
        backoff_interval_seconds=int(request.backoff_interval_seconds),
        total=len(rows),
        confirmed=len(rows) - len(pending),
        pending_approver_ids=pending,
        last_execution_error=request.last_execution_error,
    )


def build_immediate_report(
    resource_kind: DeletionResourceKind, resource_id: str
) -> DeletionRequestReport:
    """Report for a resource deleted without going through approval."""
    return DeletionRequestReport(
        id=None,
        state=DeletionRequestState.EXECUTED,
        resource_kind=resource_kind,
        resource_id=resource_id,
        created_at=None,
        expires_at=None,
        backoff_interval_seconds=None,
        total=0,
        confirmed=0,
        immediate=True,
    )
