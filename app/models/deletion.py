from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from uuid import UUID, uuid4

from sqlalchemy import (
    CheckConstraint,
    DateTime,
    Enum as SQLEnum,
    ForeignKey,
    Index,
    Integer,
    String,
    UniqueConstraint,
    Uuid as PG_UUID,
    text,
)
from sqlalchemy.orm import Mapped, mapped_column

from app.shared.db.base import Base


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class DeletionResourceKind(str, Enum):
    ENVIRONMENT = "environment"


class DeletionRequestState(str, Enum):
    PENDING = "pending"
    APPROVED = "approved"
    EXECUTED = "executed"
    EXPIRED = "expired"
    REJECTED = "rejected"

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_DELETION_STATES


TERMINAL_DELETION_STATES = frozenset(
    {
        DeletionRequestState.EXECUTED,
        DeletionRequestState.EXPIRED,
        DeletionRequestState.REJECTED,
    }
)
ACTIVE_DELETION_STATES = frozenset(
    {DeletionRequestState.PENDING, DeletionRequestState.APPROVED}
)

# Partial index predicate: a resource may have at most one request that has
# not reached a terminal state.
_ACTIVE_STATE_PREDICATE = text("state IN ('pending', 'approved')")


def _enum_values(enum_cls: type[Enum]) -> list[str]:
    return [str(member.value) for member in enum_cls]


class DeletionRequest(Base):
    __tablename__ = "deletion_requests"
    __table_args__ = (
        Index(
            "uq_deletion_requests_active_resource",
            "resource_kind",
            "resource_id",
            unique=True,
            postgresql_where=_ACTIVE_STATE_PREDICATE,
            sqlite_where=_ACTIVE_STATE_PREDICATE,
        ),
        Index("ix_deletion_requests_state_created", "state", "created_at"),
        Index("ix_deletion_requests_state_expires", "state", "expires_at"),
        CheckConstraint(
            "backoff_interval_seconds > 0", name="backoff_interval_positive"
        ),
    )

    id: Mapped[UUID] = mapped_column(PG_UUID(), primary_key=True, default=uuid4)
    project_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    resource_kind: Mapped[DeletionResourceKind] = mapped_column(
        SQLEnum(
            DeletionResourceKind,
            name="deletion_resource_kind",
            native_enum=False,
            values_callable=_enum_values,
        ),
        nullable=False,
    )
    resource_id: Mapped[str] = mapped_column(String(64), nullable=False)
    state: Mapped[DeletionRequestState] = mapped_column(
        SQLEnum(
            DeletionRequestState,
            name="deletion_request_state",
            native_enum=False,
            values_callable=_enum_values,
        ),
        nullable=False,
        default=DeletionRequestState.PENDING,
    )
    backoff_interval_seconds: Mapped[int] = mapped_column(Integer, nullable=False)
    requested_by_user_id: Mapped[UUID | None] = mapped_column(PG_UUID(), nullable=True)
    last_execution_error: Mapped[str | None] = mapped_column(String(1000), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_utcnow
    )
    # created_at + backoff_interval_seconds; the expiry sweep selects on it.
    expires_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=_utcnow,
        onupdate=_utcnow,
    )
    approved_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    executed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    expired_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    rejected_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)


class DeletionConfirmation(Base):
    __tablename__ = "deletion_confirmations"
    __table_args__ = (
        UniqueConstraint(
            "deletion_request_id",
            "approver_id",
            name="uq_deletion_confirmation_request_approver",
        ),
    )

    id: Mapped[UUID] = mapped_column(PG_UUID(), primary_key=True, default=uuid4)
    deletion_request_id: Mapped[UUID] = mapped_column(
        PG_UUID(),
        ForeignKey("deletion_requests.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    approver_id: Mapped[UUID] = mapped_column(PG_UUID(), nullable=False)
    visible_code: Mapped[str] = mapped_column(String(64), nullable=False)
    confirmed_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_utcnow
    )
