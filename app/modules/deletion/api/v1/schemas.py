from __future__ import annotations

from datetime import datetime
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field

from app.modules.deletion.domain.report import DeletionRequestReport
from app.modules.deletion.domain.service import ApproverDelivery


class DeletionRequestCreateRequest(BaseModel):
    model_config = ConfigDict(extra="forbid")

    # Defaults to the environment admins when omitted.
    approver_ids: list[UUID] | None = Field(default=None, max_length=100)
    backoff_interval_seconds: int | None = Field(default=None, gt=0)


class ConfirmationCounts(BaseModel):
    confirmed: int
    total: int


class DeletionRequestResponse(BaseModel):
    id: UUID | None = None
    state: str
    resource_kind: str
    resource_id: str
    created_at: datetime | None = None
    expires_at: datetime | None = None
    backoff_interval_seconds: int | None = None
    confirmations: ConfirmationCounts
    pending_approver_ids: list[UUID] = Field(default_factory=list)
    immediate: bool = False
    is_terminal: bool

    @classmethod
    def from_report(cls, report: DeletionRequestReport) -> "DeletionRequestResponse":
        return cls(
            id=report.id,
            state=report.state.value,
            resource_kind=report.resource_kind.value,
            resource_id=report.resource_id,
            created_at=report.created_at,
            expires_at=report.expires_at,
            backoff_interval_seconds=report.backoff_interval_seconds,
            confirmations=ConfirmationCounts(
                confirmed=report.confirmed, total=report.total
            ),
            pending_approver_ids=list(report.pending_approver_ids),
            immediate=report.immediate,
            is_terminal=report.is_terminal,
        )


class ApproverDeliveryResponse(BaseModel):
    approver_id: UUID
    notified: bool

    @classmethod
    def from_delivery(cls, delivery: ApproverDelivery) -> "ApproverDeliveryResponse":
        return cls(approver_id=delivery.approver_id, notified=delivery.delivered)


class DeletionRequestCreateResponse(BaseModel):
    deletion_request: DeletionRequestResponse
    approvers: list[ApproverDeliveryResponse] = Field(default_factory=list)


class DeletionConfirmationResponse(BaseModel):
    status: str  # accepted | already_confirmed
    quorum_reached: bool
    deletion_request: DeletionRequestResponse
