"""
Collaborators consumed by the deletion approval workflow.

Each collaborator is a narrow Protocol so the workflow can be wired to
other transports (mailers, search indexes, SIEM sinks) without touching
the state machine. The defaults below operate on the relational store, the
mailer webhook and structured logs.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Protocol, runtime_checkable
from uuid import UUID

import structlog
from sqlalchemy import delete, exists, select
from sqlalchemy.ext.asyncio import AsyncSession

from app.models.deletion import DeletionResourceKind
from app.models.environment import Environment, EnvironmentUser, IngestedEvent
from app.shared.core.config import get_settings
from app.shared.core.exceptions import ApproverNotificationError, InvalidArgumentError
from app.shared.core.http import get_http_client
from app.shared.core.logging import audit_log

logger = structlog.get_logger()


@runtime_checkable
class ResourceInspector(Protocol):
    async def resource_has_dependents(
        self, resource_kind: DeletionResourceKind, resource_id: str
    ) -> bool: ...


@runtime_checkable
class DestructiveDeleter(Protocol):
    """Must be safe to invoke repeatedly with the same arguments."""

    async def delete_resource(
        self, resource_kind: DeletionResourceKind, resource_id: str
    ) -> None: ...


@runtime_checkable
class ApproverNotifier(Protocol):
    async def notify_approver(
        self, approver_id: UUID, request_id: UUID, code: str
    ) -> None: ...


@runtime_checkable
class AuditRecorder(Protocol):
    def record_audit_event(
        self,
        actor_id: UUID | None,
        action: str,
        target: dict[str, Any],
        fields: dict[str, Any] | None = None,
    ) -> None: ...


def _require_environment(resource_kind: DeletionResourceKind) -> None:
    if resource_kind != DeletionResourceKind.ENVIRONMENT:
        raise InvalidArgumentError(
            f"Unsupported resource kind: {getattr(resource_kind, 'value', resource_kind)}",
            details={"resource_kind": str(getattr(resource_kind, "value", resource_kind))},
        )


class SqlResourceInspector:
    """An environment has dependents once any event was ingested into it."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def resource_has_dependents(
        self, resource_kind: DeletionResourceKind, resource_id: str
    ) -> bool:
        _require_environment(resource_kind)
        result = await self.db.execute(
            select(
                exists().where(IngestedEvent.environment_id == resource_id)
            )
        )
        return bool(result.scalar())


class SqlEnvironmentDeleter:
    """
    Deletes an environment and everything recorded under it.

    Runs inside the caller's transaction; deleting rows that are already
    gone is a no-op, so repeated invocations converge.
    """

    def __init__(self, db: AsyncSession):
        self.db = db

    async def delete_resource(
        self, resource_kind: DeletionResourceKind, resource_id: str
    ) -> None:
        _require_environment(resource_kind)
        events = await self.db.execute(
            delete(IngestedEvent).where(IngestedEvent.environment_id == resource_id)
        )
        admins = await self.db.execute(
            delete(EnvironmentUser).where(EnvironmentUser.environment_id == resource_id)
        )
        environments = await self.db.execute(
            delete(Environment).where(Environment.id == resource_id)
        )
        logger.info(
            "environment_rows_deleted",
            environment_id=resource_id,
            events_deleted=int(events.rowcount or 0),
            admins_deleted=int(admins.rowcount or 0),
            environment_deleted=int(environments.rowcount or 0),
        )


@dataclass(slots=True)
class WebhookApproverNotifier:
    """
    Posts each issued code to the mailer webhook.

    The code travels only in the request body and is never logged. Any
    non-2xx response counts as a failed delivery.
    """

    url: str
    bearer_token: str | None = None
    timeout_seconds: float = 5.0

    async def notify_approver(self, approver_id: UUID, request_id: UUID, code: str) -> None:
        headers = {"Content-Type": "application/json"}
        if self.bearer_token:
            headers["Authorization"] = f"Bearer {self.bearer_token}"
        body = {
            "event_type": "deletion_confirmation_code_issued",
            "payload": {
                "approver_id": str(approver_id),
                "deletion_request_id": str(request_id),
                "confirmation_code": code,
            },
        }
        response = await get_http_client().post(
            self.url, json=body, headers=headers, timeout=self.timeout_seconds
        )
        if not 200 <= response.status_code < 300:
            raise ApproverNotificationError(
                f"Notification webhook returned HTTP {response.status_code}",
                details={"status_code": response.status_code},
            )
        logger.info(
            "deletion_approver_notified",
            approver_id=str(approver_id),
            deletion_request_id=str(request_id),
        )


class UnconfiguredApproverNotifier:
    """Stands in when no transport is configured; every delivery fails."""

    async def notify_approver(self, approver_id: UUID, request_id: UUID, code: str) -> None:
        raise ApproverNotificationError("No approver notification transport is configured")


def build_approver_notifier() -> ApproverNotifier:
    settings = get_settings()
    if settings.DELETION_NOTIFICATION_WEBHOOK_URL:
        return WebhookApproverNotifier(
            url=settings.DELETION_NOTIFICATION_WEBHOOK_URL,
            bearer_token=settings.DELETION_NOTIFICATION_WEBHOOK_TOKEN,
            timeout_seconds=settings.DELETION_NOTIFICATION_TIMEOUT_SECONDS,
        )
    return UnconfiguredApproverNotifier()


class StructlogAuditRecorder:
    """Writes audit events to the ``audit`` logger, keyed by target project."""

    def record_audit_event(
        self,
        actor_id: UUID | None,
        action: str,
        target: dict[str, Any],
        fields: dict[str, Any] | None = None,
    ) -> None:
        audit_log(
            action,
            user_id=str(actor_id) if actor_id else "system",
            project_id=str(target.get("project_id", "")),
            details={"target": target, "fields": fields or {}},
        )
