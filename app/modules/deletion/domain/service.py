from __future__ import annotations

import math
from collections.abc import Callable, Iterable
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any
from uuid import UUID, uuid4

import structlog
from sqlalchemy.exc import DBAPIError, IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from app.models.deletion import (
    DeletionConfirmation,
    DeletionRequest,
    DeletionRequestState,
    DeletionResourceKind,
)
from app.modules.deletion.domain.codes import (
    codes_match,
    generate_confirmation_code,
    normalize_submitted_code,
)
from app.modules.deletion.domain.collaborators import (
    ApproverNotifier,
    AuditRecorder,
    DestructiveDeleter,
    ResourceInspector,
    SqlEnvironmentDeleter,
    SqlResourceInspector,
    StructlogAuditRecorder,
    build_approver_notifier,
)
from app.modules.deletion.domain.gate import ResourceGate
from app.modules.deletion.domain.report import (
    DeletionRequestReport,
    as_utc,
    build_deletion_report,
    build_immediate_report,
)
from app.modules.deletion.domain.store import (
    DeletionConfirmationStore,
    DeletionRequestStore,
    get_environment_in_scope,
    list_environment_admin_ids,
)
from app.shared.core.auth import CurrentUser
from app.shared.core.config import get_settings
from app.shared.core.exceptions import (
    ConflictError,
    FatalDeletionError,
    ForbiddenError,
    InvalidArgumentError,
    ResourceNotFoundError,
)
from app.shared.core.ops_metrics import (
    DELETION_CONFIRMATION_EVENTS_TOTAL,
    DELETION_EXECUTION_ATTEMPTS_TOTAL,
    DELETION_IMMEDIATE_TOTAL,
    DELETION_NOTIFICATION_FAILURES_TOTAL,
    DELETION_REQUEST_TRANSITIONS_TOTAL,
)
from app.shared.core.retry import retry_idempotent
from app.shared.core.timeout import bounded_store_operation

logger = structlog.get_logger()


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _unique_approvers(values: Iterable[UUID]) -> list[UUID]:
    ordered: list[UUID] = []
    for value in values:
        if value not in ordered:
            ordered.append(value)
    return ordered


@dataclass(frozen=True)
class ApproverDelivery:
    approver_id: UUID
    delivered: bool


@dataclass(frozen=True)
class DeletionRequestCreated:
    report: DeletionRequestReport
    deliveries: list[ApproverDelivery] = field(default_factory=list)


@dataclass(frozen=True)
class ConfirmationResult:
    report: DeletionRequestReport
    # False when the code had already been confirmed (idempotent re-submission).
    recorded: bool
    # True only for the single call that moved the request to approved.
    quorum_reached: bool


@dataclass(frozen=True)
class _RecordedConfirmation:
    request_id: UUID
    recorded: bool
    quorum_reached: bool
    state: DeletionRequestState


class DeletionApprovalService:
    def __init__(
        self,
        db: AsyncSession,
        *,
        inspector: ResourceInspector | None = None,
        deleter: DestructiveDeleter | None = None,
        notifier: ApproverNotifier | None = None,
        auditor: AuditRecorder | None = None,
        clock: Callable[[], datetime] | None = None,
    ):
        self.db = db
        self.requests = DeletionRequestStore(db)
        self.confirmations = DeletionConfirmationStore(db)
        self.gate = ResourceGate(inspector or SqlResourceInspector(db))
        self.deleter = deleter or SqlEnvironmentDeleter(db)
        self.notifier = notifier or build_approver_notifier()
        self.auditor = auditor or StructlogAuditRecorder()
        self._clock = clock or _utcnow

    # ------------------------------------------------------------------
    # Create
    # ------------------------------------------------------------------

    async def create_deletion_request(
        self,
        actor: CurrentUser,
        *,
        resource_id: str,
        approver_ids: Iterable[UUID],
        resource_kind: DeletionResourceKind | str = DeletionResourceKind.ENVIRONMENT,
        backoff_interval: timedelta | int | float | None = None,
    ) -> DeletionRequestCreated:
        """
        Delete the resource now if it is empty, otherwise open a pending
        request with one confirmation code per approver.

        Codes are handed to the notifier only; they never appear in the
        returned value.
        """
        kind = self._normalize_kind(resource_kind)
        backoff_seconds = self._resolve_backoff_seconds(backoff_interval)
        approvers = _unique_approvers(approver_ids)

        created = await self._create_request_rows(
            actor,
            kind=kind,
            resource_id=str(resource_id),
            approvers=approvers,
            backoff_seconds=backoff_seconds,
        )
        if isinstance(created, DeletionRequestReport):
            return DeletionRequestCreated(report=created)

        request, confirmations = created
        deliveries = await self._notify_approvers(request.id, confirmations)
        return DeletionRequestCreated(
            report=build_deletion_report(request, confirmations),
            deliveries=deliveries,
        )

    @bounded_store_operation("create_deletion_request")
    async def _create_request_rows(
        self,
        actor: CurrentUser,
        *,
        kind: DeletionResourceKind,
        resource_id: str,
        approvers: list[UUID],
        backoff_seconds: int,
    ) -> DeletionRequestReport | tuple[DeletionRequest, list[DeletionConfirmation]]:
        project_id = self._assert_resource_in_scope(actor, kind, resource_id)

        # Row lock on the environment serializes with event ingestion, so the
        # emptiness check below cannot race a concurrent insert.
        environment = await get_environment_in_scope(
            self.db, project_id=project_id, environment_id=resource_id, lock=True
        )
        if environment is None:
            await self.db.rollback()
            raise ResourceNotFoundError("Environment not found")

        existing = await self.requests.find_active_for_resource(kind, resource_id)
        now = self._clock()
        if (
            existing is not None
            and existing.state == DeletionRequestState.PENDING
            and self._is_past_backoff(existing, now)
        ):
            stale_id = existing.id
            await self._expire_request(stale_id, kind, now)
            await self.db.commit()
            logger.info("deletion_request_expired_on_create", deletion_request_id=str(stale_id))
            # The commit released the environment lock.
            environment = await get_environment_in_scope(
                self.db, project_id=project_id, environment_id=resource_id, lock=True
            )
            if environment is None:
                await self.db.rollback()
                raise ResourceNotFoundError("Environment not found")
            existing = await self.requests.find_active_for_resource(kind, resource_id)

        if existing is not None:
            details = {
                "deletion_request_id": str(existing.id),
                "state": existing.state.value,
            }
            await self.db.rollback()
            raise ConflictError(
                "An outstanding deletion request already exists for this resource",
                details=details,
            )

        if await self.gate.can_delete_immediately(kind, resource_id):
            await self._destroy_now(kind, resource_id, project_id)
            DELETION_IMMEDIATE_TOTAL.labels(resource_kind=kind.value).inc()
            logger.info(
                "deletion_performed_immediately",
                resource_kind=kind.value,
                resource_id=resource_id,
                actor_id=str(actor.id),
            )
            self._audit(
                actor.id,
                "environment.delete",
                project_id=project_id,
                target={"resource_kind": kind.value, "resource_id": resource_id},
                fields={"immediate": True},
            )
            return build_immediate_report(kind, resource_id)

        if not approvers:
            await self.db.rollback()
            raise InvalidArgumentError(
                "A deletion request requires at least one eligible approver"
            )

        admins = set(await list_environment_admin_ids(self.db, resource_id))
        ineligible = [str(item) for item in approvers if item not in admins]
        if ineligible:
            await self.db.rollback()
            raise InvalidArgumentError(
                "Approvers must be admins of the environment",
                details={"ineligible_approver_ids": ineligible},
            )

        request = DeletionRequest(
            id=uuid4(),
            project_id=project_id,
            resource_kind=kind,
            resource_id=resource_id,
            state=DeletionRequestState.PENDING,
            backoff_interval_seconds=backoff_seconds,
            requested_by_user_id=actor.id,
            created_at=now,
            expires_at=now + timedelta(seconds=backoff_seconds),
            updated_at=now,
        )
        try:
            await self.requests.insert(request)
            confirmations = await self.confirmations.insert_batch(
                request.id, approvers, generate_confirmation_code
            )
            await self.db.commit()
        except IntegrityError:
            # Lost the race against a concurrent creator for the same resource.
            await self.db.rollback()
            raise ConflictError(
                "An outstanding deletion request already exists for this resource"
            )

        DELETION_REQUEST_TRANSITIONS_TOTAL.labels(
            resource_kind=kind.value, state=DeletionRequestState.PENDING.value
        ).inc()
        logger.info(
            "deletion_request_created",
            deletion_request_id=str(request.id),
            resource_kind=kind.value,
            resource_id=resource_id,
            approver_count=len(confirmations),
            backoff_interval_seconds=backoff_seconds,
        )
        self._audit(
            actor.id,
            "deletion_request.create",
            project_id=project_id,
            target={"deletion_request_id": str(request.id), "resource_id": resource_id},
            fields={
                "resource_kind": kind.value,
                "approver_ids": [str(item) for item in approvers],
                "backoff_interval_seconds": backoff_seconds,
            },
        )
        return request, confirmations

    async def _notify_approvers(
        self, request_id: UUID, confirmations: list[DeletionConfirmation]
    ) -> list[ApproverDelivery]:
        deliveries: list[ApproverDelivery] = []
        for confirmation in confirmations:
            try:
                await self.notifier.notify_approver(
                    confirmation.approver_id, request_id, confirmation.visible_code
                )
                deliveries.append(ApproverDelivery(confirmation.approver_id, True))
            except Exception as exc:
                DELETION_NOTIFICATION_FAILURES_TOTAL.inc()
                logger.warning(
                    "deletion_approver_notification_failed",
                    deletion_request_id=str(request_id),
                    approver_id=str(confirmation.approver_id),
                    error=str(exc),
                    error_type=type(exc).__name__,
                )
                deliveries.append(ApproverDelivery(confirmation.approver_id, False))
        return deliveries

    # ------------------------------------------------------------------
    # Read
    # ------------------------------------------------------------------

    @bounded_store_operation("get_deletion_request")
    async def get_deletion_request(
        self, actor: CurrentUser, request_id: UUID
    ) -> DeletionRequestReport:
        project_id, kind, resource_id = self._actor_scope(actor)
        request = await self.requests.get_in_scope(
            request_id=request_id,
            project_id=project_id,
            resource_kind=kind,
            resource_id=resource_id,
        )
        if request is None:
            raise ResourceNotFoundError("Deletion request not found")
        confirmations = await self.confirmations.list_for_request(request.id)
        return build_deletion_report(request, confirmations)

    # ------------------------------------------------------------------
    # Approve
    # ------------------------------------------------------------------

    async def approve_deletion_confirmation(
        self,
        actor: CurrentUser,
        code: str,
        *,
        request_id: UUID | None = None,
    ) -> ConfirmationResult:
        """
        Record an approver's confirmation code.

        Re-submitting a confirmed code succeeds without writing. The call that
        completes the quorum moves the request to approved; any call that
        observes an approved request drives it to executed.
        """
        outcome = await self._record_confirmation(actor, code, request_id=request_id)

        if outcome.state == DeletionRequestState.APPROVED:
            try:
                await self._execute_approved(outcome.request_id)
            except FatalDeletionError:
                # The approval itself is durable; the request stays approved
                # and a later call or the sweep retries the deletion.
                logger.error(
                    "deletion_execution_deferred",
                    deletion_request_id=str(outcome.request_id),
                )

        report = await self._load_report(outcome.request_id)
        return ConfirmationResult(
            report=report,
            recorded=outcome.recorded,
            quorum_reached=outcome.quorum_reached,
        )

    @bounded_store_operation("approve_deletion_confirmation")
    async def _record_confirmation(
        self,
        actor: CurrentUser,
        code: str,
        *,
        request_id: UUID | None,
    ) -> _RecordedConfirmation:
        project_id, kind, resource_id = self._actor_scope(actor)
        submitted = normalize_submitted_code(code)

        match: tuple[UUID, UUID] | None = None
        if submitted:
            candidates = await self.confirmations.list_candidates(
                project_id=project_id,
                resource_kind=kind,
                resource_id=resource_id,
                request_id=request_id,
            )
            # Compare against every candidate; no early exit on a hit.
            for confirmation_id, owner_request_id, expected in candidates:
                if codes_match(expected, submitted) and match is None:
                    match = (confirmation_id, owner_request_id)

        if match is None:
            DELETION_CONFIRMATION_EVENTS_TOTAL.labels(outcome="not_found").inc()
            logger.info("deletion_confirmation_not_found", actor_id=str(actor.id))
            raise ResourceNotFoundError("Deletion confirmation not found")

        confirmation_id, owner_request_id = match
        request = await self.requests.lock(owner_request_id)
        if request is None:
            await self.db.rollback()
            raise ResourceNotFoundError("Deletion confirmation not found")

        confirmation = await self.confirmations.get(confirmation_id)
        already_confirmed = confirmation is not None and confirmation.confirmed_at is not None
        now = self._clock()

        if already_confirmed:
            state = DeletionRequestState(request.state)
            await self.db.rollback()
            DELETION_CONFIRMATION_EVENTS_TOTAL.labels(outcome="idempotent").inc()
            return _RecordedConfirmation(
                request_id=owner_request_id,
                recorded=False,
                quorum_reached=False,
                state=state,
            )

        if request.state != DeletionRequestState.PENDING:
            state = request.state
            await self.db.rollback()
            raise ConflictError(
                f"Deletion request is already {state.value}",
                details={"deletion_request_id": str(owner_request_id), "state": state.value},
            )

        if self._is_past_backoff(request, now):
            await self._expire_request(owner_request_id, kind, now)
            await self.db.commit()
            raise ConflictError(
                "Deletion request has expired",
                details={"deletion_request_id": str(owner_request_id), "state": "expired"},
            )

        recorded = await self.confirmations.mark_confirmed(confirmation_id, now)
        outstanding = await self.confirmations.count_outstanding(request.id)
        quorum_reached = False
        if outstanding == 0:
            quorum_reached = await self.requests.transition(
                request.id,
                from_states=[DeletionRequestState.PENDING],
                to_state=DeletionRequestState.APPROVED,
                now=now,
            )
        await self.db.commit()

        DELETION_CONFIRMATION_EVENTS_TOTAL.labels(
            outcome="recorded" if recorded else "idempotent"
        ).inc()
        if recorded:
            logger.info(
                "deletion_confirmation_recorded",
                deletion_request_id=str(request.id),
                confirmation_id=str(confirmation_id),
                outstanding=outstanding,
            )
            self._audit(
                actor.id,
                "deletion_confirmation.approve",
                project_id=project_id,
                target={
                    "deletion_request_id": str(request.id),
                    "confirmation_id": str(confirmation_id),
                },
            )
        if quorum_reached:
            DELETION_REQUEST_TRANSITIONS_TOTAL.labels(
                resource_kind=kind.value, state=DeletionRequestState.APPROVED.value
            ).inc()
            logger.info("deletion_quorum_reached", deletion_request_id=str(request.id))

        state = (
            DeletionRequestState.APPROVED
            if quorum_reached or outstanding == 0
            else DeletionRequestState.PENDING
        )
        return _RecordedConfirmation(
            request_id=request.id,
            recorded=recorded,
            quorum_reached=quorum_reached,
            state=state,
        )

    # ------------------------------------------------------------------
    # Reject
    # ------------------------------------------------------------------

    @bounded_store_operation("reject_deletion_request")
    async def reject_deletion_request(
        self, actor: CurrentUser, request_id: UUID
    ) -> DeletionRequestReport:
        """An approver vetoes a pending request."""
        project_id, kind, resource_id = self._actor_scope(actor)
        request = await self.requests.get_in_scope(
            request_id=request_id,
            project_id=project_id,
            resource_kind=kind,
            resource_id=resource_id,
        )
        if request is None:
            raise ResourceNotFoundError("Deletion request not found")

        request = await self.requests.lock(request.id)
        if request is None:
            await self.db.rollback()
            raise ResourceNotFoundError("Deletion request not found")

        confirmations = await self.confirmations.list_for_request(request.id)
        if actor.id not in {row.approver_id for row in confirmations}:
            await self.db.rollback()
            raise ForbiddenError("Only an approver of this request may reject it")

        now = self._clock()
        moved = await self.requests.transition(
            request.id,
            from_states=[DeletionRequestState.PENDING],
            to_state=DeletionRequestState.REJECTED,
            now=now,
        )
        if not moved:
            state = request.state
            await self.db.rollback()
            raise ConflictError(
                f"Deletion request is already {state.value}",
                details={"deletion_request_id": str(request_id), "state": state.value},
            )
        await self.db.commit()

        DELETION_REQUEST_TRANSITIONS_TOTAL.labels(
            resource_kind=kind.value, state=DeletionRequestState.REJECTED.value
        ).inc()
        logger.info(
            "deletion_request_rejected",
            deletion_request_id=str(request_id),
            actor_id=str(actor.id),
        )
        self._audit(
            actor.id,
            "deletion_request.reject",
            project_id=project_id,
            target={"deletion_request_id": str(request_id), "resource_id": resource_id},
        )
        return await self._load_report(request_id)

    # ------------------------------------------------------------------
    # Execute
    # ------------------------------------------------------------------

    async def execute_approved_request(self, request_id: UUID) -> DeletionRequestReport:
        """
        Drive an approved request to executed.

        Raises FatalDeletionError when the destructive action keeps failing;
        the request then stays approved for operator follow-up.
        """
        await self._execute_approved(request_id)
        return await self._load_report(request_id)

    @bounded_store_operation("execute_deletion")
    async def _execute_approved(self, request_id: UUID) -> bool:
        request = await self.requests.get(request_id)
        if request is None:
            raise ResourceNotFoundError("Deletion request not found")
        if request.state != DeletionRequestState.APPROVED:
            return False

        kind = DeletionResourceKind(request.resource_kind)
        resource_id = request.resource_id
        project_id = request.project_id
        await self.db.rollback()

        async def _attempt() -> bool:
            try:
                locked = await self.requests.lock(request_id)
                if locked is None or locked.state != DeletionRequestState.APPROVED:
                    # Another caller completed the transition.
                    await self.db.rollback()
                    return False
                await self.deleter.delete_resource(kind, resource_id)
                moved = await self.requests.transition(
                    request_id,
                    from_states=[DeletionRequestState.APPROVED],
                    to_state=DeletionRequestState.EXECUTED,
                    now=self._clock(),
                    last_execution_error=None,
                )
                await self.db.commit()
            except Exception:
                await self.db.rollback()
                DELETION_EXECUTION_ATTEMPTS_TOTAL.labels(
                    resource_kind=kind.value, result="failure"
                ).inc()
                raise
            DELETION_EXECUTION_ATTEMPTS_TOTAL.labels(
                resource_kind=kind.value, result="success"
            ).inc()
            return moved

        try:
            executed = await retry_idempotent("destructive_deletion", _attempt)
        except DBAPIError:
            raise
        except Exception as exc:
            await self._record_execution_failure(request_id, kind, exc)
            raise FatalDeletionError(
                "Destructive deletion failed after retries",
                details={"deletion_request_id": str(request_id)},
            ) from exc

        if executed:
            DELETION_REQUEST_TRANSITIONS_TOTAL.labels(
                resource_kind=kind.value, state=DeletionRequestState.EXECUTED.value
            ).inc()
            logger.info(
                "deletion_request_executed",
                deletion_request_id=str(request_id),
                resource_kind=kind.value,
                resource_id=resource_id,
            )
            self._audit(
                None,
                "environment.delete",
                project_id=project_id,
                target={"resource_kind": kind.value, "resource_id": resource_id},
                fields={"deletion_request_id": str(request_id), "immediate": False},
            )
        return executed

    async def _record_execution_failure(
        self, request_id: UUID, kind: DeletionResourceKind, exc: Exception
    ) -> None:
        DELETION_EXECUTION_ATTEMPTS_TOTAL.labels(
            resource_kind=kind.value, result="exhausted"
        ).inc()
        logger.critical(
            "deletion_execution_failed_fatal",
            deletion_request_id=str(request_id),
            error=str(exc),
            error_type=type(exc).__name__,
        )
        await self.requests.record_execution_error(
            request_id, f"{type(exc).__name__}: {exc}", self._clock()
        )
        await self.db.commit()

    async def _destroy_now(
        self, kind: DeletionResourceKind, resource_id: str, project_id: str
    ) -> None:
        async def _attempt() -> bool:
            try:
                # A failed attempt rolled back and released the environment
                # lock, so every attempt re-locks and re-checks emptiness.
                environment = await get_environment_in_scope(
                    self.db, project_id=project_id, environment_id=resource_id, lock=True
                )
                if environment is None:
                    await self.db.rollback()
                    return True
                active = await self.requests.find_active_for_resource(kind, resource_id)
                if active is not None or not await self.gate.can_delete_immediately(
                    kind, resource_id
                ):
                    await self.db.rollback()
                    return False
                await self.deleter.delete_resource(kind, resource_id)
                await self.db.commit()
            except Exception:
                await self.db.rollback()
                raise
            return True

        try:
            deleted = await retry_idempotent("destructive_deletion", _attempt)
        except DBAPIError:
            raise
        except Exception as exc:
            DELETION_EXECUTION_ATTEMPTS_TOTAL.labels(
                resource_kind=kind.value, result="exhausted"
            ).inc()
            logger.critical(
                "immediate_deletion_failed_fatal",
                resource_kind=kind.value,
                resource_id=resource_id,
                error=str(exc),
            )
            raise FatalDeletionError(
                "Destructive deletion failed after retries",
                details={"resource_kind": kind.value, "resource_id": resource_id},
            ) from exc

        if not deleted:
            logger.warning(
                "immediate_deletion_aborted_not_empty",
                resource_kind=kind.value,
                resource_id=resource_id,
            )
            raise ConflictError(
                "Environment received recorded data before it could be deleted; "
                "an approved deletion request is required",
                details={"resource_kind": kind.value, "resource_id": resource_id},
            )

    # ------------------------------------------------------------------
    # Expiry
    # ------------------------------------------------------------------

    async def _expire_request(
        self, request_id: UUID, kind: DeletionResourceKind, now: datetime
    ) -> bool:
        moved = await self.requests.transition(
            request_id,
            from_states=[DeletionRequestState.PENDING],
            to_state=DeletionRequestState.EXPIRED,
            now=now,
        )
        if moved:
            DELETION_REQUEST_TRANSITIONS_TOTAL.labels(
                resource_kind=kind.value, state=DeletionRequestState.EXPIRED.value
            ).inc()
        return moved

    @bounded_store_operation("expire_stale_requests")
    async def expire_stale_requests(self, now: datetime | None = None) -> list[UUID]:
        """
        Expire every pending request whose backoff interval has elapsed
        without reaching quorum. Returns the ids this call expired.

        Requests are taken in deadline order, one committed batch of
        DELETION_EXPIRY_SWEEP_LIMIT at a time.
        """
        sweep_time = now or self._clock()
        limit = max(1, get_settings().DELETION_EXPIRY_SWEEP_LIMIT)

        expired: list[UUID] = []
        while True:
            batch = [
                (request.id, DeletionResourceKind(request.resource_kind))
                for request in await self.requests.list_expirable(sweep_time, limit=limit)
            ]
            moved_in_batch = 0
            for request_id, kind in batch:
                if await self._expire_request(request_id, kind, sweep_time):
                    expired.append(request_id)
                    moved_in_batch += 1
            await self.db.commit()
            if len(batch) < limit or moved_in_batch == 0:
                break

        if expired:
            logger.info(
                "deletion_requests_expired",
                count=len(expired),
                deletion_request_ids=[str(item) for item in expired],
            )
        return expired

    async def list_approved_request_ids(self) -> list[UUID]:
        limit = get_settings().DELETION_EXPIRY_SWEEP_LIMIT
        rows = await self.requests.list_in_state(DeletionRequestState.APPROVED, limit=limit)
        ids = [row.id for row in rows]
        await self.db.rollback()
        return ids

    # ------------------------------------------------------------------
    # Direct environment deletion
    # ------------------------------------------------------------------

    async def delete_environment(
        self, actor: CurrentUser, environment_id: str
    ) -> DeletionRequestReport:
        """
        Delete an environment outright.

        Allowed only when it is empty or an outstanding request for it has
        been approved; in the latter case this completes that request.
        """
        kind = DeletionResourceKind.ENVIRONMENT
        approved_request_id = await self._resolve_direct_deletion(actor, environment_id)
        if approved_request_id is None:
            return build_immediate_report(kind, environment_id)
        return await self.execute_approved_request(approved_request_id)

    @bounded_store_operation("delete_environment")
    async def _resolve_direct_deletion(
        self, actor: CurrentUser, environment_id: str
    ) -> UUID | None:
        kind = DeletionResourceKind.ENVIRONMENT
        project_id = self._assert_resource_in_scope(actor, kind, environment_id)
        environment = await get_environment_in_scope(
            self.db, project_id=project_id, environment_id=environment_id, lock=True
        )
        if environment is None:
            await self.db.rollback()
            raise ResourceNotFoundError("Environment not found")

        active = await self.requests.find_active_for_resource(kind, environment_id)
        if active is not None and active.state == DeletionRequestState.APPROVED:
            request_id = active.id
            await self.db.rollback()
            return request_id
        if active is not None:
            details = {"deletion_request_id": str(active.id), "state": active.state.value}
            await self.db.rollback()
            raise ConflictError(
                "Deletion request is still awaiting confirmation", details=details
            )

        if not await self.gate.can_delete_immediately(kind, environment_id):
            await self.db.rollback()
            raise ConflictError(
                "Environment holds recorded data; an approved deletion request is required"
            )

        await self._destroy_now(kind, environment_id, project_id)
        DELETION_IMMEDIATE_TOTAL.labels(resource_kind=kind.value).inc()
        self._audit(
            actor.id,
            "environment.delete",
            project_id=project_id,
            target={"resource_kind": kind.value, "resource_id": environment_id},
            fields={"immediate": True},
        )
        return None

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    @bounded_store_operation("load_deletion_report")
    async def _load_report(self, request_id: UUID) -> DeletionRequestReport:
        request = await self.requests.get(request_id)
        if request is None:
            raise ResourceNotFoundError("Deletion request not found")
        confirmations = await self.confirmations.list_for_request(request_id)
        report = build_deletion_report(request, confirmations)
        await self.db.rollback()
        return report

    def _is_past_backoff(self, request: DeletionRequest, now: datetime) -> bool:
        expires_at = as_utc(request.created_at) + timedelta(
            seconds=int(request.backoff_interval_seconds)
        )
        return as_utc(now) > expires_at

    def _actor_scope(self, actor: CurrentUser) -> tuple[str, DeletionResourceKind, str]:
        if not actor.environment_id:
            raise ForbiddenError("Environment scope required")
        return actor.project_id, DeletionResourceKind.ENVIRONMENT, actor.environment_id

    def _assert_resource_in_scope(
        self, actor: CurrentUser, kind: DeletionResourceKind, resource_id: str
    ) -> str:
        if kind != DeletionResourceKind.ENVIRONMENT:
            raise InvalidArgumentError(f"Unsupported resource kind: {kind.value}")
        if actor.environment_id is not None and actor.environment_id != resource_id:
            raise ForbiddenError("Environment access denied")
        return actor.project_id

    def _normalize_kind(self, value: DeletionResourceKind | str) -> DeletionResourceKind:
        try:
            return DeletionResourceKind(getattr(value, "value", value))
        except ValueError:
            raise InvalidArgumentError(
                f"Unsupported resource kind: {value}",
                details={"resource_kind": str(value)},
            )

    def _resolve_backoff_seconds(self, value: timedelta | int | float | None) -> int:
        settings = get_settings()
        if value is None:
            return settings.DELETION_DEFAULT_BACKOFF_SECONDS

        if isinstance(value, timedelta):
            seconds = value.total_seconds()
        elif isinstance(value, (int, float)) and not isinstance(value, bool):
            seconds = float(value)
        else:
            raise InvalidArgumentError("backoff_interval must be a duration")

        if not math.isfinite(seconds):
            raise InvalidArgumentError("backoff_interval must be a finite duration")
        if seconds != int(seconds):
            raise InvalidArgumentError("backoff_interval must be a whole number of seconds")
        if not (
            settings.DELETION_MIN_BACKOFF_SECONDS
            <= seconds
            <= settings.DELETION_MAX_BACKOFF_SECONDS
        ):
            raise InvalidArgumentError(
                "backoff_interval is outside the allowed range",
                details={
                    "min_seconds": settings.DELETION_MIN_BACKOFF_SECONDS,
                    "max_seconds": settings.DELETION_MAX_BACKOFF_SECONDS,
                },
            )
        return int(seconds)

    def _audit(
        self,
        actor_id: UUID | None,
        action: str,
        *,
        project_id: str,
        target: dict[str, Any],
        fields: dict[str, Any] | None = None,
    ) -> None:
        try:
            self.auditor.record_audit_event(
                actor_id, action, {"project_id": project_id, **target}, fields
            )
        except Exception as exc:
            logger.warning("audit_event_record_failed", action=action, error=str(exc))
