from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any
from uuid import UUID

import structlog
from sqlalchemy.ext.asyncio import AsyncSession

from app.models.deletion import DeletionRequestState
from app.modules.deletion.domain.service import DeletionApprovalService
from app.shared.core.exceptions import FatalDeletionError
from app.shared.core.ops_metrics import DELETION_EXPIRY_SWEEP_RUNS_TOTAL

logger = structlog.get_logger()


@dataclass(frozen=True)
class DeletionSweepResult:
    expired_ids: list[UUID]
    executed_ids: list[UUID] = field(default_factory=list)
    failed_ids: list[UUID] = field(default_factory=list)

    def to_payload(self) -> dict[str, Any]:
        return {
            "status": "completed",
            "expired_count": len(self.expired_ids),
            "executed_count": len(self.executed_ids),
            "failed_count": len(self.failed_ids),
            "expired_ids": [str(item) for item in self.expired_ids],
            "executed_ids": [str(item) for item in self.executed_ids],
            "failed_ids": [str(item) for item in self.failed_ids],
        }


class DeletionExpirySweeper:
    """
    Periodic entry point for an external scheduler.

    Expires pending requests past their backoff, then finishes approved
    requests whose destructive action did not complete (crash or exhausted
    retries on the approving call).
    """

    def __init__(self, db: AsyncSession, service: DeletionApprovalService | None = None):
        self.db = db
        self.service = service or DeletionApprovalService(db)

    async def run(self, now: datetime | None = None) -> DeletionSweepResult:
        try:
            expired = await self.service.expire_stale_requests(now=now)

            executed: list[UUID] = []
            failed: list[UUID] = []
            for request_id in await self.service.list_approved_request_ids():
                try:
                    report = await self.service.execute_approved_request(request_id)
                except FatalDeletionError:
                    failed.append(request_id)
                    continue
                if report.state == DeletionRequestState.EXECUTED:
                    executed.append(request_id)
        except Exception:
            DELETION_EXPIRY_SWEEP_RUNS_TOTAL.labels(status="failure").inc()
            raise

        DELETION_EXPIRY_SWEEP_RUNS_TOTAL.labels(status="success").inc()
        result = DeletionSweepResult(
            expired_ids=expired, executed_ids=executed, failed_ids=failed
        )
        logger.info(
            "deletion_sweep_completed",
            expired_count=len(expired),
            executed_count=len(executed),
            failed_count=len(failed),
        )
        return result
