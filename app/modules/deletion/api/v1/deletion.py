from __future__ import annotations

from uuid import UUID

from fastapi import APIRouter, Depends, Response, status
from sqlalchemy.ext.asyncio import AsyncSession

from app.modules.deletion.api.v1.schemas import (
    ApproverDeliveryResponse,
    DeletionConfirmationResponse,
    DeletionRequestCreateRequest,
    DeletionRequestCreateResponse,
    DeletionRequestResponse,
)
from app.modules.deletion.domain.service import DeletionApprovalService
from app.modules.deletion.domain.store import list_environment_admin_ids
from app.shared.core.auth import CurrentUser, get_current_user, require_admin_scope
from app.shared.db.session import get_db


router = APIRouter(tags=["Deletion"])

_ENVIRONMENT_PATH = "/project/{project_id}/environment/{environment_id}"


@router.post(
    f"{_ENVIRONMENT_PATH}/deletion_request",
    response_model=DeletionRequestCreateResponse,
    status_code=status.HTTP_201_CREATED,
)
async def create_deletion_request(
    project_id: str,
    environment_id: str,
    payload: DeletionRequestCreateRequest | None = None,
    current_user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
) -> DeletionRequestCreateResponse:
    actor = require_admin_scope(current_user, project_id, environment_id)
    payload = payload or DeletionRequestCreateRequest()

    approver_ids = payload.approver_ids
    if approver_ids is None:
        approver_ids = await list_environment_admin_ids(db, environment_id)
        await db.rollback()

    service = DeletionApprovalService(db)
    created = await service.create_deletion_request(
        actor,
        resource_id=environment_id,
        approver_ids=approver_ids,
        backoff_interval=payload.backoff_interval_seconds,
    )
    return DeletionRequestCreateResponse(
        deletion_request=DeletionRequestResponse.from_report(created.report),
        approvers=[ApproverDeliveryResponse.from_delivery(item) for item in created.deliveries],
    )


@router.get(
    f"{_ENVIRONMENT_PATH}/deletion_request/{{request_id}}",
    response_model=DeletionRequestResponse,
)
async def get_deletion_request(
    project_id: str,
    environment_id: str,
    request_id: UUID,
    current_user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
) -> DeletionRequestResponse:
    actor = require_admin_scope(current_user, project_id, environment_id)
    report = await DeletionApprovalService(db).get_deletion_request(actor, request_id)
    return DeletionRequestResponse.from_report(report)


@router.post(
    f"{_ENVIRONMENT_PATH}/deletion_confirmation/{{code}}",
    response_model=DeletionConfirmationResponse,
)
async def approve_deletion_confirmation(
    project_id: str,
    environment_id: str,
    code: str,
    current_user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
) -> DeletionConfirmationResponse:
    actor = require_admin_scope(current_user, project_id, environment_id)
    result = await DeletionApprovalService(db).approve_deletion_confirmation(actor, code)
    return DeletionConfirmationResponse(
        status="accepted" if result.recorded else "already_confirmed",
        quorum_reached=result.quorum_reached,
        deletion_request=DeletionRequestResponse.from_report(result.report),
    )


@router.post(
    f"{_ENVIRONMENT_PATH}/deletion_request/{{request_id}}/reject",
    response_model=DeletionRequestResponse,
)
async def reject_deletion_request(
    project_id: str,
    environment_id: str,
    request_id: UUID,
    current_user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
) -> DeletionRequestResponse:
    actor = require_admin_scope(current_user, project_id, environment_id)
    report = await DeletionApprovalService(db).reject_deletion_request(actor, request_id)
    return DeletionRequestResponse.from_report(report)


@router.delete(_ENVIRONMENT_PATH, status_code=status.HTTP_204_NO_CONTENT)
async def delete_environment(
    project_id: str,
    environment_id: str,
    current_user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
) -> Response:
    actor = require_admin_scope(current_user, project_id, environment_id)
    await DeletionApprovalService(db).delete_environment(actor, environment_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)
