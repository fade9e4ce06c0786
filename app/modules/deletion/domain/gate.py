from __future__ import annotations

import structlog

from app.models.deletion import DeletionResourceKind
from app.modules.deletion.domain.collaborators import ResourceInspector

logger = structlog.get_logger()


class ResourceGate:
    """
    Decides whether a resource can be deleted without human approval.

    Only a resource with no recorded dependents bypasses the workflow. A
    resource that holds any dependent data, however little, always goes
    through approval.
    """

    def __init__(self, inspector: ResourceInspector):
        self.inspector = inspector

    async def can_delete_immediately(
        self, resource_kind: DeletionResourceKind, resource_id: str
    ) -> bool:
        has_dependents = await self.inspector.resource_has_dependents(
            resource_kind, resource_id
        )
        logger.debug(
            "deletion_gate_evaluated",
            resource_kind=resource_kind.value,
            resource_id=resource_id,
            has_dependents=has_dependents,
        )
        return not has_dependents
