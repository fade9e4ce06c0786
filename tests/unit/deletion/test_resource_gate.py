from __future__ import annotations

from unittest.mock import AsyncMock

import pytest

from app.models.deletion import DeletionResourceKind
from app.modules.deletion.domain.collaborators import SqlResourceInspector
from app.modules.deletion.domain.gate import ResourceGate
from app.shared.core.exceptions import InvalidArgumentError


@pytest.mark.asyncio
async def test_gate_allows_immediate_delete_only_without_dependents() -> None:
    inspector = AsyncMock()
    inspector.resource_has_dependents.return_value = False
    gate = ResourceGate(inspector)
    assert await gate.can_delete_immediately(DeletionResourceKind.ENVIRONMENT, "env-1")

    inspector.resource_has_dependents.return_value = True
    assert not await gate.can_delete_immediately(DeletionResourceKind.ENVIRONMENT, "env-1")
    inspector.resource_has_dependents.assert_awaited_with(
        DeletionResourceKind.ENVIRONMENT, "env-1"
    )


@pytest.mark.asyncio
async def test_sql_inspector_counts_ingested_events(db, environment_seeder) -> None:
    await environment_seeder(db, environment_id="env-empty", event_count=0)
    await environment_seeder(db, environment_id="env-busy", event_count=1)
    gate = ResourceGate(SqlResourceInspector(db))

    assert await gate.can_delete_immediately(DeletionResourceKind.ENVIRONMENT, "env-empty")
    assert not await gate.can_delete_immediately(DeletionResourceKind.ENVIRONMENT, "env-busy")


@pytest.mark.asyncio
async def test_sql_inspector_rejects_unknown_resource_kind(db) -> None:
    inspector = SqlResourceInspector(db)
    with pytest.raises(InvalidArgumentError):
        await inspector.resource_has_dependents("bucket", "b-1")  # type: ignore[arg-type]
