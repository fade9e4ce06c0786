import json
from types import SimpleNamespace
from uuid import uuid4

import httpx
import pytest
import pytest_asyncio
import respx

import app.modules.deletion.domain.collaborators as collaborators_module
from app.modules.deletion.domain.collaborators import (
    UnconfiguredApproverNotifier,
    WebhookApproverNotifier,
    build_approver_notifier,
)
from app.shared.core.exceptions import ApproverNotificationError
from app.shared.core.http import close_http_client

WEBHOOK_URL = "https://mailer.example.com/hooks/deletion-codes"


@pytest_asyncio.fixture(autouse=True)
async def _close_shared_client():
    yield
    await close_http_client()


@pytest.mark.asyncio
@respx.mock
async def test_webhook_notifier_posts_code_to_mailer():
    route = respx.post(WEBHOOK_URL).mock(return_value=httpx.Response(202))
    approver_id, request_id = uuid4(), uuid4()
    notifier = WebhookApproverNotifier(url=WEBHOOK_URL, bearer_token="mailer-token")

    await notifier.notify_approver(approver_id, request_id, "ab" * 16)

    assert route.called
    sent = route.calls.last.request
    assert sent.headers["Authorization"] == "Bearer mailer-token"
    assert json.loads(sent.content) == {
        "event_type": "deletion_confirmation_code_issued",
        "payload": {
            "approver_id": str(approver_id),
            "deletion_request_id": str(request_id),
            "confirmation_code": "ab" * 16,
        },
    }


@pytest.mark.asyncio
@respx.mock
async def test_webhook_notifier_omits_auth_header_without_token():
    route = respx.post(WEBHOOK_URL).mock(return_value=httpx.Response(200))

    await WebhookApproverNotifier(url=WEBHOOK_URL).notify_approver(uuid4(), uuid4(), "c" * 32)

    assert "Authorization" not in route.calls.last.request.headers


@pytest.mark.asyncio
@respx.mock
async def test_webhook_notifier_raises_on_error_status():
    respx.post(WEBHOOK_URL).mock(return_value=httpx.Response(503))

    with pytest.raises(ApproverNotificationError) as exc:
        await WebhookApproverNotifier(url=WEBHOOK_URL).notify_approver(uuid4(), uuid4(), "c" * 32)
    assert exc.value.details == {"status_code": 503}


@pytest.mark.asyncio
@respx.mock
async def test_webhook_notifier_propagates_transport_errors():
    respx.post(WEBHOOK_URL).mock(side_effect=httpx.ConnectError("refused"))

    with pytest.raises(httpx.ConnectError):
        await WebhookApproverNotifier(url=WEBHOOK_URL).notify_approver(uuid4(), uuid4(), "c" * 32)


@pytest.mark.asyncio
async def test_unconfigured_notifier_never_claims_delivery():
    with pytest.raises(ApproverNotificationError):
        await UnconfiguredApproverNotifier().notify_approver(uuid4(), uuid4(), "c" * 32)


def test_build_approver_notifier_uses_webhook_when_configured(monkeypatch):
    monkeypatch.setattr(
        collaborators_module,
        "get_settings",
        lambda: SimpleNamespace(
            DELETION_NOTIFICATION_WEBHOOK_URL=WEBHOOK_URL,
            DELETION_NOTIFICATION_WEBHOOK_TOKEN="mailer-token",
            DELETION_NOTIFICATION_TIMEOUT_SECONDS=2.5,
        ),
    )

    notifier = build_approver_notifier()

    assert notifier == WebhookApproverNotifier(
        url=WEBHOOK_URL, bearer_token="mailer-token", timeout_seconds=2.5
    )


def test_build_approver_notifier_without_url_is_unconfigured(monkeypatch):
    monkeypatch.setattr(
        collaborators_module,
        "get_settings",
        lambda: SimpleNamespace(
            DELETION_NOTIFICATION_WEBHOOK_URL=None,
            DELETION_NOTIFICATION_WEBHOOK_TOKEN=None,
            DELETION_NOTIFICATION_TIMEOUT_SECONDS=5.0,
        ),
    )

    assert isinstance(build_approver_notifier(), UnconfiguredApproverNotifier)
