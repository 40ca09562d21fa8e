# tests/services/test_notification_service.py

import json
import httpx
import pytest
from unittest.mock import AsyncMock

from orchestrator.services.notification_service import (
    NotifierRegistry, Notifier, LogNotifier, WebhookNotifier, JOB_FINISHED
)

pytestmark = pytest.mark.asyncio

async def test_webhook_posts_event_envelope():
    received = []

    def handler(request: httpx.Request) -> httpx.Response:
        received.append(json.loads(request.content))
        return httpx.Response(204)

    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    notifier = WebhookNotifier("https://hooks.example.com/releases", client=client)

    await notifier.notify(JOB_FINISHED, {"job_id": "job-1", "status": "completed"})
    await notifier.aclose()

    assert received[0]["event"] == JOB_FINISHED
    assert received[0]["payload"] == {"job_id": "job-1", "status": "completed"}
    assert "sent_at" in received[0]

async def test_failing_channel_does_not_block_others():
    client = httpx.AsyncClient(transport=httpx.MockTransport(lambda request: httpx.Response(500)))
    healthy = AsyncMock(spec=Notifier)
    healthy.notifier_type = "mock"
    registry = NotifierRegistry([WebhookNotifier("https://hooks.example.com/releases", client=client), healthy])

    errors = await registry.notify(JOB_FINISHED, {"job_id": "job-1"})

    assert errors == ["webhook: HTTPStatusError"]
    healthy.notify.assert_awaited_once_with(JOB_FINISHED, {"job_id": "job-1"})
    await registry.aclose()

async def test_from_settings_without_webhook(mocker):
    mocker.patch("orchestrator.services.notification_service.settings.NOTIFICATION_WEBHOOK_URL", None)
    registry = NotifierRegistry.from_settings()
    assert [type(n) for n in registry.notifiers] == [LogNotifier]
    assert await registry.notify(JOB_FINISHED, {}) == []
