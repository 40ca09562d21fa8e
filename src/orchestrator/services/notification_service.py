# orchestrator/services/notification_service.py

import logging
from typing import Any, Dict, List, Optional

import httpx

from orchestrator.core.config import settings
from orchestrator.utils.timeutils import utcnow

logger = logging.getLogger(__name__)

# 事件名
PROPOSAL_CREATED = "proposal.created"
PROPOSAL_APPROVED = "proposal.approved"
PROPOSAL_REJECTED = "proposal.rejected"
JOB_FINISHED = "job.finished"

class Notifier:
    notifier_type = "base"

    async def notify(self, event: str, payload: Dict[str, Any]) -> None:
        raise NotImplementedError

    async def aclose(self) -> None:
        return None

class LogNotifier(Notifier):
    notifier_type = "log"

    async def notify(self, event: str, payload: Dict[str, Any]) -> None:
        logger.info("[notify] %s %s", event, payload)

class WebhookNotifier(Notifier):
    notifier_type = "webhook"

    def __init__(self, url: str, timeout: float = 10.0, client: Optional[httpx.AsyncClient] = None):
        self.url = url
        self._client = client or httpx.AsyncClient(timeout=timeout)

    async def notify(self, event: str, payload: Dict[str, Any]) -> None:
        body = {"event": event, "payload": payload, "sent_at": utcnow().isoformat()}
        response = await self._client.post(self.url, json=body)
        response.raise_for_status()

    async def aclose(self) -> None:
        await self._client.aclose()

class NotifierRegistry:
    """
    把一个事件分发给所有已启用的通知渠道。
    通知是尽力而为的: 单个渠道失败只记日志，不会中断编排流程。
    """

    def __init__(self, notifiers: Optional[List[Notifier]] = None):
        self.notifiers: List[Notifier] = list(notifiers or [])

    @classmethod
    def from_settings(cls) -> "NotifierRegistry":
        notifiers: List[Notifier] = [LogNotifier()]
        if settings.NOTIFICATION_WEBHOOK_URL:
            notifiers.append(WebhookNotifier(settings.NOTIFICATION_WEBHOOK_URL, settings.NOTIFICATION_TIMEOUT_SECONDS))
        return cls(notifiers)

    def register(self, notifier: Notifier) -> None:
        self.notifiers.append(notifier)

    async def notify(self, event: str, payload: Dict[str, Any]) -> List[str]:
        errors: List[str] = []
        for notifier in self.notifiers:
            try:
                await notifier.notify(event, payload)
            except Exception as exc:
                logger.warning("Notifier '%s' failed for event %s: %s", notifier.notifier_type, event, exc, exc_info=True)
                errors.append(f"{notifier.notifier_type}: {exc.__class__.__name__}")
        return errors

    async def aclose(self) -> None:
        for notifier in self.notifiers:
            await notifier.aclose()
