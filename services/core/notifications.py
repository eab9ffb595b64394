"""
NOTIFICATIONS MODULE

User-facing (message, severity) notices. The in-memory outbox backs the
/notifications endpoint; the webhook notifier forwards to an external
transport. Delivery failures are logged and never reach the caller.
"""
from collections import defaultdict, deque
from dataclasses import dataclass, field
from datetime import datetime
from typing import Dict, List, Optional

import httpx

from config import NOTIFICATION_OUTBOX_SIZE, NOTIFY_WEBHOOK_URL
from logging_config import get_logger
from models import utcnow

logger = get_logger(__name__)

SEVERITIES = ("success", "info", "warning", "error")


@dataclass
class Notification:
    owner: str
    message: str
    severity: str = "info"
    created_at: datetime = field(default_factory=utcnow)


class Notifier:
    """Base notifier"""

    async def notify(self, owner: str, message: str, severity: str = "info") -> bool:
        raise NotImplementedError


class InMemoryNotifier(Notifier):
    """Bounded per-owner outbox, newest last"""

    def __init__(self, size: int = NOTIFICATION_OUTBOX_SIZE):
        self._outboxes: Dict[str, deque] = defaultdict(lambda: deque(maxlen=size))

    async def notify(self, owner: str, message: str, severity: str = "info") -> bool:
        if severity not in SEVERITIES:
            severity = "info"
        self._outboxes[owner].append(Notification(owner=owner, message=message, severity=severity))
        return True

    def outbox(self, owner: str) -> List[Notification]:
        return list(self._outboxes.get(owner, ()))


class WebhookNotifier(Notifier):
    """POSTs notifications to a configured URL"""

    def __init__(self, url: str = NOTIFY_WEBHOOK_URL, timeout: float = 10.0, transport: Optional[httpx.AsyncBaseTransport] = None):
        self.url = url
        self.timeout = timeout
        self.transport = transport
        self.enabled = bool(url)

    async def notify(self, owner: str, message: str, severity: str = "info") -> bool:
        if not self.enabled:
            logger.debug("webhook_notifier_disabled")
            return False

        try:
            async with httpx.AsyncClient(transport=self.transport) as client:
                response = await client.post(
                    self.url,
                    json={"owner": owner, "message": message, "severity": severity},
                    timeout=self.timeout
                )
                return response.status_code < 300
        except Exception as e:
            # Any failure, including a malformed URL, stays inside the notifier
            logger.warning("webhook_notification_failed", owner=owner, error=str(e), error_type=type(e).__name__)
            return False


class CompositeNotifier(Notifier):
    """Fan-out to several notifiers"""

    def __init__(self, *notifiers: Notifier):
        self.notifiers = list(notifiers)

    async def notify(self, owner: str, message: str, severity: str = "info") -> bool:
        delivered = False
        for notifier in self.notifiers:
            delivered = await notifier.notify(owner, message, severity) or delivered
        return delivered
