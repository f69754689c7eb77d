from typing import Optional

import orjson
import redis
import structlog

from ..models import PublishResult

log = structlog.get_logger()

READY_SUBJECT = "Study notes ready"


class Notifier:
    """Fire-and-forget completion events over Redis pub/sub."""

    def __init__(self, client: redis.Redis, channel: Optional[str]):
        self.r = client
        self.channel = channel

    def publish(self, subject: str, message: str, **extra) -> PublishResult:
        if not self.channel:
            log.info("notify_skipped", reason="notify-channel not set")
            return PublishResult(ok=False, skipped=True)

        payload = orjson.dumps({"subject": subject, "message": message, **extra})
        try:
            receivers = self.r.publish(self.channel, payload)
        except Exception as exc:
            log.error("notify_failed", channel=self.channel, error=str(exc))
            return PublishResult(ok=False, error=str(exc))

        log.info("notified", channel=self.channel, receivers=receivers)
        return PublishResult(ok=True)

    def task_ready(self, task_id: str, topic: str) -> PublishResult:
        return self.publish(
            READY_SUBJECT,
            f'Notes on "{topic}" are ready. ID: {task_id}',
            id=task_id,
            topic=topic,
        )
