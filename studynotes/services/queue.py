import uuid
from typing import Optional

import orjson
import structlog

from ..models import PublishResult, WorkItem

log = structlog.get_logger()

PROCESS_BATCH_TASK = "process_batch"


class TaskQueue:
    """Best-effort publication of work items onto the Celery broker.

    Each work item travels as a one-record batch ``[{messageId, body}]``; the
    worker reports failures per ``messageId``.
    """

    def __init__(self, celery_app, queue_name: Optional[str]):
        self.celery_app = celery_app
        self.queue_name = queue_name

    def publish(self, item: WorkItem) -> PublishResult:
        if not self.queue_name:
            log.warning("enqueue_skipped", task_id=item.id, reason="queue-name not set")
            return PublishResult(ok=False, skipped=True)

        message_id = str(uuid.uuid4())
        record = {
            "messageId": message_id,
            "body": orjson.dumps(item.model_dump(by_alias=True)).decode(),
        }
        try:
            self.celery_app.send_task(PROCESS_BATCH_TASK, args=[[record]], queue=self.queue_name)
        except Exception as exc:
            log.error("enqueue_failed", task_id=item.id, queue=self.queue_name, error=str(exc))
            return PublishResult(ok=False, error=str(exc))

        log.info("enqueued", task_id=item.id, queue=self.queue_name, message_id=message_id)
        return PublishResult(ok=True, message_id=message_id)
