import base64
import binascii
import uuid
from typing import Any, Dict, Optional

import orjson
import structlog

from ..errors import InvalidPayloadError, NotFoundError, ValidationError
from ..models import CreatedTask, TaskPage, WorkItem
from ..storage.repo import Repo
from ..storage.schema import TaskRecord, TaskStatus, utc_now_iso
from .queue import TaskQueue

log = structlog.get_logger()

DEFAULT_LIMIT = 25
MAX_LIMIT = 100


def encode_cursor(key: Optional[Dict[str, str]]) -> Optional[str]:
    if not key:
        return None
    return base64.b64encode(orjson.dumps(key)).decode()


def decode_cursor(cursor: Optional[str]) -> Optional[Dict[str, str]]:
    if not cursor:
        return None
    try:
        key = orjson.loads(base64.b64decode(cursor, validate=True))
    except (binascii.Error, ValueError) as exc:
        raise InvalidPayloadError("Invalid cursor") from exc
    if not isinstance(key, dict) or not isinstance(key.get("createdAt"), str) or not isinstance(key.get("id"), str):
        raise InvalidPayloadError("Invalid cursor")
    return key


def parse_limit(raw: Any) -> int:
    if raw is None or raw == "":
        return DEFAULT_LIMIT
    try:
        limit = int(raw)
    except (TypeError, ValueError) as exc:
        raise InvalidPayloadError("Query parameter 'limit' must be an integer") from exc
    if limit < 1:
        raise InvalidPayloadError("Query parameter 'limit' must be positive")
    return min(limit, MAX_LIMIT)


class TaskService:
    """Front door for the task lifecycle: create, list, get, delete."""

    def __init__(self, repo: Repo, queue: TaskQueue):
        self.repo = repo
        self.queue = queue

    def create(self, topic: Any) -> CreatedTask:
        if not isinstance(topic, str) or not topic.strip():
            raise ValidationError("Field 'topic' is required")
        topic = topic.strip()

        now = utc_now_iso()
        rec = TaskRecord(
            id=str(uuid.uuid4()),
            topic=topic,
            status=TaskStatus.QUEUED,
            created_at=now,
            updated_at=now,
            research_md="",
        )
        self.repo.create(rec)

        # Best effort: the task stays QUEUED if the publish does not go through.
        self.queue.publish(WorkItem(id=rec.id, topic=topic, requested_at=now))
        return CreatedTask(id=rec.id, topic=topic, status=rec.status, created_at=now)

    def list(self, limit: Any = None, cursor: Optional[str] = None) -> TaskPage:
        limit = parse_limit(limit)
        start_key = decode_cursor(cursor)
        items, next_key = self.repo.query_newest_first(limit, start_key)
        log.info("tasks_listed", count=len(items), has_more=next_key is not None)
        return TaskPage(items=[i.to_api() for i in items], cursor=encode_cursor(next_key))

    def get(self, task_id: str) -> TaskRecord:
        rec = self.repo.get(task_id)
        if rec is None:
            log.info("task_not_found", task_id=task_id)
            raise NotFoundError("Not Found")
        return rec

    def delete(self, task_id: str) -> None:
        self.repo.delete(task_id)
        log.info("task_deleted", task_id=task_id)
