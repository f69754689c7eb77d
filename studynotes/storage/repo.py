from contextlib import contextmanager
from typing import Dict, Iterable, List, Optional, Tuple

import redis
import structlog

from ..errors import DependencyError, NotFoundError, TaskExistsError
from .schema import TaskRecord, TaskSummary

log = structlog.get_logger()

SUMMARY_FIELDS = ("topic", "status", "createdAt", "updatedAt")


@contextmanager
def _store_call(op: str, task_id: Optional[str] = None):
    try:
        yield
    except redis.RedisError as exc:
        log.error("store_call_failed", op=op, task_id=task_id, error=str(exc))
        raise DependencyError(f"Task store {op} failed: {exc}") from exc


class Repo:
    """Tasks as Redis hashes plus a lexicographically ordered creation index.

    Index members are ``"{createdAt}|{id}"`` with score 0, so ``ZREVRANGEBYLEX``
    walks tasks newest first and a member doubles as the continuation key.
    """

    def __init__(self, client: redis.Redis, namespace: str):
        self.r = client
        self.namespace = namespace

    def _key(self, task_id: str) -> str:
        return f"{self.namespace}:task:{task_id}"

    @property
    def index_key(self) -> str:
        return f"{self.namespace}:tasks:by-created"

    @staticmethod
    def _member(created_at: str, task_id: str) -> str:
        return f"{created_at}|{task_id}"

    def create(self, rec: TaskRecord) -> None:
        """Write a new task; fails instead of overwriting an existing id."""
        key = self._key(rec.id)
        fields = rec.model_dump(mode="json", by_alias=True, exclude_none=True)
        fields.pop("id")

        def _put(pipe):
            if pipe.exists(key):
                raise TaskExistsError(f"Task {rec.id} already exists")
            pipe.multi()
            pipe.hset(key, mapping=fields)
            pipe.zadd(self.index_key, {self._member(rec.created_at, rec.id): 0})

        with _store_call("create", rec.id):
            self.r.transaction(_put, key)
        log.info("task_stored", task_id=rec.id, status=rec.status.value)

    def get(self, task_id: str) -> Optional[TaskRecord]:
        with _store_call("get", task_id):
            data = self.r.hgetall(self._key(task_id))
        if not data:
            return None
        return TaskRecord(id=task_id, **data)

    def update(self, task_id: str, fields: Dict[str, str], remove: Iterable[str] = ()) -> None:
        """Set and remove hash fields on an existing task.

        Never creates a record: a task deleted while the worker held it stays
        deleted.
        """
        key = self._key(task_id)
        remove = tuple(remove)

        def _update(pipe):
            if not pipe.exists(key):
                raise NotFoundError(f"Task {task_id} not found")
            pipe.multi()
            if fields:
                pipe.hset(key, mapping=fields)
            if remove:
                pipe.hdel(key, *remove)

        with _store_call("update", task_id):
            self.r.transaction(_update, key)

    def delete(self, task_id: str) -> None:
        key = self._key(task_id)

        def _delete(pipe):
            created_at = pipe.hget(key, "createdAt")
            pipe.multi()
            pipe.delete(key)
            if created_at:
                pipe.zrem(self.index_key, self._member(created_at, task_id))

        with _store_call("delete", task_id):
            self.r.transaction(_delete, key)

    def query_newest_first(
        self, limit: int, start_key: Optional[Dict[str, str]] = None
    ) -> Tuple[List[TaskSummary], Optional[Dict[str, str]]]:
        """Return one page of summaries and the key to resume after, if any."""
        upper = "+"
        if start_key:
            upper = "(" + self._member(start_key["createdAt"], start_key["id"])

        with _store_call("query"):
            members = self.r.zrevrangebylex(self.index_key, upper, "-", start=0, num=limit + 1)
            has_more = len(members) > limit
            members = members[:limit]
            pipe = self.r.pipeline(transaction=False)
            for member in members:
                pipe.hmget(self._key(member.rsplit("|", 1)[1]), SUMMARY_FIELDS)
            rows = pipe.execute() if members else []

        items: List[TaskSummary] = []
        for member, row in zip(members, rows):
            if row[0] is None:
                # deleted between the index read and the hash read
                continue
            items.append(TaskSummary(id=member.rsplit("|", 1)[1], **dict(zip(SUMMARY_FIELDS, row))))

        next_key = None
        if has_more and members:
            created_at, task_id = members[-1].rsplit("|", 1)
            next_key = {"createdAt": created_at, "id": task_id}
        return items, next_key
