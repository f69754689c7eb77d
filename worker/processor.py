from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Optional

import orjson
import pydantic
import redis
import structlog

from studynotes.errors import ValidationError
from studynotes.models import WorkItem
from studynotes.services import parameters as p
from studynotes.services.llm import LLM
from studynotes.services.notify import Notifier
from studynotes.storage.repo import Repo
from studynotes.storage.schema import TaskStatus, utc_now_iso

log = structlog.get_logger()


@dataclass
class BatchReport:
    """Message ids the transport must redeliver."""

    failures: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {"batchItemFailures": [{"itemIdentifier": m} for m in self.failures]}


class MalformedWorkItem(ValidationError):
    pass


def parse_work_item(body: Any) -> WorkItem:
    try:
        data = orjson.loads(body) if isinstance(body, (str, bytes)) else body
        return WorkItem.model_validate(data)
    except (orjson.JSONDecodeError, pydantic.ValidationError) as exc:
        raise MalformedWorkItem("Message must contain id and topic") from exc


def recover_task_id(body: Any) -> Optional[str]:
    try:
        data = orjson.loads(body) if isinstance(body, (str, bytes)) else body
    except orjson.JSONDecodeError:
        return None
    task_id = data.get("id") if isinstance(data, dict) else None
    return task_id if isinstance(task_id, str) and task_id else None


class TaskWorker:
    """Drives each work item through PROCESSING -> DONE | ERROR.

    Records are independent: a failure is confined to its own record, reported
    in the BatchReport and, where the task id is known, written back as ERROR.
    """

    def __init__(self, repo: Repo, llm: LLM, notifier: Optional[Notifier] = None):
        self.repo = repo
        self.llm = llm
        self.notifier = notifier

    def process_batch(self, records: Iterable[Dict[str, Any]]) -> BatchReport:
        report = BatchReport()
        for record in records:
            message_id = record.get("messageId")
            log.info("record_start", message_id=message_id)
            try:
                self.process_record(record)
            except MalformedWorkItem as exc:
                log.error("record_malformed", message_id=message_id, error=str(exc))
                report.failures.append(message_id)
            except Exception as exc:
                log.error("record_failed", message_id=message_id, error=str(exc))
                report.failures.append(message_id)
                self._mark_error(record.get("body"), exc)
            else:
                log.info("record_done", message_id=message_id)
        log.info("batch_done", failed=len(report.failures), batch_item_failures=report.failures)
        return report

    def process_record(self, record: Dict[str, Any]) -> None:
        item = parse_work_item(record.get("body"))
        log.info("record_body", task_id=item.id, topic=item.topic)

        self.repo.update(
            item.id,
            {"status": TaskStatus.PROCESSING.value, "updatedAt": utc_now_iso()},
            remove=("error",),
        )

        markdown = self.llm.generate(item.topic)

        self.repo.update(
            item.id,
            {"status": TaskStatus.DONE.value, "researchMd": markdown, "updatedAt": utc_now_iso()},
            remove=("error",),
        )
        log.info("task_done", task_id=item.id, length=len(markdown))

        if self.notifier is not None:
            self.notifier.task_ready(item.id, item.topic)

    def _mark_error(self, body: Any, exc: Exception) -> None:
        task_id = recover_task_id(body)
        if not task_id:
            return
        try:
            self.repo.update(
                task_id,
                {"status": TaskStatus.ERROR.value, "error": str(exc) or type(exc).__name__, "updatedAt": utc_now_iso()},
            )
            log.warning("task_marked_error", task_id=task_id)
        except Exception as nested:
            log.error("mark_error_failed", task_id=task_id, error=str(nested))


def handle_batch(
    records: List[Dict[str, Any]],
    config_cache: p.ConfigCache,
    client: redis.Redis,
    timeout: float = 300.0,
    **llm_kwargs,
) -> BatchReport:
    """Process one delivered batch; without configuration every record fails."""
    log.info("batch_received", records=len(records))
    try:
        params = p.Parameters(config_cache.get())
        repo = Repo(client, params.require(p.TASKS_NAMESPACE))
        llm = LLM.from_parameters(params, timeout=timeout, **llm_kwargs)
    except Exception as exc:
        log.error("batch_aborted", reason="config", error=str(exc))
        return BatchReport(failures=[r.get("messageId") for r in records])

    notifier = Notifier(client, params.get(p.NOTIFY_CHANNEL)) if p.NOTIFY_CHANNEL in params else None
    return TaskWorker(repo, llm, notifier).process_batch(records)
