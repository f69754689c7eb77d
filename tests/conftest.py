from pathlib import Path
import sys

import fakeredis
import pytest

sys.path.append(str(Path(__file__).resolve().parents[1]))

from studynotes.services.parameters import ConfigCache, RedisParameterSource
from studynotes.storage.repo import Repo
from studynotes.storage.schema import TaskRecord, TaskStatus

PREFIX = "/ai-studynotes"
NAMESPACE = "notes-test"


class RecordingCelery:
    """Stands in for the Celery app on the publishing side."""

    def __init__(self, fail: bool = False):
        self.fail = fail
        self.sent = []

    def send_task(self, name, args=None, queue=None, **kwargs):
        if self.fail:
            raise ConnectionError("broker unavailable")
        self.sent.append({"name": name, "args": args, "queue": queue})


class StubLLM:
    def __init__(self, markdown: str = "# Notes\n\nSome content.", error: Exception | None = None):
        self.markdown = markdown
        self.error = error
        self.topics = []

    def generate(self, topic: str) -> str:
        self.topics.append(topic)
        if self.error is not None:
            raise self.error
        return self.markdown


def seed_params(client, **values):
    for name, value in values.items():
        client.set(f"{PREFIX}/{name.replace('_', '-')}", value)


def make_task(task_id: str, created_at: str, topic: str = "Topic", **kwargs) -> TaskRecord:
    return TaskRecord(
        id=task_id,
        topic=topic,
        status=kwargs.pop("status", TaskStatus.QUEUED),
        created_at=created_at,
        updated_at=kwargs.pop("updated_at", created_at),
        **kwargs,
    )


@pytest.fixture
def redis_client():
    return fakeredis.FakeRedis(decode_responses=True)


@pytest.fixture
def repo(redis_client):
    return Repo(redis_client, NAMESPACE)


@pytest.fixture
def config_cache(redis_client):
    return ConfigCache(RedisParameterSource(redis_client, scan_count=10), PREFIX, ttl_seconds=300)
