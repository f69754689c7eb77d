import json

import pytest
from fastapi.testclient import TestClient

from studynotes.main import create_app
from studynotes.services.parameters import ConfigCache
from studynotes.storage.repo import Repo
from worker.processor import TaskWorker

from conftest import NAMESPACE, PREFIX, RecordingCelery, StubLLM, seed_params


@pytest.fixture
def celery():
    return RecordingCelery()


@pytest.fixture
def client(redis_client, config_cache, celery):
    seed_params(redis_client, tasks_namespace=NAMESPACE, queue_name="studynotes")
    return TestClient(create_app(config_cache=config_cache, redis_client=redis_client, celery=celery))


def _assert_cors(response):
    assert response.headers["access-control-allow-origin"] == "*"
    assert "DELETE" in response.headers["access-control-allow-methods"]
    assert "Authorization" in response.headers["access-control-allow-headers"]


def test_options_preflight(client):
    response = client.options("/tasks")

    assert response.status_code == 200
    assert response.content == b""
    _assert_cors(response)


def test_create_get_and_process(client, celery, redis_client):
    response = client.post("/tasks", json={"topic": "Photosynthesis"})

    assert response.status_code == 201
    created = response.json()
    assert set(created) == {"id", "topic", "status", "createdAt"}
    assert created["status"] == "QUEUED"
    _assert_cors(response)

    fetched = client.get(f"/tasks/{created['id']}")
    assert fetched.status_code == 200
    assert fetched.json()["status"] == "QUEUED"
    assert fetched.json()["researchMd"] == ""
    assert "error" not in fetched.json()

    records = celery.sent[0]["args"][0]
    report = TaskWorker(Repo(redis_client, NAMESPACE), StubLLM("# Photosynthesis")).process_batch(records)
    assert report.failures == []

    done = client.get(f"/tasks/{created['id']}").json()
    assert done["status"] == "DONE"
    assert done["researchMd"] == "# Photosynthesis"


def test_create_invalid_json(client, redis_client):
    response = client.post("/tasks", content=b"{not json", headers={"content-type": "application/json"})

    assert response.status_code == 400
    assert response.json() == {"message": "Invalid JSON"}


@pytest.mark.parametrize("body", [{}, {"topic": "   "}, {"topic": None}, ["topic"]])
def test_create_missing_topic(client, celery, body):
    response = client.post("/tasks", json=body)

    assert response.status_code == 422
    assert response.json() == {"message": "Field 'topic' is required"}
    assert celery.sent == []


def test_create_with_empty_body(client):
    assert client.post("/tasks", content=b"").status_code == 422


def test_list_paginates(client):
    ids = [client.post("/tasks", json={"topic": f"topic {i}"}).json()["id"] for i in range(5)]

    first = client.get("/tasks", params={"limit": 2}).json()
    assert len(first["items"]) == 2
    assert first["cursor"]

    seen = [i["id"] for i in first["items"]]
    cursor = first["cursor"]
    while cursor:
        page = client.get("/tasks", params={"limit": 2, "cursor": cursor}).json()
        seen.extend(i["id"] for i in page["items"])
        cursor = page["cursor"]

    assert sorted(seen) == sorted(ids)
    assert len(seen) == len(set(seen))


def test_list_defaults(client):
    client.post("/tasks", json={"topic": "Tides"})

    body = client.get("/tasks").json()

    assert body["cursor"] is None
    assert set(body["items"][0]) == {"id", "topic", "status", "createdAt", "updatedAt"}


@pytest.mark.parametrize("params", [{"limit": "abc"}, {"cursor": "%%%"}])
def test_list_bad_query(client, params):
    response = client.get("/tasks", params=params)

    assert response.status_code == 400
    assert "message" in response.json()


def test_get_unknown(client):
    response = client.get("/tasks/nope")

    assert response.status_code == 404
    assert response.json() == {"message": "Not Found"}
    _assert_cors(response)


def test_delete_is_idempotent(client):
    task_id = client.post("/tasks", json={"topic": "Tides"}).json()["id"]

    first = client.delete(f"/tasks/{task_id}")
    second = client.delete(f"/tasks/{task_id}")

    assert first.status_code == second.status_code == 204
    assert first.content == b""
    assert client.get(f"/tasks/{task_id}").status_code == 404


@pytest.mark.parametrize("method, path", [("GET", "/nowhere"), ("PUT", "/tasks"), ("PATCH", "/tasks/abc")])
def test_unmatched_routes(client, method, path):
    response = client.request(method, path)

    assert response.status_code == 404
    assert response.json() == {"message": "Not Found"}
    _assert_cors(response)


def test_missing_namespace_is_server_error(redis_client, config_cache, celery):
    seed_params(redis_client, queue_name="studynotes")
    client = TestClient(create_app(config_cache=config_cache, redis_client=redis_client, celery=celery))

    response = client.get("/tasks")

    assert response.status_code == 500
    assert response.json() == {"message": "Server error", "error": "tasks-namespace not set"}


def test_unhandled_fault_is_server_error(redis_client, celery):
    class BrokenSource:
        def list_by_prefix(self, prefix):
            raise RuntimeError("parameter store unreachable")

    app = create_app(config_cache=ConfigCache(BrokenSource(), PREFIX), redis_client=redis_client, celery=celery)
    response = TestClient(app).post("/tasks", json={"topic": "Tides"})

    assert response.status_code == 500
    assert response.json() == {"message": "Server error", "error": "parameter store unreachable"}
    _assert_cors(response)


def test_publish_failure_still_creates(redis_client, config_cache):
    seed_params(redis_client, tasks_namespace=NAMESPACE, queue_name="studynotes")
    app = create_app(config_cache=config_cache, redis_client=redis_client, celery=RecordingCelery(fail=True))

    response = TestClient(app).post("/tasks", json={"topic": "Tides"})

    assert response.status_code == 201


def test_identity_hint_never_blocks(client, redis_client):
    seed_params(redis_client, user_pool_id="eu-west-1_pool", user_pool_client_id="client")

    response = client.post(
        "/tasks",
        json={"topic": "Tides"},
        headers={"Authorization": "Bearer garbage.token"},
    )

    assert response.status_code == 201
    assert json.loads(response.content)["topic"] == "Tides"
