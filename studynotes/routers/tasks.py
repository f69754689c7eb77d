from typing import Optional

import orjson
import structlog
from fastapi import APIRouter, Depends, Query, Request
from starlette.concurrency import run_in_threadpool

from ..auth import extract_identity
from ..errors import InvalidPayloadError
from ..http import respond
from ..models import Identity
from ..services import parameters as p
from ..services.queue import TaskQueue
from ..services.tasks import TaskService
from ..storage.repo import Repo

log = structlog.get_logger()

router = APIRouter()


def get_parameters(request: Request) -> p.Parameters:
    return p.Parameters(request.app.state.config_cache.get())


def get_task_service(request: Request, params: p.Parameters = Depends(get_parameters)) -> TaskService:
    repo = Repo(request.app.state.redis, params.require(p.TASKS_NAMESPACE))
    queue = TaskQueue(request.app.state.celery, params.get(p.QUEUE_NAME))
    return TaskService(repo, queue)


async def identity_hint(request: Request, params: p.Parameters = Depends(get_parameters)) -> Optional[Identity]:
    # Attribution only; a missing or bad token never blocks the request.
    identity = extract_identity(request.headers, params)
    if identity is not None:
        structlog.contextvars.bind_contextvars(user_id=identity.id)
        log.info("identity_hint", username=identity.username)
    return identity


@router.post("/tasks")
async def create_task(
    request: Request,
    service: TaskService = Depends(get_task_service),
    _identity=Depends(identity_hint),
):
    raw = await request.body()
    try:
        body = orjson.loads(raw) if raw.strip() else None
    except orjson.JSONDecodeError as exc:
        log.warning("invalid_json_body")
        raise InvalidPayloadError("Invalid JSON") from exc

    topic = body.get("topic") if isinstance(body, dict) else None
    created = await run_in_threadpool(service.create, topic)
    return respond(201, created.model_dump(mode="json", by_alias=True))


@router.get("/tasks")
def list_tasks(
    limit: Optional[str] = Query(default=None),
    cursor: Optional[str] = Query(default=None),
    service: TaskService = Depends(get_task_service),
    _identity=Depends(identity_hint),
):
    page = service.list(limit, cursor)
    return respond(200, page.model_dump())


@router.get("/tasks/{task_id}")
def get_task(task_id: str, service: TaskService = Depends(get_task_service), _identity=Depends(identity_hint)):
    return respond(200, service.get(task_id).to_api())


@router.delete("/tasks/{task_id}")
def delete_task(task_id: str, service: TaskService = Depends(get_task_service), _identity=Depends(identity_hint)):
    service.delete(task_id)
    return respond(204)
