from typing import Optional

import redis
import structlog
from fastapi import FastAPI, Request
from starlette.exceptions import HTTPException as StarletteHTTPException

from .config import settings
from .errors import StudyNotesError
from .http import CORS_HEADERS, respond
from .log import configure_logging
from .routers import tasks
from .services.parameters import ConfigCache, RedisParameterSource

log = structlog.get_logger()


def create_app(
    config_cache: Optional[ConfigCache] = None,
    redis_client: Optional[redis.Redis] = None,
    celery=None,
) -> FastAPI:
    """Build the API. The config cache is created once here and shared by all requests."""
    configure_logging()
    if redis_client is None:
        redis_client = redis.from_url(settings.redis_url, decode_responses=True)
    if config_cache is None:
        config_cache = ConfigCache(
            RedisParameterSource(redis_client, settings.parameter_scan_count),
            settings.config_base_path,
            settings.config_ttl_seconds,
        )
    if celery is None:
        from worker.celery_app import celery_app as celery

    app = FastAPI(title="Study Notes API", version="1.0.0")
    app.state.redis = redis_client
    app.state.config_cache = config_cache
    app.state.celery = celery

    @app.middleware("http")
    async def cors_and_faults(request: Request, call_next):
        structlog.contextvars.clear_contextvars()
        structlog.contextvars.bind_contextvars(method=request.method, path=request.url.path)
        log.info("request_received", query=dict(request.query_params))
        try:
            response = await call_next(request)
        except Exception as exc:
            log.exception("unhandled_error")
            response = respond(500, {"message": "Server error", "error": str(exc)})
        response.headers.update(CORS_HEADERS)
        return response

    @app.exception_handler(StudyNotesError)
    async def studynotes_error(request: Request, exc: StudyNotesError):
        if exc.status_code >= 500:
            log.error("request_failed", error_type=type(exc).__name__, error=exc.message)
            return respond(exc.status_code, {"message": "Server error", "error": exc.message})
        log.warning("request_rejected", status=exc.status_code, error=exc.message)
        return respond(exc.status_code, {"message": exc.message})

    @app.exception_handler(StarletteHTTPException)
    async def http_error(request: Request, exc: StarletteHTTPException):
        # unmatched routes, including known paths with an unsupported method
        if exc.status_code in (404, 405):
            log.warning("no_route", method=request.method, path=request.url.path)
            return respond(404, {"message": "Not Found"})
        return respond(exc.status_code, {"message": str(exc.detail)})

    @app.options("/{path:path}")
    async def preflight(path: str):
        return respond(200)

    app.include_router(tasks.router)
    return app


app = create_app()
