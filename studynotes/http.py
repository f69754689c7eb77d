from typing import Any

import orjson
import structlog
from fastapi import Response

log = structlog.get_logger()

CORS_HEADERS = {
    "Access-Control-Allow-Origin": "*",
    "Access-Control-Allow-Headers": "Content-Type,X-Amz-Date,Authorization,X-Api-Key,X-Amz-Security-Token",
    "Access-Control-Allow-Methods": "OPTIONS,GET,POST,DELETE",
}

LOGGED_BODY_CHARS = 600


def respond(status_code: int, data: Any = None) -> Response:
    """JSON response (empty body for ``None``), logged with a truncated body."""
    payload = b"" if data is None else orjson.dumps(data)
    text = payload.decode()
    if len(text) > LOGGED_BODY_CHARS:
        text = text[:LOGGED_BODY_CHARS] + "...(truncated)"
    log.info("response", status=status_code, body=text)
    if data is None:
        return Response(status_code=status_code, headers=CORS_HEADERS)
    return Response(
        content=payload,
        status_code=status_code,
        media_type="application/json",
        headers=CORS_HEADERS,
    )
