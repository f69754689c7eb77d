import base64
import binascii
import time
from typing import Any, Callable, Mapping, Optional

import orjson
import structlog

from .models import Identity
from .services import parameters as p

log = structlog.get_logger()

# Best-effort identity hint from a user-pool ID token. Claims are checked but
# the signature is NOT verified: the result is for attribution in logs only
# and must never be used to allow or deny a request.


def expected_issuer(pool_id: str, region: Optional[str] = None) -> str:
    region = region or pool_id.split("_", 1)[0]
    return f"https://cognito-idp.{region}.amazonaws.com/{pool_id}"


def _decode_segment(segment: str) -> Any:
    padded = segment + "=" * (-len(segment) % 4)
    return orjson.loads(base64.urlsafe_b64decode(padded))


def extract_identity(
    headers: Mapping[str, str],
    params: p.Parameters,
    now: Callable[[], float] = time.time,
) -> Optional[Identity]:
    try:
        return _extract(headers, params, now)
    except Exception as exc:
        log.debug("identity_hint_failed", error=str(exc))
        return None


def _extract(headers: Mapping[str, str], params: p.Parameters, now: Callable[[], float]) -> Optional[Identity]:
    pool_id = params.get(p.USER_POOL_ID)
    client_id = params.get(p.USER_POOL_CLIENT_ID)
    if not pool_id or not client_id:
        return None

    auth = headers.get("authorization") or headers.get("Authorization") or ""
    scheme, _, token = auth.partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        return None

    segments = token.strip().split(".")
    if len(segments) != 3:
        return None
    try:
        claims = _decode_segment(segments[1])
    except (binascii.Error, ValueError):
        log.debug("identity_hint_undecodable")
        return None
    if not isinstance(claims, dict):
        return None

    exp = claims.get("exp")
    if not isinstance(exp, (int, float)) or exp <= now():
        return None
    if claims.get("iss") != expected_issuer(pool_id, params.get(p.USER_POOL_REGION)):
        return None
    if claims.get("aud") != client_id:
        return None
    token_use = claims.get("token_use")
    if token_use is not None and token_use != "id":
        return None

    return Identity(
        id=claims.get("sub"),
        email=claims.get("email"),
        username=claims.get("cognito:username") or claims.get("username"),
        raw_claims=claims,
    )
