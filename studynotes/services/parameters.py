from __future__ import annotations

import time
from typing import Callable, Dict, Mapping, Optional, Protocol

import redis
import structlog

from ..errors import ConfigurationError

log = structlog.get_logger()

TASKS_NAMESPACE = "tasks-namespace"
QUEUE_NAME = "queue-name"
NOTIFY_CHANNEL = "notify-channel"
LLM_PROVIDER = "llm-provider"
OPENAI_API_KEY = "openai-api-key"
OPENAI_PROMPT_ID = "openai-prompt-id"
OPENAI_BASE_URL = "openai-base-url"
OLLAMA_BASE_URL = "ollama-base-url"
OLLAMA_MODEL = "ollama-model"
USER_POOL_ID = "user-pool-id"
USER_POOL_CLIENT_ID = "user-pool-client-id"
USER_POOL_REGION = "user-pool-region"


class ParameterSource(Protocol):
    def list_by_prefix(self, prefix: str) -> Dict[str, str]: ...


class RedisParameterSource:
    """Hierarchical parameters stored as path-named string keys.

    ``/ai-studynotes/openai-api-key`` is returned as ``openai-api-key``. Only
    direct children of the prefix are read.
    """

    def __init__(self, client: redis.Redis, scan_count: int = 100):
        self.r = client
        self.scan_count = scan_count

    def list_by_prefix(self, prefix: str) -> Dict[str, str]:
        base = prefix.rstrip("/") + "/"
        names = []
        cursor = 0
        while True:
            cursor, keys = self.r.scan(cursor=cursor, match=f"{base}*", count=self.scan_count)
            names.extend(k for k in keys if "/" not in k[len(base):])
            if cursor == 0:
                break

        params: Dict[str, str] = {}
        if not names:
            return params
        for name, value in zip(names, self.r.mget(names)):
            if value is not None:
                params[name.rsplit("/", 1)[-1]] = value
        return params


class ConfigCache:
    """Process-wide memo of the parameter namespace with a TTL.

    A failed fetch propagates and leaves the previous state untouched; the
    next call fetches again.
    """

    def __init__(
        self,
        source: ParameterSource,
        prefix: str,
        ttl_seconds: float = 300.0,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.source = source
        self.prefix = prefix
        self.ttl_seconds = ttl_seconds
        self._clock = clock
        self._cached: Optional[Dict[str, str]] = None
        self._cached_at = 0.0

    def get(self) -> Dict[str, str]:
        now = self._clock()
        if self._cached is not None and now - self._cached_at < self.ttl_seconds:
            return self._cached

        try:
            params = self.source.list_by_prefix(self.prefix)
        except Exception as exc:
            log.error("config_load_failed", prefix=self.prefix, error=str(exc))
            raise
        log.info("config_loaded", prefix=self.prefix, keys=sorted(params))
        self._cached = params
        self._cached_at = now
        return params


class Parameters:
    """Read-only view over one snapshot of the parameter namespace."""

    def __init__(self, values: Mapping[str, str]):
        self._values = dict(values)

    def get(self, name: str, default: Optional[str] = None) -> Optional[str]:
        value = self._values.get(name)
        return value if value else default

    def require(self, name: str) -> str:
        value = self._values.get(name)
        if not value:
            log.error("config_missing_parameter", name=name)
            raise ConfigurationError(f"{name} not set")
        return value

    def __contains__(self, name: str) -> bool:
        return bool(self._values.get(name))
