import redis
import structlog
from celery import Celery

from studynotes.config import settings
from studynotes.log import configure_logging
from studynotes.services.parameters import ConfigCache, RedisParameterSource
from studynotes.services.queue import PROCESS_BATCH_TASK

from .processor import handle_batch

configure_logging()
log = structlog.get_logger()

celery_app = Celery(
    "studynotes",
    broker=settings.redis_url,
    backend=settings.redis_url,
)

# One Redis client and one config cache per worker process.
redis_client = redis.from_url(settings.redis_url, decode_responses=True)
config_cache = ConfigCache(
    RedisParameterSource(redis_client, settings.parameter_scan_count),
    settings.config_base_path,
    settings.config_ttl_seconds,
)


@celery_app.task(name=PROCESS_BATCH_TASK, bind=True)
def process_batch(self, records: list) -> dict:
    report = handle_batch(records, config_cache, redis_client, timeout=settings.generation_timeout_seconds)
    if report.failures and self.request.retries < settings.max_redeliveries:
        failed = set(report.failures)
        redeliver = [r for r in records if r.get("messageId") in failed]
        log.warning("batch_redelivery", count=len(redeliver), attempt=self.request.retries + 1)
        raise self.retry(
            args=[redeliver],
            countdown=settings.redelivery_delay_seconds,
            max_retries=settings.max_redeliveries,
        )
    if report.failures:
        log.error("batch_redeliveries_exhausted", batch_item_failures=report.failures)
    return report.to_dict()
