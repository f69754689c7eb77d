from pydantic import BaseModel
import os

class Settings(BaseModel):
    redis_url: str = os.getenv("REDIS_URL", "redis://localhost:6379/0")
    config_base_path: str = os.getenv("CONFIG_BASE_PATH", "/ai-studynotes")
    config_ttl_seconds: float = float(os.getenv("CONFIG_TTL_SECONDS", 300))
    parameter_scan_count: int = int(os.getenv("PARAMETER_SCAN_COUNT", 100))
    generation_timeout_seconds: float = float(os.getenv("GENERATION_TIMEOUT_SECONDS", 300))
    max_redeliveries: int = int(os.getenv("MAX_REDELIVERIES", 3))
    redelivery_delay_seconds: int = int(os.getenv("REDELIVERY_DELAY_SECONDS", 30))
    log_level: str = os.getenv("LOG_LEVEL", "INFO")
    log_json: bool = os.getenv("LOG_JSON", "false").lower() in {"1", "true", "yes"}

settings = Settings()
