from functools import lru_cache

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    model_config = {"env_file": ".env", "env_file_encoding": "utf-8", "extra": "ignore"}

    database_url: str = "sqlite:///./officespace.db"

    secret_key: str = "CHANGE_THIS_SECRET_IN_REAL_PROJECT"
    algorithm: str = "HS256"
    access_token_expire_minutes: int = 60

    log_level: str = "INFO"

    rate_limit_enabled: bool = True
    rate_limit_default: str = "60/minute"

    # memory: process-local locks, redis: shared locks across workers
    lock_driver: str = "memory"
    redis_url: str = "redis://localhost:6379/0"
    reservation_lock_ttl: int = 10
    reservation_lock_wait: float = 3

    offices_per_page: int = 10
    reservations_per_page: int = 15

    notification_fail_max: int = 5
    notification_reset_timeout: int = 60


@lru_cache
def get_settings() -> Settings:
    return Settings()
