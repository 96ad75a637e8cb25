from typing import Optional

from pydantic_settings import BaseSettings


class AppConfig(BaseSettings):
    POSTGRES_USER: str = "postgres"
    POSTGRES_PASSWORD: str = "postgres"
    POSTGRES_DB: str = "wallet_ledger"
    POSTGRES_HOST: str = "localhost"
    POSTGRES_PORT: str = "5432"

    # повний URL має пріоритет над POSTGRES_* (тести, sqlite)
    DB_URL: Optional[str] = None
    DB_POOL_SIZE: int = 10
    DB_MAX_OVERFLOW: int = 20

    ADMIN_TOKEN: str
    SERVICE_TOKEN: str
    USER_TOKEN_BEARER: str

    DEBUG_MODE: bool = False
    LOG_DIR: str = "logs"

    REDIS_HOST: str = "localhost"
    REDIS_PORT: str = "6379"
    REDIS_DB: int = 0
    CACHE_TTL_SECONDS: int = 300

    # refunds
    REFUND_BATCH_SIZE: int = 10
    REFUND_BATCH_CONCURRENCY: int = 1
    REFUND_CANDIDATE_TIMEOUT_SECONDS: float = 10.0
    REFUND_LOCK_TTL_SECONDS: int = 600

    ADJUSTMENT_REASON_MIN_LENGTH: int = 3
    DEFAULT_BILLING_CYCLE_DAYS: int = 30

    @property
    def DATABASE_URL(self) -> str:
        if self.DB_URL:
            return self.DB_URL
        return (
            f"postgresql+asyncpg://{self.POSTGRES_USER}:{self.POSTGRES_PASSWORD}"
            f"@{self.POSTGRES_HOST}:{self.POSTGRES_PORT}/{self.POSTGRES_DB}"
        )

    @property
    def REDIS_URL(self) -> str:
        return f"redis://{self.REDIS_HOST}:{self.REDIS_PORT}/{self.REDIS_DB}"

    class Config:
        env_file = ".env"


config = AppConfig()
