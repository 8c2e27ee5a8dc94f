from pydantic_settings import BaseSettings


class Settings(BaseSettings):

    DATABASE_URL: str = "sqlite+aiosqlite:///./singlepiece.db"
    DB_ECHO: bool = False
    JWT_SECRET: str
    JWT_ALGO: str = "HS256"
    ACCESS_TOKEN_EXPIRE_MINUTES: int = 60

    RESERVATION_TTL_MINUTES: int = 15
    SWEEPER_ENABLED: bool = True
    SWEEP_INTERVAL_SECONDS: float = 60.0
    SWEEP_BATCH_SIZE: int = 100

    SHIPPING_FEE: int = 99
    TAX_RATE: float = 0.18
    UPI_ID: str = "your-business@upi"

    NOTIFY_WEBHOOK_URL: str | None = None
    NOTIFY_TIMEOUT_SECONDS: float = 3.0

    REDIS_HOST: str = "localhost"
    REDIS_PORT: int = 6379
    REDIS_DB: int = 0
    RATE_LIMIT_ENABLED: bool = True
    CLAIM_RATE_LIMIT: int = 10
    CLAIM_RATE_WINDOW: int = 60

    METRICS_ENABLED: bool = False

    class Config:
        env_file = ".env"
        extra = "ignore"

config_settings = Settings()
