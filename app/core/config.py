import pytz
from pydantic_settings import BaseSettings, SettingsConfigDict

class Settings(BaseSettings):
    # --- Identity ---
    PROJECT_NAME: str = "Cantina_POS"
    HOST: str = "0.0.0.0"
    PORT: int = 8000

    # --- Remote store (empty = no remote, engine runs Offline) ---
    DATABASE_URL: str = "sqlite:///./data/pos.db"
    DB_CONNECT_RETRIES: int = 10
    DB_RETRY_WAIT_SECONDS: float = 3

    # --- Local cache (empty = RAM only) ---
    REDIS_URL: str = "redis://localhost:6379/0"
    CACHE_KEY_PREFIX: str = "pos"

    # JSON list of products pushed to an empty remote catalog on first start
    SEED_CATALOG_PATH: str = ""

    # --- Business rules ---
    TIMEZONE: str = "America/Sao_Paulo"
    SYNC_INTERVAL_SECONDS: float = 2.0
    POINTS_PER_CURRENCY_UNIT: int = 100

    LOG_LEVEL: str = "INFO"

    # --- Operator alerts (optional) ---
    TWILIO_ACCOUNT_SID: str | None = None
    TWILIO_AUTH_TOKEN: str | None = None
    TWILIO_FROM_NUMBER: str | None = None
    OPERATOR_PHONE_NUMBER: str | None = None

    model_config = SettingsConfigDict(
        env_file=".env",
        extra="ignore"  # the same .env also feeds docker-compose
    )

    @property
    def tz(self):
        return pytz.timezone(self.TIMEZONE)

settings = Settings()
