from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    APP_NAME: str = "Stock Ledger"
    DATABASE_URL: str = "sqlite:///./stockledger.db"

    # Auth
    SECRET_KEY: str = "change-me"
    ACCESS_TOKEN_EXPIRE_HOURS: int = 72
    DEFAULT_ADMIN_USERNAME: str = "admin"
    DEFAULT_ADMIN_PASSWORD: str = "admin"

    # New products start with this alert threshold unless one is given
    DEFAULT_ALERT_THRESHOLD: int = 10

    # How staff visibility is resolved: "product", "category" or "either"
    STAFF_SCOPE: str = "product"

    # Stock mutation retries (optimistic lock / busy database)
    MUTATION_MAX_ATTEMPTS: int = 5
    MUTATION_RETRY_BACKOFF_SECONDS: float = 0.05
    SQLITE_BUSY_TIMEOUT: float = 30.0

    # Window used by the "average" variance comparison
    AVERAGE_WINDOW_DAYS: int = 7

    # Threshold notifications: list of callback URLs (comma-separated)
    NOTIFY_WEBHOOK_URLS: str = ""
    NOTIFY_TIMEOUT_SECONDS: float = 10.0

    LOG_LEVEL: str = "INFO"

    model_config = {"env_file": ".env"}

    @property
    def webhook_urls(self) -> list[str]:
        return [u.strip() for u in self.NOTIFY_WEBHOOK_URLS.split(",") if u.strip()]


settings = Settings()
