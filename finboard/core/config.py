from pydantic import AliasChoices, Field
from pydantic_settings import BaseSettings, SettingsConfigDict
from pathlib import Path


class Settings(BaseSettings):
    APP_NAME: str = "finboard"
    ENV: str = "dev"

    # Default SQLite file next to the package so the path does not depend on CWD
    _default_db_path = Path(__file__).resolve().parents[2] / "finboard.sqlite3"
    DATABASE_URL: str = Field(
        default=f"sqlite:///{_default_db_path}",
        validation_alias=AliasChoices("FINBOARD_DATABASE_URL", "DATABASE_URL"),
    )

    CORS_ORIGINS: list[str] = ["*"]

    LOG_LEVEL: str = "INFO"
    LOG_JSON: bool = False

    AUTH_SESSION_SECRET: str = "dev-insecure-secret"
    CSRF_ENABLED: bool = True

    TRIAL_DURATION_DAYS: int = 14
    DASHBOARD_CACHE_TTL_SECONDS: int = 300

    HTTP_TIMEOUT_SECONDS: float = 8.0
    FRANKFURTER_BASE_URL: str = "https://api.frankfurter.dev/v1"

    ALPHA_VANTAGE_API_KEY: str | None = Field(
        default=None,
        validation_alias=AliasChoices("FINBOARD_ALPHA_VANTAGE_API_KEY", "ALPHA_VANTAGE_API_KEY"),
    )
    ALPHA_VANTAGE_BASE_URL: str = "https://www.alphavantage.co/query"
    STOCK_PRICE_MAX_AGE_HOURS: int = 24
    STOCK_REFRESH_TIME_BUDGET_MS: int = 55_000
    STOCK_REFRESH_DELAY_MS: int = 12_000

    model_config = SettingsConfigDict(env_file=(".env",), env_prefix="FINBOARD_", case_sensitive=False)


settings = Settings()
