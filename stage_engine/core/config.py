"""Engine configuration with environment variables."""

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Engine settings loaded from environment variables."""

    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    # Environment
    ENV: str = "dev"

    # Database (used by the SQLAlchemy persistence adapter)
    DATABASE_URL: str = "sqlite+pysqlite:///:memory:"
    SQL_ECHO: bool = False

    # Logging
    LOG_LEVEL: str = "INFO"

    # Drag gestures shorter than this (pixels) are treated as clicks
    DRAG_ACTIVATION_DISTANCE: int = 8

    # Number of stages shown in a compact board
    COMPACT_WINDOW_SIZE: int = 3

    # Stage authoring defaults
    DEFAULT_STAGE_COLOR: str = "#6B7280"
    MAX_STAGE_NAME_LENGTH: int = 100

    # Item field summed by board aggregates
    DEFAULT_VALUE_FIELD: str = "amount"

    @property
    def is_sqlite(self) -> bool:
        """True when DATABASE_URL points at sqlite."""
        return self.DATABASE_URL.startswith("sqlite")


settings = Settings()
