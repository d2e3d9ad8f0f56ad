from pathlib import Path
import os
from pydantic_settings import BaseSettings, SettingsConfigDict

BASE_DIR = Path(__file__).resolve().parents[2]  # repo root

ENV_FILE = os.getenv("ENV_FILE", str(BASE_DIR / ".env"))

class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=ENV_FILE, extra="ignore")

    APP_ENV: str = "local"
    DATABASE_URL: str
    CORS_ORIGINS: str = "*"  # Comma-separated list of allowed origins, or "*" for all

    LOG_LEVEL: str = "INFO"
    LOG_JSON: bool = True

    # Assignment defaults
    DEFAULT_PEERS_PER_USER: int = 3
    DEFAULT_BULK_PEER_COUNT: int = 2
    DEFAULT_UPWARD_COUNT: int = 3
    ASSIGNMENT_RANDOM_SEED: int | None = None

    # Workflow
    SKIP_DISABLED_PHASES: bool = False
    ESCALATION_REMINDER_THRESHOLD: int = 3
    WORKFLOW_SWEEP_INTERVAL_SECONDS: int = 0  # 0 disables the in-process ticker

    @property
    def cors_origins_list(self) -> list[str]:
        """Parse CORS_ORIGINS into a list, handling '*' for development"""
        if self.CORS_ORIGINS == "*":
            return ["*"]
        return [origin.strip() for origin in self.CORS_ORIGINS.split(",")]

    @property
    def is_sqlite(self) -> bool:
        return self.DATABASE_URL.startswith("sqlite")

settings = Settings()
