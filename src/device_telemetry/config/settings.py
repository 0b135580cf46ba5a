import os
from pathlib import Path

from dotenv import load_dotenv
from pydantic import BaseModel, Field, model_validator

from device_telemetry import __version__

# Load environment variables from .env file if it exists
env_path = Path(__file__).resolve().parents[3] / ".env"
if env_path.exists():
    load_dotenv(env_path)


class DatabaseSettings(BaseModel):
    """Settings for the telemetry store (integrations, devices, metrics, audit)."""
    url: str | None = None
    path: str = "device_telemetry.db"
    echo: bool = False
    pool_size: int = 5
    pool_recycle: int = 1800  # Recycle connections every 30 minutes

    @property
    def resolved_url(self) -> str:
        """Explicit URL if set, otherwise a SQLite file at `path`."""
        if self.url:
            return self.url
        return f"sqlite:///{self.path}"


class HttpSettings(BaseModel):
    """Outbound vendor API settings."""
    timeout_seconds: float = 30.0
    max_retries: int = 3
    user_agent: str = f"device-telemetry-collector/{__version__}"
    pool_connections: int = 10
    pool_maxsize: int = 10


class CollectionSettings(BaseModel):
    """Collection run tuning."""
    inter_device_delay_seconds: float = 1.0  # Politeness delay between devices of one integration
    device_timeout_seconds: float = 120.0
    max_parallel_integrations: int = 4
    default_rate_limit_requests: int = 1000
    default_rate_limit_window_seconds: int = 3600


class SchedulerSettings(BaseModel):
    poll_interval_seconds: int = 60
    run_on_start: bool = True


class AppSettings(BaseModel):
    """Application settings with dynamic environment variable loading.

    All settings are read from os.environ at instantiation time, not at
    class definition time, so tests can monkeypatch the environment and
    call reset_settings().
    """

    env: str = "local"

    database: DatabaseSettings = Field(default_factory=lambda: DatabaseSettings())
    http: HttpSettings = Field(default_factory=lambda: HttpSettings())
    collection: CollectionSettings = Field(default_factory=lambda: CollectionSettings())
    scheduler: SchedulerSettings = Field(default_factory=lambda: SchedulerSettings())

    # Logging
    log_level: str = "INFO"
    log_format: str = "json"  # json, text

    @model_validator(mode='before')
    @classmethod
    def load_from_environment(cls, data: dict) -> dict:
        """Load all settings from os.environ at instantiation time."""
        # Explicit values passed to the constructor win over env vars

        if 'env' not in data:
            data['env'] = os.getenv("APP_ENV", "local")

        # Telemetry store
        if 'database' not in data:
            data['database'] = DatabaseSettings(
                url=os.getenv("TELEMETRY_DB_URL") or None,
                path=os.getenv("TELEMETRY_DB_PATH", "device_telemetry.db"),
                echo=os.getenv("TELEMETRY_DB_ECHO", "false").lower() == "true",
                pool_size=int(os.getenv("TELEMETRY_DB_POOL_SIZE", "5")),
                pool_recycle=int(os.getenv("TELEMETRY_DB_POOL_RECYCLE", "1800")),
            )

        # Vendor HTTP
        if 'http' not in data:
            data['http'] = HttpSettings(
                timeout_seconds=float(os.getenv("HTTP_TIMEOUT_SECONDS", "30")),
                max_retries=int(os.getenv("HTTP_MAX_RETRIES", "3")),
                user_agent=os.getenv("HTTP_USER_AGENT", f"device-telemetry-collector/{__version__}"),
                pool_connections=int(os.getenv("HTTP_POOL_CONNECTIONS", "10")),
                pool_maxsize=int(os.getenv("HTTP_POOL_MAXSIZE", "10")),
            )

        # Collection runs
        if 'collection' not in data:
            data['collection'] = CollectionSettings(
                inter_device_delay_seconds=float(os.getenv("COLLECTION_INTER_DEVICE_DELAY_SECONDS", "1.0")),
                device_timeout_seconds=float(os.getenv("COLLECTION_DEVICE_TIMEOUT_SECONDS", "120")),
                max_parallel_integrations=int(os.getenv("COLLECTION_MAX_PARALLEL_INTEGRATIONS", "4")),
                default_rate_limit_requests=int(os.getenv("COLLECTION_DEFAULT_RATE_LIMIT_REQUESTS", "1000")),
                default_rate_limit_window_seconds=int(
                    os.getenv("COLLECTION_DEFAULT_RATE_LIMIT_WINDOW_SECONDS", "3600")
                ),
            )

        if 'scheduler' not in data:
            data['scheduler'] = SchedulerSettings(
                poll_interval_seconds=int(os.getenv("SCHEDULER_POLL_INTERVAL_SECONDS", "60")),
                run_on_start=os.getenv("SCHEDULER_RUN_ON_START", "true").lower() == "true",
            )

        if 'log_level' not in data:
            data['log_level'] = os.getenv("LOG_LEVEL", "INFO").upper()
        if 'log_format' not in data:
            data['log_format'] = os.getenv("LOG_FORMAT", "json").lower()

        return data


_settings: AppSettings | None = None


def get_settings() -> AppSettings:
    """Get application settings (cached after first call)."""
    global _settings
    if _settings is None:
        _settings = AppSettings()
    return _settings


def reset_settings() -> None:
    """Reset cached settings. Useful for testing."""
    global _settings
    _settings = None

