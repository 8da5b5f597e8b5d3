"""Application settings, read from the environment and backend/.env.

A non-empty DATABASE_URL selects PostgreSQL. Without it the engine runs on
the SQLite file at DB_SQLITE_PATH (default data/affiliations.db, relative to
backend/).
"""

import re
from functools import lru_cache
from pathlib import Path

from dotenv import load_dotenv
from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

BACKEND_ROOT: Path = Path(__file__).resolve().parent
DEFAULT_SQLITE_PATH: str = "data/affiliations.db"

# backend/.env wins over a repo-level .env; real environment variables win over both.
for _env_file in (BACKEND_ROOT / ".env", BACKEND_ROOT.parent / ".env"):
    if _env_file.exists():
        load_dotenv(_env_file, override=False)


def _env(prefix: str) -> SettingsConfigDict:
    return SettingsConfigDict(
        env_prefix=prefix,
        env_file=(str(BACKEND_ROOT / ".env"), ".env"),
        env_file_encoding="utf-8",
        extra="ignore",
    )


class DatabaseSettings(BaseSettings):
    model_config = _env("DB_")

    database_url: str | None = Field(default=None, validation_alias="DATABASE_URL")
    sqlite_path: str | None = Field(default=DEFAULT_SQLITE_PATH)
    pool_size: int = 5
    pool_timeout: int = 30
    pool_recycle: int = 1800

    @property
    def uses_postgres(self) -> bool:
        return bool((self.database_url or "").strip())

    @property
    def sqlite_file(self) -> Path:
        path = Path((self.sqlite_path or DEFAULT_SQLITE_PATH).strip())
        return path if path.is_absolute() else (BACKEND_ROOT / path).resolve()

    @property
    def redacted_url(self) -> str:
        """Postgres DSN with the password masked, or the SQLite file path."""
        if not self.uses_postgres:
            return self.sqlite_file.as_posix()
        return re.sub(r":([^:@/]+)@", ":***@", (self.database_url or "").strip())

    @property
    def url(self) -> str:
        if self.uses_postgres:
            return (self.database_url or "").strip()
        self.sqlite_file.parent.mkdir(parents=True, exist_ok=True)
        return f"sqlite:///{self.sqlite_file.as_posix()}"

    def describe(self) -> str:
        return f"{'PostgreSQL' if self.uses_postgres else 'SQLite'} @ {self.redacted_url}"


class ProviderSettings(BaseSettings):
    """External validation provider. ``mode`` is ``simulated`` or ``http``."""

    model_config = _env("PROVIDER_")

    mode: str = "simulated"
    base_url: str = "http://localhost:8081/validations"
    timeout: float = 10.0
    provider_code: str = "SIMULATED_PROVIDER"
    # Risk levels that turn a passed check into an observation.
    risk_levels: list[str] = Field(default_factory=lambda: ["medium", "high"])


class LifecycleSettings(BaseSettings):
    model_config = _env("LIFECYCLE_")

    audit_failed_retries: bool = Field(
        default=False,
        description="Keep the provider response and history attempt of a failed retry.",
    )
    system_actor: str = "system"
    supervisor_actor: str = "supervisor"


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_prefix="AFFILIATIONS_",
        env_nested_delimiter="__",
        extra="ignore",
    )

    environment: str = "development"
    debug: bool = False
    host: str = "0.0.0.0"
    port: int = 8000
    reload: bool = False
    cors_origins: list[str] = Field(
        default_factory=lambda: ["http://localhost:5173", "http://127.0.0.1:5173"]
    )
    api_key: str | None = Field(default=None, description="Required on mutation endpoints when set")
    data_dir: Path = Path("data")

    database: DatabaseSettings = Field(default_factory=DatabaseSettings)
    provider: ProviderSettings = Field(default_factory=ProviderSettings)
    lifecycle: LifecycleSettings = Field(default_factory=LifecycleSettings)

    def model_post_init(self, _context: object) -> None:
        self.data_dir.mkdir(parents=True, exist_ok=True)


@lru_cache
def get_settings() -> Settings:
    return Settings()
