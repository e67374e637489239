"""Harness settings: engine CLI, timeouts and output limits.

Settings live in chainharness.toml. Environment variables override the file
using ``__`` as the nested delimiter (e.g. ``DOCKER__CLI=podman``,
``DOCKER__JOB_TIMEOUT_MS=60000``).

Priority (highest wins): init args > env vars > .env > chainharness.toml

Usage::

    from chainharness.config import get_settings

    s = get_settings()
    print(s.docker.cli)
    print(s.job_timeout)
"""

from __future__ import annotations

from functools import cached_property

from pydantic import BaseModel, field_validator
from pydantic_settings import (
    BaseSettings,
    PydanticBaseSettingsSource,
    SettingsConfigDict,
    TomlConfigSettingsSource,
)

# ---------------------------------------------------------------------------
# Sub-models (each maps to a [section] in chainharness.toml)
# ---------------------------------------------------------------------------


class _StrictModel(BaseModel):
    """Sections reject unknown keys, so a misspelt option is an error rather than a no-op."""

    model_config = {"extra": "forbid"}


class DockerConfig(_StrictModel):
    cli: str = "docker"
    command_timeout: float = 30  # seconds, short engine calls (create, start, rm)
    pull_timeout: float = 300  # seconds
    job_timeout_ms: int | None = None  # None = wait for the job indefinitely
    max_output_size: int | None = None  # bytes per stream; None = unbounded
    helper_image: str = "busybox:stable"

    @field_validator("cli")
    @classmethod
    def _non_empty_cli(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("docker.cli cannot be empty")
        return v.strip()

    @field_validator("max_output_size")
    @classmethod
    def _positive_cap(cls, v: int | None) -> int | None:
        if v is not None and v <= 0:
            raise ValueError("docker.max_output_size must be positive (or unset)")
        return v


class LoggingConfig(_StrictModel):
    level: str = "INFO"

    @field_validator("level")
    @classmethod
    def normalize_level(cls, v: str) -> str:
        return v.upper()


# ---------------------------------------------------------------------------
# Root settings
# ---------------------------------------------------------------------------


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        toml_file="chainharness.toml",
        env_file=".env",
        env_nested_delimiter="__",
        extra="ignore",
    )

    docker: DockerConfig = DockerConfig()
    logging: LoggingConfig = LoggingConfig()

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: type[BaseSettings],
        init_settings: PydanticBaseSettingsSource,
        env_settings: PydanticBaseSettingsSource,
        dotenv_settings: PydanticBaseSettingsSource,
        file_secret_settings: PydanticBaseSettingsSource,
    ) -> tuple[PydanticBaseSettingsSource, ...]:
        """Priority: init > env vars > .env > chainharness.toml > file secrets."""
        return (
            init_settings,
            env_settings,
            dotenv_settings,
            TomlConfigSettingsSource(settings_cls),
            file_secret_settings,
        )

    # --- Computed properties ---

    @cached_property
    def job_timeout(self) -> float | None:
        if self.docker.job_timeout_ms is None:
            return None
        return self.docker.job_timeout_ms / 1000


# ---------------------------------------------------------------------------
# Singleton
# ---------------------------------------------------------------------------

_settings: Settings | None = None


def get_settings() -> Settings:
    """Return the process-wide Settings, loading them on first use."""
    global _settings
    if _settings is None:
        _settings = Settings()
    return _settings


def reset_settings() -> None:
    """Forget the loaded Settings; the next get_settings() reloads them."""
    global _settings
    _settings = None
