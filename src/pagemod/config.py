"""Centralized configuration: Pydantic BaseSettings with a TOML source.

Settings live in config.toml. Environment variables override the file using
``__`` as the nested delimiter (e.g. ``BRIDGE__TIMEOUT_SECONDS=2``).

Priority (highest wins): init args > env vars > config.toml

Usage::

    from pagemod.config import get_settings

    s = get_settings()
    print(s.bridge.timeout_seconds)
"""

from __future__ import annotations

from pathlib import Path
from typing import Literal

from pydantic import BaseModel, field_validator
from pydantic_settings import (
    BaseSettings,
    PydanticBaseSettingsSource,
    SettingsConfigDict,
    TomlConfigSettingsSource,
)

# ---------------------------------------------------------------------------
# Sub-models (each maps to a [section] in config.toml)
# ---------------------------------------------------------------------------


class _StrictModel(BaseModel):
    """Base for all config sub-models. Reject unknown keys so typos fail loudly."""

    model_config = {"extra": "forbid"}


class LoggingConfig(_StrictModel):
    level: str = "INFO"

    @field_validator("level")
    @classmethod
    def normalize_level(cls, v: str) -> str:
        return v.upper()


class BridgeConfig(_StrictModel):
    timeout_seconds: float = 5.0  # template eval and custom code
    probe_timeout_seconds: float = 1.0  # eval-permission probe

    @field_validator("timeout_seconds", "probe_timeout_seconds")
    @classmethod
    def _positive(cls, v: float) -> float:
        if v <= 0:
            raise ValueError("timeout must be positive")
        return v


class InterpreterConfig(_StrictModel):
    max_element_depth: int = 32

    @field_validator("max_element_depth")
    @classmethod
    def _at_least_one(cls, v: int) -> int:
        if v < 1:
            raise ValueError("max_element_depth must be >= 1")
        return v


class RunnerConfig(_StrictModel):
    debounce_seconds: float = 0.5


class SecurityConfig(_StrictModel):
    default_level: Literal["safe", "moderate", "advanced"] = "advanced"


class StorageConfig(_StrictModel):
    path: str = "data/pagemod.db"


# ---------------------------------------------------------------------------
# Root settings
# ---------------------------------------------------------------------------


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        toml_file="config.toml",
        env_nested_delimiter="__",
        extra="ignore",
    )

    logging: LoggingConfig = LoggingConfig()
    bridge: BridgeConfig = BridgeConfig()
    interpreter: InterpreterConfig = InterpreterConfig()
    runner: RunnerConfig = RunnerConfig()
    security: SecurityConfig = SecurityConfig()
    storage: StorageConfig = StorageConfig()

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: type[BaseSettings],
        init_settings: PydanticBaseSettingsSource,
        env_settings: PydanticBaseSettingsSource,
        dotenv_settings: PydanticBaseSettingsSource,
        file_secret_settings: PydanticBaseSettingsSource,
    ) -> tuple[PydanticBaseSettingsSource, ...]:
        """Priority: init > env vars > config.toml."""
        return (
            init_settings,
            env_settings,
            TomlConfigSettingsSource(settings_cls),
        )

    @property
    def db_path(self) -> Path:
        return Path(self.storage.path).expanduser()


_settings: Settings | None = None


def get_settings() -> Settings:
    """Lazy cached singleton."""
    global _settings
    if _settings is None:
        _settings = Settings()
    return _settings


def reset_settings() -> None:
    """Clear the cached singleton (for tests)."""
    global _settings
    _settings = None
