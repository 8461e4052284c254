"""Typed configuration models for revision tracking."""

from __future__ import annotations

from pathlib import Path
from typing import ClassVar, Literal

from pydantic import BaseModel, Field, field_validator
from pydantic_settings import (
    BaseSettings,
    PydanticBaseSettingsSource,
    SettingsConfigDict,
    YamlConfigSettingsSource,
)

DEFAULT_CONFIG_PATH = Path.home() / ".config" / "revision_trail" / "revision_trail.yaml"


class LoggingSettings(BaseModel):
    """Structured logging configuration for hosts that let the library configure it."""

    level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = "INFO"
    json_output: bool = True
    service: str = "revision_trail"


class AttributionSettings(BaseModel):
    """How ``who_dunnit`` is resolved when a revision is written."""

    session_key: str = "who_dunnit"
    fallback: str | None = None
    unknown_marker: str = "unknown user"

    @field_validator("session_key")
    @classmethod
    def _require_session_key(cls, value: str) -> str:
        """Reject blank session keys."""
        if value.strip() == "":
            raise ValueError("attribution.session_key must not be blank")
        return value


class ShadowSchemaSettings(BaseModel):
    """Naming and field-selection rules for derived shadow types."""

    table_suffix: str = "_revision"
    class_suffix: str = "Revision"
    bookkeeping_fields: tuple[str, ...] = ("created_at", "updated_at", "deleted_at")
    who_dunnit_length: int = Field(default=255, gt=0)


class RevisionTrailSettings(BaseSettings):
    """Root settings resolved from init/env/yaml/defaults sources."""

    model_config = SettingsConfigDict(
        env_prefix="REVISION_TRAIL_",
        env_nested_delimiter="__",
        extra="ignore",
        nested_model_default_partial_update=True,
    )

    environment: str = "dev"
    logging: LoggingSettings = Field(default_factory=LoggingSettings)
    attribution: AttributionSettings = Field(default_factory=AttributionSettings)
    shadow: ShadowSchemaSettings = Field(default_factory=ShadowSchemaSettings)

    _config_path: ClassVar[Path] = DEFAULT_CONFIG_PATH
    _read_process_env: ClassVar[bool] = True

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: type[BaseSettings],
        init_settings: PydanticBaseSettingsSource,
        env_settings: PydanticBaseSettingsSource,
        dotenv_settings: PydanticBaseSettingsSource,
        file_secret_settings: PydanticBaseSettingsSource,
    ) -> tuple[PydanticBaseSettingsSource, ...]:
        """Apply precedence: init > env > yaml > defaults."""
        sources: list[PydanticBaseSettingsSource] = [init_settings]
        if cls._read_process_env:
            sources.append(env_settings)
        sources.append(
            YamlConfigSettingsSource(
                settings_cls,
                yaml_file=cls._config_path,
                yaml_file_encoding="utf-8",
            )
        )
        return tuple(sources)
