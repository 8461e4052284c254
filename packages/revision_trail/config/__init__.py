"""Public API for revision tracking configuration."""

from .loader import load_settings
from .models import (
    DEFAULT_CONFIG_PATH,
    AttributionSettings,
    LoggingSettings,
    RevisionTrailSettings,
    ShadowSchemaSettings,
)

__all__ = [
    "DEFAULT_CONFIG_PATH",
    "AttributionSettings",
    "LoggingSettings",
    "RevisionTrailSettings",
    "ShadowSchemaSettings",
    "load_settings",
]
