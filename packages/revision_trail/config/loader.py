"""Settings loading with deterministic precedence.

The cascade is always:
1) explicit ``cli_params``
2) environment variables
3) the YAML config file
4) model defaults

Environment variable format:
- Prefix: ``REVISION_TRAIL_``
- Nested keys: ``__`` separator
- Example: ``REVISION_TRAIL_ATTRIBUTION__FALLBACK=batch`` -> ``attribution.fallback``
"""

from __future__ import annotations

import copy
import json
from pathlib import Path
from typing import Any, ClassVar, Mapping

import yaml

from .models import DEFAULT_CONFIG_PATH, RevisionTrailSettings

ENV_PREFIX = "REVISION_TRAIL_"


def load_settings(
    *,
    cli_params: Mapping[str, Any] | None = None,
    environ: Mapping[str, str] | None = None,
    config_path: str | Path | None = None,
) -> RevisionTrailSettings:
    """Resolve settings from explicit params, env, YAML and defaults.

    When ``environ`` is given it replaces the process environment entirely,
    which keeps tests independent of the shell that runs them.
    """
    resolved_path = Path(config_path) if config_path is not None else DEFAULT_CONFIG_PATH
    _ensure_yaml_mapping(resolved_path)

    init_data: dict[str, Any] = {}
    if environ is not None:
        init_data = _load_env_config(environ)
    if cli_params is not None:
        init_data = _merge_dicts(init_data, cli_params)

    settings_cls = _bind_sources(resolved_path, read_process_env=environ is None)
    return settings_cls(**init_data)


def _bind_sources(
    config_path: Path, *, read_process_env: bool
) -> type[RevisionTrailSettings]:
    """Return a settings class reading the given YAML file."""
    if config_path == DEFAULT_CONFIG_PATH and read_process_env:
        return RevisionTrailSettings

    class _BoundSettings(RevisionTrailSettings):
        _config_path: ClassVar[Path] = config_path
        _read_process_env: ClassVar[bool] = read_process_env

    return _BoundSettings


def _ensure_yaml_mapping(path: Path) -> None:
    """Reject config files whose top level is not a mapping."""
    if not path.exists():
        return
    with path.open("r", encoding="utf-8") as handle:
        parsed = yaml.safe_load(handle)
    if parsed is not None and not isinstance(parsed, dict):
        raise ValueError(f"Config file must contain a top-level mapping: {path}")


def _load_env_config(environ: Mapping[str, str]) -> dict[str, Any]:
    """Map prefixed environment variables into nested config."""
    output: dict[str, Any] = {}
    for key, raw_value in environ.items():
        if not key.startswith(ENV_PREFIX):
            continue
        path = [
            segment.strip().lower()
            for segment in key[len(ENV_PREFIX) :].split("__")
            if segment.strip()
        ]
        if not path:
            continue
        cursor = output
        for segment in path[:-1]:
            child = cursor.get(segment)
            if not isinstance(child, dict):
                child = {}
                cursor[segment] = child
            cursor = child
        cursor[path[-1]] = _coerce_scalar(raw_value)
    return output


def _merge_dicts(base: Mapping[str, Any], override: Mapping[str, Any]) -> dict[str, Any]:
    """Recursively merge mappings, with ``override`` taking precedence."""
    result = copy.deepcopy(dict(base))
    for key, override_value in override.items():
        base_value = result.get(key)
        if isinstance(base_value, dict) and isinstance(override_value, Mapping):
            result[key] = _merge_dicts(base_value, override_value)
            continue
        result[key] = copy.deepcopy(override_value)
    return result


def _coerce_scalar(raw: str) -> Any:
    """Decode JSON lists/objects and null markers; leave the rest to pydantic."""
    value = raw.strip()
    if value.lower() in {"null", "none"}:
        return None
    if value.startswith("{") or value.startswith("["):
        try:
            return json.loads(value)
        except json.JSONDecodeError:
            return raw
    return raw
