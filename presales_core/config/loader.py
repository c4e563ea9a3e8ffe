"""YAML configuration loading.

Configuration is layered (later layers override earlier):

  1. ``config/config.yaml`` -- defaults checked into the repo, grouped
     into sections whose keys are :class:`Settings` field names
  2. ``.env`` file          -- local overrides (not committed)
  3. environment variables  -- set at deploy time

Template definitions for the rendition builder live in their own YAML or
JSON files and are loaded through :func:`load_template_config`.
"""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any

import yaml
from pydantic import ValidationError

from presales_core.config.settings import Settings
from presales_core.models.template import TemplateConfig
from presales_core.utils.errors import ConfigurationError


def load_config(path: str = "config/config.yaml") -> Settings:
    """Build :class:`Settings` from a YAML file with env/.env overrides.

    Args:
        path: Path to the YAML configuration file.  A missing file is the
              same as an empty one.

    Returns:
        Fully resolved, validated settings.

    Raises:
        ConfigurationError: If the YAML is malformed or a value is invalid.
    """
    config_path = Path(path)
    yaml_config: dict[str, Any] = {}
    if config_path.exists():
        with open(config_path, encoding="utf-8") as f:
            try:
                yaml_config = yaml.safe_load(f) or {}
            except yaml.YAMLError as exc:
                raise ConfigurationError(message=f"Invalid YAML in {path}: {exc}") from exc

    merged = _flatten_sections(yaml_config)

    try:
        env_settings = Settings()
        # Only fields that came from env/.env override the YAML layer.
        env_overrides = {
            name: getattr(env_settings, name) for name in env_settings.model_fields_set
        }
        _deep_merge(merged, env_overrides)
        return Settings.model_validate(merged)
    except ValidationError as exc:
        raise ConfigurationError(message=f"Invalid settings: {exc}") from exc


def load_template_config(path: str | Path) -> TemplateConfig:
    """Load a rendition template from a YAML (``.yaml``/``.yml``) or JSON file.

    Raises:
        ConfigurationError: If the file is missing, unparseable, or fails
            template validation.
    """
    template_path = Path(path)
    if not template_path.exists():
        raise ConfigurationError(message=f"Template file not found: {template_path}")

    raw = template_path.read_text(encoding="utf-8")
    try:
        if template_path.suffix.lower() in (".yaml", ".yml"):
            data = yaml.safe_load(raw) or {}
        else:
            data = json.loads(raw)
    except (yaml.YAMLError, json.JSONDecodeError) as exc:
        raise ConfigurationError(message=f"Cannot parse template {template_path}: {exc}") from exc

    if not isinstance(data, dict):
        raise ConfigurationError(message=f"Template {template_path} must be a mapping")
    return TemplateConfig.from_mapping(data)


def _flatten_sections(config: dict[str, Any]) -> dict[str, Any]:
    """Collapse ``{section: {field: value}}`` into ``{field: value}``."""
    flat: dict[str, Any] = {}
    for key, value in config.items():
        if isinstance(value, dict):
            flat.update(value)
        else:
            flat[key] = value
    return flat


def _deep_merge(base: dict, overrides: dict) -> None:
    """Recursively merge overrides into base dict, mutating base in place."""
    for key, value in overrides.items():
        if key in base and isinstance(base[key], dict) and isinstance(value, dict):
            _deep_merge(base[key], value)
        else:
            base[key] = value
