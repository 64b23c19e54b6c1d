"""Configuration loader that flattens config.yaml into settings defaults."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any

import yaml

logger = logging.getLogger(__name__)


def _default_config_path() -> Path:
    # src/wellness_companion/config/loader.py -> project root
    return Path(__file__).resolve().parents[3] / "config.yaml"


def _load_yaml_config(config_path: Path | str | None = None) -> dict[str, Any]:
    """Load YAML configuration file.

    Args:
        config_path: Path to YAML file. If None, uses config.yaml at project root.

    Returns:
        Parsed YAML as dictionary, or empty dict if file not found.
    """
    config_path = Path(config_path or _default_config_path()).resolve()

    if not config_path.exists():
        logger.warning(f"Config file not found: {config_path}")
        return {}

    try:
        with open(config_path, "r", encoding="utf-8") as f:
            data = yaml.safe_load(f) or {}
        logger.debug(f"Loaded config from {config_path}")
        return data
    except (OSError, yaml.YAMLError) as e:
        logger.error(f"Failed to load config from {config_path}: {e}")
        return {}


def _flatten_yaml_dict(yaml_data: dict[str, Any], prefix: str = "") -> dict[str, Any]:
    """Flatten nested YAML dict into env-var style keys.

    Example:
        {"checkin": {"mode": "cron"}} -> {"CHECKIN_MODE": "cron"}
    """
    result: dict[str, Any] = {}

    for key, value in yaml_data.items():
        new_key = f"{prefix}_{key}".upper() if prefix else key.upper()

        if isinstance(value, dict):
            result.update(_flatten_yaml_dict(value, new_key))
        elif isinstance(value, list):
            result[new_key] = ",".join(str(v) for v in value) if value else ""
        else:
            # None stays None so optional fields keep their meaning
            result[new_key] = value

    return result


_yaml_defaults: dict[str, Any] | None = None


def get_yaml_defaults(config_path: Path | str | None = None) -> dict[str, Any]:
    """Get flattened YAML defaults (cached unless an explicit path is given)."""
    global _yaml_defaults

    if config_path is not None:
        return _flatten_yaml_dict(_load_yaml_config(config_path))

    if _yaml_defaults is None:
        _yaml_defaults = _flatten_yaml_dict(_load_yaml_config())
    return _yaml_defaults
