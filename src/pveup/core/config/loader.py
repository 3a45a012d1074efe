"""
Configuration loading with multi-layer merging.

Implements the configuration precedence chain:
    defaults < system config < user config < explicit config < env vars
"""

import json
import os
from pathlib import Path
from typing import Any

from .models import PveupConfig

SYSTEM_CONFIG_PATH = Path("/etc/pveup/config.json")


def get_xdg_config_home() -> Path:
    """
    Get XDG config home directory.

    Returns:
        Path to config directory (defaults to ~/.config)
    """
    if xdg_home := os.environ.get("XDG_CONFIG_HOME"):
        return Path(xdg_home)
    return Path.home() / ".config"


def get_user_config_path() -> Path:
    """
    Get path to user configuration file.

    Returns:
        Path to ~/.config/pveup/config.json (or XDG equivalent)
    """
    return get_xdg_config_home() / "pveup" / "config.json"


def get_system_config_path() -> Path:
    """Get path to the host-wide configuration file."""
    if override := os.environ.get("PVEUP_SYSTEM_CONFIG"):
        return Path(override)
    return SYSTEM_CONFIG_PATH


def deep_merge(base: dict[str, Any], override: dict[str, Any]) -> dict[str, Any]:
    """
    Deep merge two dictionaries.

    Values in `override` take precedence over values in `base`.
    Nested dicts are merged, not replaced.

    Example:
        >>> deep_merge({"a": 1, "b": {"x": 10}}, {"b": {"y": 30}})
        {'a': 1, 'b': {'x': 10, 'y': 30}}
    """
    result = base.copy()

    for key, value in override.items():
        if key in result and isinstance(result[key], dict) and isinstance(value, dict):
            result[key] = deep_merge(result[key], value)
        else:
            result[key] = value

    return result


def load_json_file(path: Path) -> dict[str, Any] | None:
    """
    Load a JSON file, returning None if it doesn't exist or is invalid.

    Args:
        path: Path to JSON file

    Returns:
        Parsed JSON as dict, or None if file doesn't exist or can't be parsed
    """
    if not path.exists():
        return None

    try:
        with path.open() as f:
            data = json.load(f)
            if isinstance(data, dict):
                return data
            return None
    except (json.JSONDecodeError, OSError) as e:
        # Config system should be resilient: warn and fall back
        print(f"Warning: Failed to parse config at {path}: {e}")
        return None


def _env_flag(value: str) -> bool:
    return value.lower() not in ("false", "0", "no", "")


def apply_env_overrides(config_dict: dict[str, Any]) -> dict[str, Any]:
    """
    Apply environment variable overrides to configuration.

    Env vars have the highest precedence and override all config files.

    Supported env vars:
        PVEUP_MIN_FREE_DISK_GB - overrides thresholds.min_free_disk_gb
        PVEUP_CONNECTIVITY_HOST - overrides thresholds.connectivity_host
        PVEUP_PATCH_SUBSCRIPTION_NOTICE - overrides cleanup.patch_subscription_notice
        PVEUP_CONFIRM_START - overrides gates.confirm_start
        PVEUP_LOG_DIR - overrides log_dir

    Args:
        config_dict: Configuration dictionary to override

    Returns:
        Configuration dictionary with env var overrides applied
    """
    result = config_dict.copy()

    if disk_str := os.environ.get("PVEUP_MIN_FREE_DISK_GB"):
        try:
            disk_value = int(disk_str)
            if disk_value < 0:
                print(f"Warning: PVEUP_MIN_FREE_DISK_GB must be >= 0, got {disk_value}, ignoring")
            else:
                result.setdefault("thresholds", {})
                result["thresholds"]["min_free_disk_gb"] = disk_value
        except ValueError:
            print(f"Warning: Invalid PVEUP_MIN_FREE_DISK_GB value '{disk_str}', ignoring")

    if host := os.environ.get("PVEUP_CONNECTIVITY_HOST"):
        result.setdefault("thresholds", {})
        result["thresholds"]["connectivity_host"] = host

    if patch_str := os.environ.get("PVEUP_PATCH_SUBSCRIPTION_NOTICE"):
        result.setdefault("cleanup", {})
        result["cleanup"]["patch_subscription_notice"] = _env_flag(patch_str)

    if confirm_str := os.environ.get("PVEUP_CONFIRM_START"):
        result.setdefault("gates", {})
        result["gates"]["confirm_start"] = _env_flag(confirm_str)

    if log_dir := os.environ.get("PVEUP_LOG_DIR"):
        result["log_dir"] = log_dir

    return result


def load_config(config_file: Path | None = None) -> PveupConfig:
    """
    Load configuration with multi-layer merging.

    Configuration precedence (highest to lowest):
        1. Environment variables (PVEUP_*)
        2. Explicit config file (--config)
        3. User config (~/.config/pveup/config.json)
        4. System config (/etc/pveup/config.json)
        5. Model defaults

    Args:
        config_file: Optional explicit configuration file

    Returns:
        Validated PveupConfig instance

    Raises:
        FileNotFoundError: If config_file is given but does not exist
        ValidationError: If the merged config fails Pydantic validation
    """
    merged: dict[str, Any] = {}

    if system_config := load_json_file(get_system_config_path()):
        merged = deep_merge(merged, system_config)

    if user_config := load_json_file(get_user_config_path()):
        merged = deep_merge(merged, user_config)

    if config_file is not None:
        if not config_file.exists():
            raise FileNotFoundError(f"Config file not found: {config_file}")
        if explicit := load_json_file(config_file):
            merged = deep_merge(merged, explicit)

    merged = apply_env_overrides(merged)

    return PveupConfig(**merged)
