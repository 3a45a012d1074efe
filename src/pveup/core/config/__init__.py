"""
Configuration models and loading.

This module provides Pydantic models for pveup configuration
with multi-layer merging: defaults < system < user < explicit < env vars.
"""

from .env import load_layered_env
from .loader import (
    get_system_config_path,
    get_user_config_path,
    get_xdg_config_home,
    load_config,
)
from .models import (
    CleanupConfig,
    GatesConfig,
    PackagesConfig,
    PveupConfig,
    RepositoryConfig,
    StepOverridesConfig,
    TargetConfig,
    ThresholdsConfig,
)

__all__ = [
    # Models
    "CleanupConfig",
    "GatesConfig",
    "PackagesConfig",
    "PveupConfig",
    "RepositoryConfig",
    "StepOverridesConfig",
    "TargetConfig",
    "ThresholdsConfig",
    # Loader functions
    "get_system_config_path",
    "get_user_config_path",
    "get_xdg_config_home",
    "load_config",
    "load_layered_env",
]
