"""Environment loading helpers.

pveup reads optional dotenv files so hosts can pin settings such as
PVEUP_MIN_FREE_DISK_GB or an http_proxy for apt without editing JSON:

- OS environment (highest precedence)
- User environment file (~/.config/pveup/.env)
- Host environment file (/etc/pveup/pveup.env)

Variables already present in the process environment are never overridden.
"""

from __future__ import annotations

import os
from pathlib import Path
from typing import Iterable

from dotenv import dotenv_values

SYSTEM_ENV_PATH = Path("/etc/pveup/pveup.env")


def _read_env(path: Path) -> dict[str, str]:
    if not path.exists():
        return {}
    values = dotenv_values(path)
    out: dict[str, str] = {}
    for k, v in values.items():
        if k is None or v is None:
            continue
        out[str(k)] = str(v)
    return out


def load_layered_env(
    *,
    system_env_paths: Iterable[Path] | None = None,
    user_env_paths: Iterable[Path] | None = None,
) -> None:
    """Load environment variables from host + user .env files.

    Args:
        system_env_paths: explicit host env file paths
        user_env_paths: explicit user env file paths

    Notes:
        Keys that came from the host file may be overridden by the user file;
        pre-existing OS environment always wins.
    """
    if system_env_paths is None:
        system_env_paths = [SYSTEM_ENV_PATH]

    if user_env_paths is None:
        xdg_home = Path(os.environ.get("XDG_CONFIG_HOME", str(Path.home() / ".config")))
        user_env_paths = [xdg_home / "pveup" / ".env"]

    system_set_keys: set[str] = set()
    for p in system_env_paths:
        for k, v in _read_env(Path(p)).items():
            if k not in os.environ:
                os.environ[k] = v
                system_set_keys.add(k)

    for p in user_env_paths:
        for k, v in _read_env(Path(p)).items():
            if k not in os.environ or k in system_set_keys:
                os.environ[k] = v
