"""
Configuration loader.

Reads the YAML files under ``config/`` (or ``$GHMIRROR_CONFIG_DIR``),
merges them in a fixed order and substitutes environment variables.
Each concern has an ``*.example.yaml`` with defaults; a sibling file
without the ``.example`` part overrides it key by key.

Substitution syntax inside string values:
    ${VAR}            value of VAR, empty when unset
    ${VAR:-default}   value of VAR, ``default`` when unset or empty
"""

import logging
import os
import re
from functools import lru_cache
from pathlib import Path
from typing import Any

import yaml

logger = logging.getLogger(__name__)

CONFIG_DIR = Path(__file__).parent.parent.parent.parent / "config"
CONFIG_DIR_ENV = "GHMIRROR_CONFIG_DIR"

# Loaded in order; later files override earlier ones
CONFIG_FILES = [
    "storage.example.yaml",
    "storage.yaml",
    "github.example.yaml",
    "github.yaml",
    "jobs.example.yaml",
    "jobs.yaml",
]

ENV_VAR_PATTERN = re.compile(r"\$\{([A-Za-z_][A-Za-z0-9_]*)(?::-([^}]*))?\}")


def _expand(match: re.Match) -> str:
    name, default = match.group(1), match.group(2)
    value = os.environ.get(name)
    if value:
        return value
    return default if default is not None else ""


def _substitute_env_vars(obj: Any) -> Any:
    """Recursively substitute ``${...}`` references in strings."""
    if isinstance(obj, str):
        return ENV_VAR_PATTERN.sub(_expand, obj)
    if isinstance(obj, dict):
        return {k: _substitute_env_vars(v) for k, v in obj.items()}
    if isinstance(obj, list):
        return [_substitute_env_vars(item) for item in obj]
    return obj


def load_yaml(path: Path) -> dict[str, Any]:
    """Load a single YAML file; a missing file yields an empty dict."""
    if not path.exists():
        logger.warning(f"Config file not found: {path}")
        return {}

    with open(path) as f:
        data = yaml.safe_load(f) or {}

    return _substitute_env_vars(data)


def deep_merge(base: dict, override: dict) -> dict:
    """Deep merge two dictionaries. Override takes precedence."""
    result = base.copy()

    for key, value in override.items():
        if key in result and isinstance(result[key], dict) and isinstance(value, dict):
            result[key] = deep_merge(result[key], value)
        else:
            result[key] = value

    return result


def resolve_config_dir(config_dir: str | None = None) -> Path:
    """Explicit argument, then ``$GHMIRROR_CONFIG_DIR``, then the repo's ``config/``."""
    if config_dir:
        return Path(config_dir)
    from_env = os.environ.get(CONFIG_DIR_ENV)
    return Path(from_env) if from_env else CONFIG_DIR


@lru_cache(maxsize=1)
def get_config(config_dir: str | None = None) -> dict[str, Any]:
    """Load and merge all config files."""
    base_dir = resolve_config_dir(config_dir)

    config: dict[str, Any] = {}
    for filename in CONFIG_FILES:
        file_path = base_dir / filename
        if file_path.exists():
            config = deep_merge(config, load_yaml(file_path))
            logger.debug(f"Loaded config: {filename}")

    return config


def reload_config() -> dict[str, Any]:
    """Force reload config (clears cache)."""
    get_config.cache_clear()
    return get_config()


def get_github_config() -> dict[str, Any]:
    """Upstream API section: token, endpoint, org, timeout_seconds."""
    return get_config().get("github", {})


def get_jobs_config() -> dict[str, Any]:
    """Background jobs section: wait timeout, backup and realignment."""
    return get_config().get("jobs", {})
