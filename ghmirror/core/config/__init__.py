"""Config module — loading and managing configuration."""

from ghmirror.core.config.loader import (
    get_config,
    get_github_config,
    get_jobs_config,
    reload_config,
)

__all__ = [
    "get_config",
    "get_github_config",
    "get_jobs_config",
    "reload_config",
]
