"""
Package Lifecycle Configuration

Settings are resolved in three layers:
1. Built-in defaults
2. Environment variables
3. An optional YAML settings file (load_settings(path))

The project auto-update toggle is resolved here once and passed into the
service explicitly, so behavior never depends on ambient process state at
call time.
"""

import logging
import os
from dataclasses import dataclass, fields, replace
from pathlib import Path
from typing import Any, Dict, Optional, Union

import yaml

logger = logging.getLogger("package_config")

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"

# Any non-empty value disables recording newly created versions in the project file
AUTOUPDATE_DISABLE_ENV = "SF_PROJECT_AUTOUPDATE_DISABLE_FOR_PACKAGE_VERSION_CREATE"


def _env_flag(name: str) -> bool:
    return bool(os.getenv(name))


@dataclass(frozen=True)
class LifecycleSettings:
    """Runtime settings for package lifecycle operations."""
    api_version: str = "59.0"
    request_timeout: float = 30.0            # seconds per HTTP request
    install_poll_frequency: float = 10.0     # seconds, when the caller sets none
    auto_update_project: bool = True
    event_history_size: int = 100

    @classmethod
    def from_env(cls) -> "LifecycleSettings":
        return cls(
            api_version=os.getenv("PACKAGE_LIFECYCLE_API_VERSION", cls.api_version),
            request_timeout=float(os.getenv("PACKAGE_LIFECYCLE_REQUEST_TIMEOUT", cls.request_timeout)),
            install_poll_frequency=float(
                os.getenv("PACKAGE_LIFECYCLE_INSTALL_POLL_FREQUENCY", cls.install_poll_frequency)
            ),
            auto_update_project=not _env_flag(AUTOUPDATE_DISABLE_ENV),
            event_history_size=int(os.getenv("PACKAGE_LIFECYCLE_EVENT_HISTORY", cls.event_history_size)),
        )

    def with_overrides(self, overrides: Dict[str, Any]) -> "LifecycleSettings":
        known = {f.name for f in fields(self)}
        unknown = set(overrides) - known
        if unknown:
            logger.warning(f"Ignoring unknown settings: {sorted(unknown)}")
        return replace(self, **{k: v for k, v in overrides.items() if k in known})


def load_settings(path: Optional[Union[str, Path]] = None) -> LifecycleSettings:
    """
    Resolve settings from the environment, then overlay a YAML file if given.

    Raises:
        FileNotFoundError: path given but missing
        ValueError: file is not a YAML mapping
    """
    settings = LifecycleSettings.from_env()
    if path is None:
        return settings

    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"Settings file not found: {path}")
    with open(path, "r") as f:
        data = yaml.safe_load(f) or {}
    if not isinstance(data, dict):
        raise ValueError(f"Settings file {path} must contain a mapping")

    logger.info(f"Loaded settings overrides from {path}")
    return settings.with_overrides(data)


def configure_logging(level: int = logging.INFO):
    logging.basicConfig(level=level, format=LOG_FORMAT)
