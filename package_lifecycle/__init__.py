"""
Package Lifecycle Module

Manages package versions on a remote packaging platform: creation, publish
and install waits, uninstall, metadata updates, promotion and reporting.

- polling: generic long-running operation poller with per-kind transition
  tables (create / publish / install / uninstall)
- events: lifecycle event emitter (Package/<kind>-<event>)
- package_version: PackageVersionService facade and PackageVersion entity
- connection: async tooling API client (httpx)
- project: project file package aliases
"""

__version__ = "0.1.0"

from .config import LifecycleSettings, configure_logging, load_settings
from .connection import ToolingConnection
from .errors import (
    InstallRequestNotFoundError,
    InvalidIdentifierError,
    PackageNotPublishedError,
    PackagingError,
    PollingTimeoutError,
    RemoteRequestError,
    SaveError,
    UnhandledStatusError,
    UninstallError,
    VersionNotFoundError,
)
from .events import (
    EventNamespace,
    LifecycleEvent,
    LifecycleEventEmitter,
    LifecycleEventType,
    event_name,
    get_event_emitter,
)
from .models import (
    NO_POLLING,
    CreateRequestStatus,
    InstallRequestStatus,
    InstallValidationStatus,
    PackageInstallCreateRequest,
    PackageInstallOptions,
    PackageVersionUpdateOptions,
    PollingPolicy,
    UninstallRequestStatus,
)
from .package_version import PackageVersion, PackageVersionService
from .polling import OperationPoller
from .project import ProjectMetadata
