"""
Package Lifecycle Models

Status enums, remote record models and caller-facing option models.

Remote records are parsed from the platform's PascalCase JSON into frozen
pydantic models. A record is immutable once returned: each poll produces a
new record that supersedes the previous one.

Status fields are kept as plain strings so an unrecognized future status
survives parsing and is rejected by the poller's transition table instead.
"""

from dataclasses import dataclass
from datetime import timedelta
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field


# -----------------------------------------------------------------------------
# Enums - Remote Status Values
# -----------------------------------------------------------------------------
class CreateRequestStatus(str, Enum):
    """Status values of a package version create request."""
    QUEUED = "Queued"
    IN_PROGRESS = "InProgress"
    INITIALIZING = "Initializing"
    VERIFYING_FEATURES_AND_SETTINGS = "VerifyingFeaturesAndSettings"
    VERIFYING_DEPENDENCIES = "VerifyingDependencies"
    VERIFYING_METADATA = "VerifyingMetadata"
    FINALIZING_PACKAGE_VERSION = "FinalizingPackageVersion"
    SUCCESS = "Success"
    ERROR = "Error"


class InstallRequestStatus(str, Enum):
    """Status values of a package install request."""
    IN_PROGRESS = "IN_PROGRESS"
    SUCCESS = "SUCCESS"
    ERROR = "ERROR"
    UNKNOWN = "UNKNOWN"


class UninstallRequestStatus(str, Enum):
    """Status values of a subscriber package version uninstall request."""
    QUEUED = "Queued"
    IN_PROGRESS = "InProgress"
    SUCCESS = "Success"
    ERROR = "Error"


class InstallValidationStatus(str, Enum):
    """
    Installability of a subscriber package version in the target org.

    Only PACKAGE_UNAVAILABLE means "not yet published"; every other value
    means the artifact has been replicated.
    """
    NO_ERRORS_DETECTED = "NO_ERRORS_DETECTED"
    BETA_INSTALL_INTO_PRODUCTION_ORG = "BETA_INSTALL_INTO_PRODUCTION_ORG"
    CANNOT_INSTALL_EARLIER_VERSION = "CANNOT_INSTALL_EARLIER_VERSION"
    CANNOT_UPGRADE_BETA = "CANNOT_UPGRADE_BETA"
    CANNOT_UPGRADE_UNMANAGED = "CANNOT_UPGRADE_UNMANAGED"
    DEPRECATED_INSTALL_PACKAGE = "DEPRECATED_INSTALL_PACKAGE"
    EXTENSIONS_ON_LOCAL_PACKAGES = "EXTENSIONS_ON_LOCAL_PACKAGES"
    PACKAGE_NOT_INSTALLED = "PACKAGE_NOT_INSTALLED"
    PACKAGE_HAS_IN_DEV_EXTENSIONS = "PACKAGE_HAS_IN_DEV_EXTENSIONS"
    INSTALL_INTO_DEV_ORG = "INSTALL_INTO_DEV_ORG"
    NO_ACCESS = "NO_ACCESS"
    PACKAGING_DISABLED = "PACKAGING_DISABLED"
    PACKAGING_NO_ACCESS = "PACKAGING_NO_ACCESS"
    PACKAGE_UNAVAILABLE = "PACKAGE_UNAVAILABLE"
    PACKAGE_UNAVAILABLE_CRC = "PACKAGE_UNAVAILABLE_CRC"
    PACKAGE_UNAVAILABLE_ZIP = "PACKAGE_UNAVAILABLE_ZIP"
    UNINSTALL_IN_PROGRESS = "UNINSTALL_IN_PROGRESS"
    UNKNOWN_ERROR = "UNKNOWN_ERROR"
    NAMESPACE_COLLISION = "NAMESPACE_COLLISION"


class PackageType(str, Enum):
    """Container type of a package."""
    MANAGED = "Managed"
    UNLOCKED = "Unlocked"


# -----------------------------------------------------------------------------
# Polling Policy
# -----------------------------------------------------------------------------
@dataclass(frozen=True)
class PollingPolicy:
    """
    Polling cadence for a long-running operation.

    A timeout of zero or less means "no polling": the status is fetched once
    and returned as-is.
    """
    frequency: timedelta = timedelta(0)
    timeout: timedelta = timedelta(0)

    @classmethod
    def of_seconds(cls, frequency: float, timeout: float) -> "PollingPolicy":
        return cls(frequency=timedelta(seconds=frequency), timeout=timedelta(seconds=timeout))

    @property
    def polls(self) -> bool:
        return self.timeout > timedelta(0)


NO_POLLING = PollingPolicy()


# -----------------------------------------------------------------------------
# Remote Records
# -----------------------------------------------------------------------------
class RemoteRecord(BaseModel):
    """Base for records parsed from remote JSON (PascalCase field names)."""
    model_config = ConfigDict(populate_by_name=True, frozen=True, extra="ignore")


class PackageVersionCreateRequestResult(RemoteRecord):
    """Status record of a package version create request (08c)."""
    id: str = Field(..., alias="Id")
    status: str = Field(..., alias="Status")
    package2_id: Optional[str] = Field(None, alias="Package2Id")
    package2_version_id: Optional[str] = Field(None, alias="Package2VersionId")
    subscriber_package_version_id: Optional[str] = Field(None, alias="SubscriberPackageVersionId")
    tag: Optional[str] = Field(None, alias="Tag")
    branch: Optional[str] = Field(None, alias="Branch")
    error: List[str] = Field(default_factory=list, alias="Error")
    created_date: Optional[str] = Field(None, alias="CreatedDate")
    created_by: Optional[str] = Field(None, alias="CreatedBy")
    has_metadata_removed: Optional[bool] = Field(None, alias="HasMetadataRemoved")


class PackageInstallRequest(RemoteRecord):
    """Status record of a package install request (0Hf)."""
    id: str = Field(..., alias="Id")
    status: str = Field(..., alias="Status")
    subscriber_package_version_key: Optional[str] = Field(None, alias="SubscriberPackageVersionKey")
    password: Optional[str] = Field(None, alias="Password")
    errors: List[str] = Field(default_factory=list, alias="Errors")


class SubscriberPackageVersionStatus(RemoteRecord):
    """Installability of a subscriber package version, used for publish waits."""
    id: str = Field(..., alias="Id")
    subscriber_package_id: Optional[str] = Field(None, alias="SubscriberPackageId")
    install_validation_status: str = Field(
        InstallValidationStatus.PACKAGE_UNAVAILABLE.value, alias="InstallValidationStatus"
    )

    @property
    def status(self) -> str:
        return self.install_validation_status

    @property
    def is_published(self) -> bool:
        return self.install_validation_status != InstallValidationStatus.PACKAGE_UNAVAILABLE.value


class UninstallRequest(RemoteRecord):
    """Status record of a subscriber package version uninstall request (06y)."""
    id: str = Field(..., alias="Id")
    status: str = Field(..., alias="Status")
    subscriber_package_version_id: Optional[str] = Field(None, alias="SubscriberPackageVersionId")


class PackageVersionRecord(RemoteRecord):
    """Full Package2Version field set."""
    id: str = Field(..., alias="Id")
    package2_id: Optional[str] = Field(None, alias="Package2Id")
    subscriber_package_version_id: Optional[str] = Field(None, alias="SubscriberPackageVersionId")
    name: Optional[str] = Field(None, alias="Name")
    description: Optional[str] = Field(None, alias="Description")
    tag: Optional[str] = Field(None, alias="Tag")
    branch: Optional[str] = Field(None, alias="Branch")
    ancestor_id: Optional[str] = Field(None, alias="AncestorId")
    major_version: Optional[int] = Field(None, alias="MajorVersion")
    minor_version: Optional[int] = Field(None, alias="MinorVersion")
    patch_version: Optional[int] = Field(None, alias="PatchVersion")
    build_number: Optional[int] = Field(None, alias="BuildNumber")
    is_deprecated: bool = Field(False, alias="IsDeprecated")
    is_password_protected: bool = Field(False, alias="IsPasswordProtected")
    is_released: bool = Field(False, alias="IsReleased")
    install_key: Optional[str] = Field(None, alias="InstallKey")
    validation_skipped: Optional[bool] = Field(None, alias="ValidationSkipped")
    code_coverage: Optional[Any] = Field(None, alias="CodeCoverage")
    has_passed_code_coverage_check: Optional[bool] = Field(None, alias="HasPassedCodeCoverageCheck")
    converted_from_version_id: Optional[str] = Field(None, alias="ConvertedFromVersionId")
    release_version: Optional[str] = Field(None, alias="ReleaseVersion")
    build_duration_in_seconds: Optional[int] = Field(None, alias="BuildDurationInSeconds")
    has_metadata_removed: Optional[bool] = Field(None, alias="HasMetadataRemoved")
    created_date: Optional[str] = Field(None, alias="CreatedDate")
    last_modified_date: Optional[str] = Field(None, alias="LastModifiedDate")

    @property
    def version_number(self) -> str:
        return (
            f"{self.major_version or 0}.{self.minor_version or 0}."
            f"{self.patch_version or 0}.{self.build_number or 0}"
        )


# Field list queried when populating a PackageVersionRecord
PACKAGE_VERSION_FIELDS = [
    field_info.alias for field_info in PackageVersionRecord.model_fields.values()
]


class PackageVersionReport(PackageVersionRecord):
    """Package version details joined with the owning package."""
    package_name: Optional[str] = Field(None, alias="PackageName")
    namespace_prefix: Optional[str] = Field(None, alias="NamespacePrefix")
    package_type: Optional[str] = Field(None, alias="PackageType")


class SaveResult(RemoteRecord):
    """Outcome of a create or update mutation."""
    id: Optional[str] = None
    success: bool = True
    errors: List[str] = Field(default_factory=list)


# -----------------------------------------------------------------------------
# Caller Options
# -----------------------------------------------------------------------------
class PackageVersionUpdateOptions(BaseModel):
    """Mutable text fields of a package version. Unset fields are left untouched."""
    version_name: Optional[str] = None
    version_description: Optional[str] = None
    branch: Optional[str] = None
    tag: Optional[str] = None
    install_key: Optional[str] = None

    def to_payload(self, version_id: str) -> Dict[str, Any]:
        request = {
            "Id": version_id,
            "InstallKey": self.install_key,
            "Name": self.version_name,
            "Description": self.version_description,
            "Branch": self.branch,
            "Tag": self.tag,
        }
        return {key: value for key, value in request.items() if value is not None}


class PackageInstallCreateRequest(BaseModel):
    """Payload of a package install request."""
    model_config = ConfigDict(populate_by_name=True)

    subscriber_package_version_key: str = Field(..., alias="SubscriberPackageVersionKey")
    password: Optional[str] = Field(None, alias="Password")
    apex_compile_type: str = Field("all", alias="ApexCompileType")
    name_conflict_resolution: str = Field("Block", alias="NameConflictResolution")
    package_install_source: str = Field("U", alias="PackageInstallSource")
    security_type: str = Field("None", alias="SecurityType")
    skip_handlers: Optional[str] = Field(None, alias="SkipHandlers")
    upgrade_type: Optional[str] = Field(None, alias="UpgradeType")
    enable_rss: Optional[bool] = Field(None, alias="EnableRss")

    def to_payload(self) -> Dict[str, Any]:
        return self.model_dump(by_alias=True, exclude_none=True)


class PackageInstallOptions(BaseModel):
    """Polling budgets for the publish-wait and install-status phases."""
    publish_timeout: timedelta = timedelta(0)
    publish_frequency: Optional[timedelta] = None
    polling_timeout: timedelta = timedelta(0)
    polling_frequency: Optional[timedelta] = None
