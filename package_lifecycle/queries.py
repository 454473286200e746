"""
Packaging Queries

Status fetchers and request submissions against the tooling API. These are
plain request/response calls; all lifecycle control lives in polling.py and
package_version.py.

Each status fetcher returns a fresh, immutable record, so it is safe to call
repeatedly from a poll loop.
"""

import logging
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional

from .connection import ToolingConnection
from .errors import PackagingError
from .identifiers import escape_installation_key
from .models import (
    PACKAGE_VERSION_FIELDS,
    CreateRequestStatus,
    PackageInstallCreateRequest,
    PackageInstallRequest,
    PackageType,
    PackageVersionCreateRequestResult,
    PackageVersionRecord,
    PackageVersionReport,
    SubscriberPackageVersionStatus,
    UninstallRequest,
)

logger = logging.getLogger("packaging_queries")

SPV_QUERY_RESTRICTION = "Implementation restriction: You can only perform queries of the form Id"

CREATE_REQUEST_FIELDS = [
    "Id",
    "Status",
    "Package2Id",
    "Package2VersionId",
    "Package2Version.SubscriberPackageVersionId",
    "Package2Version.HasMetadataRemoved",
    "Tag",
    "Branch",
    "CreatedDate",
    "CreatedById",
]

COVERAGE_FIELDS = ["CodeCoverage", "HasPassedCodeCoverageCheck"]


# -----------------------------------------------------------------------------
# Version Create Requests
# -----------------------------------------------------------------------------
def _to_create_result(raw: Dict[str, Any], errors: List[str]) -> PackageVersionCreateRequestResult:
    version = raw.get("Package2Version") or {}
    return PackageVersionCreateRequestResult(
        Id=raw["Id"],
        Status=raw["Status"],
        Package2Id=raw.get("Package2Id"),
        Package2VersionId=raw.get("Package2VersionId"),
        SubscriberPackageVersionId=version.get("SubscriberPackageVersionId"),
        HasMetadataRemoved=version.get("HasMetadataRemoved"),
        Tag=raw.get("Tag"),
        Branch=raw.get("Branch"),
        CreatedDate=raw.get("CreatedDate"),
        CreatedBy=raw.get("CreatedById"),
        Error=errors,
    )


async def get_create_request_errors(connection: ToolingConnection, request_id: str) -> List[str]:
    result = await connection.query(
        f"SELECT Message FROM Package2VersionCreateRequestError WHERE ParentRequest.Id = '{request_id}'"
    )
    return [record.get("Message", "") for record in result.records]


async def get_create_request_status(
    connection: ToolingConnection,
    request_id: str
) -> PackageVersionCreateRequestResult:
    """Fetch the current status record of a version create request."""
    raw = await connection.single_record_query(
        f"SELECT {', '.join(CREATE_REQUEST_FIELDS)} FROM Package2VersionCreateRequest "
        f"WHERE Id = '{request_id}'"
    )
    errors: List[str] = []
    if raw.get("Status") == CreateRequestStatus.ERROR.value:
        errors = await get_create_request_errors(connection, request_id)
    return _to_create_result(raw, errors)


async def list_create_requests(
    connection: ToolingConnection,
    status: Optional[CreateRequestStatus] = None,
    created_last_days: Optional[int] = None
) -> List[PackageVersionCreateRequestResult]:
    """List version create requests, newest first."""
    clauses = []
    if status is not None:
        clauses.append(f"Status = '{CreateRequestStatus(status).value}'")
    if created_last_days is not None:
        since = datetime.utcnow() - timedelta(days=created_last_days)
        clauses.append(f"CreatedDate >= {since.strftime('%Y-%m-%dT%H:%M:%SZ')}")
    where = f" WHERE {' AND '.join(clauses)}" if clauses else ""

    result = await connection.query(
        f"SELECT {', '.join(CREATE_REQUEST_FIELDS)} FROM Package2VersionCreateRequest"
        f"{where} ORDER BY CreatedDate DESC"
    )
    return [_to_create_result(raw, []) for raw in result.records]


async def submit_create_request(connection: ToolingConnection, request: Dict[str, Any]) -> str:
    """Submit a caller-built version create request and return its 08c id."""
    save_result = await connection.create("Package2VersionCreateRequest", request)
    logger.info(f"Submitted package version create request {save_result.id}")
    return save_result.id


# -----------------------------------------------------------------------------
# Package Versions
# -----------------------------------------------------------------------------
async def get_package_version_record(connection: ToolingConnection, clause: str) -> PackageVersionRecord:
    raw = await connection.single_record_query(
        f"SELECT {', '.join(PACKAGE_VERSION_FIELDS)} FROM Package2Version WHERE {clause} LIMIT 1"
    )
    return PackageVersionRecord.model_validate(raw)


async def get_package_type(connection: ToolingConnection, package_id: str) -> PackageType:
    raw = await connection.single_record_query(
        f"SELECT ContainerOptions FROM Package2 WHERE Id = '{package_id}' LIMIT 1"
    )
    return PackageType(raw["ContainerOptions"])


async def get_package_version_report(
    connection: ToolingConnection,
    version_id: str,
    verbose: bool = False
) -> PackageVersionReport:
    """
    Report details of one package version.

    Code coverage fields are only queried when verbose is set, since they
    are expensive for the platform to compute.
    """
    fields = [f for f in PACKAGE_VERSION_FIELDS if verbose or f not in COVERAGE_FIELDS]
    fields += ["Package2.Name", "Package2.NamespacePrefix", "Package2.ContainerOptions"]
    raw = await connection.single_record_query(
        f"SELECT {', '.join(fields)} FROM Package2Version WHERE Id = '{version_id}' LIMIT 1"
    )
    package = raw.pop("Package2", None) or {}
    raw["PackageName"] = package.get("Name")
    raw["NamespacePrefix"] = package.get("NamespacePrefix")
    raw["PackageType"] = package.get("ContainerOptions")
    return PackageVersionReport.model_validate(raw)


# -----------------------------------------------------------------------------
# Install
# -----------------------------------------------------------------------------
async def get_installation_status(
    connection: ToolingConnection,
    subscriber_version_id: str,
    installation_key: Optional[str] = None
) -> Optional[SubscriberPackageVersionStatus]:
    """Check whether a subscriber version is installable. None if no record matches."""
    query = (
        f"SELECT Id, SubscriberPackageId, InstallValidationStatus FROM SubscriberPackageVersion "
        f"WHERE Id ='{subscriber_version_id}'"
    )
    if installation_key:
        query += f" AND InstallationKey ='{escape_installation_key(installation_key)}'"
    result = await connection.query(query)
    if not result.records:
        return None
    return SubscriberPackageVersionStatus.model_validate(result.records[0])


async def get_install_request_status(
    connection: ToolingConnection,
    install_request_id: str
) -> PackageInstallRequest:
    raw = await connection.retrieve("PackageInstallRequest", install_request_id)
    errors = raw.get("Errors") or []
    if isinstance(errors, dict):
        errors = errors.get("errors") or []
    raw["Errors"] = [e.get("message", "") if isinstance(e, dict) else str(e) for e in errors]
    return PackageInstallRequest.model_validate(raw)


async def create_install_request(
    connection: ToolingConnection,
    request: PackageInstallCreateRequest,
    package_type: Optional[PackageType]
) -> str:
    """Submit a package install request and return its 0Hf id."""
    payload = request.to_payload()
    if package_type == PackageType.UNLOCKED:
        payload.setdefault("UpgradeType", "mixed-mode")
    else:
        payload.pop("UpgradeType", None)

    save_result = await connection.create("PackageInstallRequest", payload)
    logger.info(
        f"Submitted install request {save_result.id} for {request.subscriber_package_version_key}"
    )
    return save_result.id


def is_error_from_spv_query_restriction(err: Exception) -> bool:
    """Orgs before the InstallationKey query filter reject key-scoped queries."""
    return (
        isinstance(err, PackagingError)
        and err.code == "MALFORMED_QUERY"
        and SPV_QUERY_RESTRICTION in err.message
    )


async def get_external_site_records(connection: ToolingConnection, query: str) -> List[Dict[str, Any]]:
    result = await connection.query(query)
    return result.records


# -----------------------------------------------------------------------------
# Uninstall
# -----------------------------------------------------------------------------
async def submit_uninstall_request(connection: ToolingConnection, subscriber_version_id: str) -> str:
    save_result = await connection.create(
        "SubscriberPackageVersionUninstallRequest",
        {"SubscriberPackageVersionId": subscriber_version_id}
    )
    logger.info(f"Submitted uninstall request {save_result.id} for {subscriber_version_id}")
    return save_result.id


async def get_uninstall_request_status(connection: ToolingConnection, request_id: str) -> UninstallRequest:
    raw = await connection.retrieve("SubscriberPackageVersionUninstallRequest", request_id)
    return UninstallRequest.model_validate(raw)


async def get_uninstall_errors(connection: ToolingConnection, request_id: str) -> List[str]:
    result = await connection.query(
        f"SELECT Message FROM PackageVersionUninstallRequestError "
        f"WHERE ParentRequest.Id = '{request_id}' ORDER BY Message"
    )
    return [record.get("Message", "") for record in result.records]
