"""
Package Lifecycle Errors

Structured error taxonomy for package version lifecycle operations.

Every error carries a machine-readable code, a human-readable message,
structured details and a list of remediation actions. Remote failures are
passed through an enrichment step before they reach the caller:

1. massage_error_message() rewrites known platform error codes into
   wording that names the actual problem
2. apply_error_action() appends a "contact platform support" action to
   anything that looks like a permission restriction

IMPORTANT:
- Validation errors never reach the remote system
- Remote and timeout errors are always surfaced, never swallowed
"""

import logging
import re
from typing import Any, Dict, List, Optional

logger = logging.getLogger("package_errors")

SUPPORT_ACTION = (
    "Packaging operations may require additional permissions on the target org. "
    "Contact platform support to enable them."
)

# Codes that always indicate a permission or feature restriction
PERMISSION_ERROR_CODES = {
    "INSUFFICIENT_ACCESS",
    "INSUFFICIENT_ACCESS_OR_READONLY",
    "INSUFFICIENT_ACCESS_ON_CROSS_REFERENCE_ENTITY",
    "FUNCTIONALITY_NOT_ENABLED",
    "INVALID_TYPE",
}

PERMISSION_MESSAGE_PATTERNS = [
    r"insufficient access",
    r"insufficient privileges",
    r"not enabled",
    r"is not supported",
    r"permission",
]

PACKAGING_SOBJECT_PATTERN = re.compile(
    r"sObject type '(Package2\w*|SubscriberPackage\w*|PackageInstallRequest)' is not supported",
    re.IGNORECASE,
)


# -----------------------------------------------------------------------------
# Error Types
# -----------------------------------------------------------------------------
class PackagingError(Exception):
    """Base packaging error with structured details."""
    def __init__(
        self,
        code: str,
        message: str,
        details: Dict[str, Any] = None,
        actions: Optional[List[str]] = None
    ):
        self.code = code
        self.message = message
        self.details = details or {}
        self.actions = list(actions or [])
        super().__init__(message)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "error": True,
            "code": self.code,
            "message": self.message,
            "details": self.details,
            "actions": self.actions,
        }


class InvalidIdentifierError(PackagingError):
    def __init__(self, label: str, value: str):
        super().__init__(
            code="INVALID_ID",
            message=f"Invalid {label}: '{value}'",
            details={"label": label, "value": value}
        )


class RemoteRequestError(PackagingError):
    """A request to the remote platform was rejected or could not be sent."""
    def __init__(self, code: str, message: str, status_code: Optional[int] = None):
        super().__init__(
            code=code,
            message=message,
            details={"status_code": status_code} if status_code is not None else {}
        )


class PollingTimeoutError(PackagingError):
    def __init__(self, operation_id: str, namespace: str, timeout_seconds: float, last_status: Optional[str]):
        super().__init__(
            code="POLLING_TIMEOUT",
            message=(
                f"The {namespace} operation {operation_id} did not complete within "
                f"{timeout_seconds:g} seconds (last status: {last_status or 'none'})"
            ),
            details={
                "operation_id": operation_id,
                "namespace": namespace,
                "timeout_seconds": timeout_seconds,
                "last_status": last_status,
            }
        )


class UnhandledStatusError(PackagingError):
    def __init__(self, operation_id: str, namespace: str, status: Any):
        super().__init__(
            code="UNHANDLED_STATUS",
            message=f"Unrecognized {namespace} status '{status}' for operation {operation_id}",
            details={"operation_id": operation_id, "namespace": namespace, "status": status}
        )


class SaveError(PackagingError):
    """A field-level update mutation reported failure."""
    def __init__(self, message: str, errors: List[str]):
        super().__init__(
            code="SAVE_FAILED",
            message=message,
            details={"errors": list(errors)}
        )


class UninstallError(PackagingError):
    def __init__(self, message: str, errors: List[str]):
        super().__init__(
            code="UNINSTALL_ERROR",
            message=message,
            details={"errors": list(errors)},
            actions=["Verify the package is not referenced by other metadata, then retry the uninstall."]
        )


class PackageNotPublishedError(PackagingError):
    def __init__(self, subscriber_version_id: str):
        super().__init__(
            code="SUBSCRIBER_PACKAGE_VERSION_NOT_PUBLISHED",
            message=(
                f"The subscriber package version {subscriber_version_id} is not yet available. "
                f"Wait a few minutes for it to be published, then try again."
            ),
            details={"subscriber_version_id": subscriber_version_id}
        )


class InstallRequestNotFoundError(PackagingError):
    def __init__(self, install_request_id: str):
        super().__init__(
            code="INSTALL_REQUEST_NOT_FOUND",
            message=f"No package install request found with id {install_request_id}",
            details={"install_request_id": install_request_id}
        )


class VersionNotFoundError(PackagingError):
    def __init__(self, label: str, value: str, other_label: str):
        super().__init__(
            code="VERSION_NOT_FOUND",
            message=f"No package version found with {label} {value} (unable to resolve {other_label})",
            details={"label": label, "value": value}
        )


# -----------------------------------------------------------------------------
# Helpers
# -----------------------------------------------------------------------------
def combine_save_errors(sobject: str, operation: str, errors: List[str]) -> SaveError:
    """Build a single SaveError listing every field error of a failed mutation."""
    lines = "\n".join(f"Error: {error}" for error in errors)
    return SaveError(
        message=f"An error occurred during {operation} of {sobject}.\n{lines}",
        errors=errors
    )


def is_permission_error(err: Exception) -> bool:
    """Check whether an error is a permission or feature restriction."""
    code = getattr(err, "code", None)
    if code in PERMISSION_ERROR_CODES:
        return True
    text = str(getattr(err, "message", None) or err)
    return any(re.search(pattern, text, re.IGNORECASE) for pattern in PERMISSION_MESSAGE_PATTERNS)


def to_packaging_error(err: Exception) -> PackagingError:
    """Wrap foreign exceptions so enrichment has a code and an actions list."""
    if isinstance(err, PackagingError):
        return err
    wrapped = RemoteRequestError(code=type(err).__name__.upper(), message=str(err) or repr(err))
    wrapped.__cause__ = err
    return wrapped


def massage_error_message(err: Exception) -> PackagingError:
    """Rewrite known platform error codes into wording that names the problem."""
    err = to_packaging_error(err)
    if err.code == "INVALID_TYPE" and PACKAGING_SOBJECT_PATTERN.search(err.message):
        err.message = "Packaging is not enabled on this org, or you do not have access to packaging objects."
        err.args = (err.message,)
    elif err.code == "INSUFFICIENT_ACCESS_OR_READONLY":
        err.message = f"You do not have permission to perform this packaging operation. {err.message}"
        err.args = (err.message,)
    return err


def apply_error_action(err: Exception) -> PackagingError:
    """Append the support remediation hint to permission-related errors."""
    err = to_packaging_error(err)
    if is_permission_error(err) and SUPPORT_ACTION not in err.actions:
        logger.debug(f"Adding support action to {err.code}")
        err.actions.append(SUPPORT_ACTION)
    return err


def enrich_error(err: Exception) -> PackagingError:
    return apply_error_action(massage_error_message(err))
