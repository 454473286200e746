"""
Package Version Lifecycle

Caller-facing operations on package versions:

    service = PackageVersionService(connection, project=project)

    # Asynchronous on the remote side (driven by OperationPoller)
    result = await service.create(request, PollingPolicy.of_seconds(30, 1800))
    installed = await service.get("my-pkg@1.2.0-1").install(install_request, options)
    await service.get(version_id).uninstall(policy)

    # Immediate mutations
    await service.get(version_id).update(PackageVersionUpdateOptions(tag="v1"))
    await service.get(version_id).promote()
    await service.get(version_id).delete()

Lifecycle events are published through the injected LifecycleEventEmitter
under the create / publish / install / uninstall namespaces.

IMPORTANT:
- Ids are validated before any remote call
- Remote and timeout failures are enriched (permission hint) and raised
- The only local recovery is the external-sites query-restriction fallback
"""

import logging
from datetime import timedelta
from functools import partial
from typing import Any, Dict, List, Optional, Union

from .config import LifecycleSettings
from .connection import ToolingConnection
from .errors import (
    InstallRequestNotFoundError,
    InvalidIdentifierError,
    PackageNotPublishedError,
    PollingTimeoutError,
    RemoteRequestError,
    SaveError,
    UninstallError,
    VersionNotFoundError,
    combine_save_errors,
    enrich_error,
)
from .events import EventNamespace, LifecycleEventEmitter, get_event_emitter
from .identifiers import (
    PACKAGE_ID,
    PACKAGE_INSTALL_REQUEST_ID,
    PACKAGE_UNINSTALL_REQUEST_ID,
    PACKAGE_VERSION_CREATE_REQUEST_ID,
    PACKAGE_VERSION_ID,
    SUBSCRIBER_PACKAGE_VERSION_ID,
    escape_installation_key,
    validate_id,
)
from .models import (
    NO_POLLING,
    CreateRequestStatus,
    PackageInstallCreateRequest,
    PackageInstallOptions,
    PackageInstallRequest,
    PackageType,
    PackageVersionCreateRequestResult,
    PackageVersionRecord,
    PackageVersionReport,
    PackageVersionUpdateOptions,
    PollingPolicy,
    SaveResult,
    SubscriberPackageVersionStatus,
    UninstallRequest,
    UninstallRequestStatus,
)
from .polling import OperationPoller, SleepFunction
from .project import ProjectMetadata, resolve_id_or_alias, version_alias_key
from . import queries

logger = logging.getLogger("package_version")


class PackageVersionService:
    """
    Composition root for package version operations.

    Holds the connection, the optional project file, the event emitter and
    one poller per long-running operation kind. Operations that do not need
    an existing version (create, status lookups, uninstall reports) live
    here; per-version operations live on PackageVersion.
    """

    def __init__(
        self,
        connection: ToolingConnection,
        project: Optional[ProjectMetadata] = None,
        emitter: Optional[LifecycleEventEmitter] = None,
        settings: Optional[LifecycleSettings] = None,
        sleep: Optional[SleepFunction] = None
    ):
        self.connection = connection
        self.project = project
        self.settings = settings or LifecycleSettings.from_env()
        self.emitter = emitter or get_event_emitter(self.settings.event_history_size)

        self.create_poller = OperationPoller.for_namespace(EventNamespace.CREATE, self.emitter, sleep)
        self.publish_poller = OperationPoller.for_namespace(EventNamespace.PUBLISH, self.emitter, sleep)
        self.install_poller = OperationPoller.for_namespace(EventNamespace.INSTALL, self.emitter, sleep)
        self.uninstall_poller = OperationPoller.for_namespace(EventNamespace.UNINSTALL, self.emitter, sleep)

    def get(self, id_or_alias: str) -> "PackageVersion":
        """Bind a package version by 05i/04t id or project alias."""
        return PackageVersion(self, id_or_alias)

    # -------------------------------------------------------------------------
    # Version Creation
    # -------------------------------------------------------------------------

    async def create(
        self,
        request: Dict[str, Any],
        policy: PollingPolicy = NO_POLLING
    ) -> PackageVersionCreateRequestResult:
        """
        Submit a version create request and optionally wait for it.

        Args:
            request: Caller-built Package2VersionCreateRequest fields
            policy: Polling policy; NO_POLLING returns the current status

        Returns:
            The create request record (terminal when polled to completion)
        """
        try:
            request_id = await queries.submit_create_request(self.connection, request)
        except Exception as e:
            raise enrich_error(e)

        return await self.poll_create_status(request_id, policy)

    async def get_create_status(self, request_id: str) -> PackageVersionCreateRequestResult:
        """Current state of a version create request."""
        validate_id(PACKAGE_VERSION_CREATE_REQUEST_ID, request_id)
        try:
            return await queries.get_create_request_status(self.connection, request_id)
        except Exception as e:
            raise enrich_error(e)

    async def poll_create_status(
        self,
        request_id: str,
        policy: PollingPolicy
    ) -> PackageVersionCreateRequestResult:
        """
        Wait for a version create request, recording the new version by its
        package version id.

        Emits Package/create-{enqueued,progress,success,error,timed-out}.
        """
        return await self._wait_for_create(request_id, policy, key_on_subscriber_id=False)

    async def wait_for_create_version(
        self,
        request_id: str,
        policy: PollingPolicy
    ) -> PackageVersionCreateRequestResult:
        """Same as poll_create_status, keyed on the subscriber version id."""
        return await self._wait_for_create(request_id, policy, key_on_subscriber_id=True)

    async def _wait_for_create(
        self,
        request_id: str,
        policy: PollingPolicy,
        key_on_subscriber_id: bool
    ) -> PackageVersionCreateRequestResult:
        validate_id(PACKAGE_VERSION_CREATE_REQUEST_ID, request_id)
        try:
            result = await self.create_poller.run(
                request_id,
                partial(queries.get_create_request_status, self.connection),
                policy
            )
        except Exception as e:
            raise enrich_error(e)

        if policy.polls and result.status == CreateRequestStatus.SUCCESS.value:
            await self._record_new_version(result, key_on_subscriber_id)
        return result

    async def _record_new_version(
        self,
        result: PackageVersionCreateRequestResult,
        key_on_subscriber_id: bool
    ):
        if not self.settings.auto_update_project:
            logger.info(f"Project auto-update disabled; not recording {result.subscriber_package_version_id}")
            return
        if self.project is None:
            logger.debug("No project attached; skipping package alias update")
            return

        id_or_alias = (
            result.subscriber_package_version_id if key_on_subscriber_id
            else result.package2_version_id
        )
        await PackageVersion(self, id_or_alias).update_project_with_package_version(result)

    async def get_package_version_create_requests(
        self,
        status: Optional[CreateRequestStatus] = None,
        created_last_days: Optional[int] = None
    ) -> List[PackageVersionCreateRequestResult]:
        try:
            return await queries.list_create_requests(self.connection, status, created_last_days)
        except Exception as e:
            raise enrich_error(e)

    # -------------------------------------------------------------------------
    # Install / Uninstall Requests
    # -------------------------------------------------------------------------

    async def get_install_request(self, install_request_id: str) -> PackageInstallRequest:
        """Retrieve a package install request by its 0Hf id."""
        validate_id(PACKAGE_INSTALL_REQUEST_ID, install_request_id)
        try:
            return await queries.get_install_request_status(self.connection, install_request_id)
        except RemoteRequestError as e:
            if e.details.get("status_code") == 404 or e.code == "NOT_FOUND":
                raise InstallRequestNotFoundError(install_request_id) from e
            raise enrich_error(e)

    async def uninstall_report(self, request_id: str) -> UninstallRequest:
        """
        Report on an uninstall request (06y).

        Raises:
            UninstallError: the request ended in Error; the message lists
                every remote error message
        """
        validate_id(PACKAGE_UNINSTALL_REQUEST_ID, request_id)
        try:
            result = await queries.get_uninstall_request_status(self.connection, request_id)
        except Exception as e:
            raise enrich_error(e)

        if result.status == UninstallRequestStatus.ERROR.value:
            raise await self.build_uninstall_error(request_id, result)
        return result

    async def build_uninstall_error(self, request_id: str, result: UninstallRequest) -> UninstallError:
        messages = await queries.get_uninstall_errors(self.connection, request_id)
        errors = [f"({index}) {message}" for index, message in enumerate(messages, start=1)]
        header = "\n=== Errors\n" + "\n".join(errors) if errors else ""
        logger.error(f"Uninstall request {request_id} failed with {len(messages)} errors")
        return UninstallError(
            f"Can't uninstall the package {result.subscriber_package_version_id or request_id} "
            f"during uninstall request {result.id}.{header}",
            messages
        )


class PackageVersion:
    """
    One package version on the remote platform.

    Constructed from a 05i version id, a 04t subscriber version id, or a
    project alias for either. Exactly one id is known up front; the other is
    filled in by the first record fetch.

    The record cache is either unloaded (None) or a loaded
    PackageVersionRecord. It is local to this instance and not synchronized:
    do not share one instance across concurrent operations that force a
    refresh.
    """

    def __init__(self, service: PackageVersionService, id_or_alias: str):
        self.service = service
        self.connection = service.connection
        self.id_or_alias = id_or_alias

        self._version_id: Optional[str] = None
        self._subscriber_id: Optional[str] = None
        self._record: Optional[PackageVersionRecord] = None
        self._package_type: Optional[PackageType] = None

        resolved = resolve_id_or_alias(id_or_alias, service.project)
        if resolved.startswith(SUBSCRIBER_PACKAGE_VERSION_ID.prefix):
            self._subscriber_id = validate_id(SUBSCRIBER_PACKAGE_VERSION_ID, resolved)
        elif resolved.startswith(PACKAGE_VERSION_ID.prefix):
            self._version_id = validate_id(PACKAGE_VERSION_ID, resolved)
        else:
            raise InvalidIdentifierError("package version ID or alias", id_or_alias)

    # -------------------------------------------------------------------------
    # Record Access
    # -------------------------------------------------------------------------

    async def get_package_version_data(self, force: bool = False) -> PackageVersionRecord:
        """
        Get the Package2Version record, fetching it on first access.

        Args:
            force: Drop the cached record and re-fetch
        """
        if force:
            self._record = None

        if self._record is None:
            if self._version_id:
                clause = f"Id = '{self._version_id}'"
                label, value, other = PACKAGE_VERSION_ID.label, self._version_id, SUBSCRIBER_PACKAGE_VERSION_ID.label
            else:
                clause = f"SubscriberPackageVersionId = '{self._subscriber_id}'"
                label, value, other = SUBSCRIBER_PACKAGE_VERSION_ID.label, self._subscriber_id, PACKAGE_VERSION_ID.label

            try:
                record = await queries.get_package_version_record(self.connection, clause)
            except Exception as e:
                raise VersionNotFoundError(label, value, other) from e

            self._record = record
            self._version_id = record.id
            self._subscriber_id = record.subscriber_package_version_id
        return self._record

    async def get_id(self) -> str:
        """Package version id (05i)."""
        if not self._version_id:
            await self.get_package_version_data()
        return self._version_id

    async def get_subscriber_id(self) -> str:
        """Subscriber package version id (04t)."""
        if not self._subscriber_id:
            await self.get_package_version_data()
        return self._subscriber_id

    async def get_package_id(self) -> str:
        return (await self.get_package_version_data()).package2_id

    async def get_package_type(self) -> PackageType:
        if self._package_type is None:
            package_id = validate_id(PACKAGE_ID, await self.get_package_id())
            self._package_type = await queries.get_package_type(self.connection, package_id)
        return self._package_type

    # -------------------------------------------------------------------------
    # Immediate Mutations
    # -------------------------------------------------------------------------

    async def delete(self) -> SaveResult:
        """Deprecate this version. Nothing is destroyed remotely."""
        return await self._update_deprecation(True)

    async def undelete(self) -> SaveResult:
        return await self._update_deprecation(False)

    async def _update_deprecation(self, is_deprecated: bool) -> SaveResult:
        version_id = await self.get_id()
        result = await self._save({"Id": version_id, "IsDeprecated": is_deprecated})
        if not result.success:
            raise combine_save_errors("Package2Version", "update", result.errors)
        return result.model_copy(update={"id": await self.get_subscriber_id()})

    async def promote(self) -> SaveResult:
        """Mark this version as released."""
        version_id = await self.get_id()
        result = await self._save({"Id": version_id, "IsReleased": True})
        if not result.success:
            raise combine_save_errors("Package2Version", "promote", result.errors)
        logger.info(f"Promoted package version {version_id}")
        return result

    async def update(self, options: PackageVersionUpdateOptions) -> SaveResult:
        """Update only the fields set on options."""
        version_id = await self.get_id()
        result = await self._save(options.to_payload(version_id))
        if not result.success:
            raise SaveError(", ".join(result.errors), result.errors)
        return result.model_copy(update={"id": await self.get_subscriber_id()})

    async def _save(self, request: Dict[str, Any]) -> SaveResult:
        try:
            return await self.connection.update("Package2Version", request)
        except Exception as e:
            raise enrich_error(e)

    # -------------------------------------------------------------------------
    # Reporting
    # -------------------------------------------------------------------------

    async def report(self, verbose: bool = False) -> PackageVersionReport:
        """
        Report details about this version.

        Args:
            verbose: Include code coverage fields (slower)
        """
        version_id = await self.get_id()
        try:
            return await queries.get_package_version_report(self.connection, version_id, verbose)
        except Exception as e:
            raise enrich_error(e)

    async def get_external_sites(self, installation_key: Optional[str] = None) -> Optional[List[str]]:
        """
        Remote site and CSP trusted site URLs declared by this version.

        Returns:
            RSS urls followed by CSP urls (not deduplicated), or None when
            the version declares none
        """
        subscriber_id = await self.get_subscriber_id()
        query_no_key = (
            f"SELECT RemoteSiteSettings, CspTrustedSites FROM SubscriberPackageVersion "
            f"WHERE Id ='{subscriber_id}'"
        )
        query = query_no_key
        if installation_key:
            query = f"{query_no_key} AND InstallationKey ='{escape_installation_key(installation_key)}'"

        logger.debug(f"Checking package version {subscriber_id} for external sites")
        try:
            records = await queries.get_external_site_records(self.connection, query)
        except Exception as e:
            if not installation_key or not queries.is_error_from_spv_query_restriction(e):
                raise
            logger.warning("Installation key queries not supported by this org; retrying without key")
            records = await queries.get_external_site_records(self.connection, query_no_key)

        if not records:
            return None
        record = records[0]
        rss_urls = [s.get("url") for s in (record.get("RemoteSiteSettings") or {}).get("settings") or []]
        csp_urls = [s.get("endpointUrl") for s in (record.get("CspTrustedSites") or {}).get("settings") or []]
        sites = rss_urls + csp_urls
        return sites or None

    # -------------------------------------------------------------------------
    # Install
    # -------------------------------------------------------------------------

    async def install(
        self,
        request: PackageInstallCreateRequest,
        options: Optional[PackageInstallOptions] = None
    ) -> PackageInstallRequest:
        """
        Install a subscriber version into the connected org.

        Phases:
        1. Publish wait (PackageNotPublishedError)
        2. Install request submission (RemoteRequestError)
        3. Optional install status wait (PollingTimeoutError)
        """
        validate_id(SUBSCRIBER_PACKAGE_VERSION_ID, request.subscriber_package_version_key)
        await self._wait_for_publish(request, options)

        try:
            request_id = await queries.create_install_request(
                self.connection, request, await self.get_package_type()
            )
        except Exception as e:
            raise enrich_error(e)

        return await self.get_install_status(request_id, options)

    async def _fetch_publish_status(
        self,
        subscriber_id: str,
        installation_key: Optional[str] = None
    ) -> SubscriberPackageVersionStatus:
        status = await queries.get_installation_status(self.connection, subscriber_id, installation_key)
        return status or SubscriberPackageVersionStatus(Id=subscriber_id)

    async def _wait_for_publish(
        self,
        request: PackageInstallCreateRequest,
        options: Optional[PackageInstallOptions]
    ):
        subscriber_id = request.subscriber_package_version_key

        if options is not None and options.publish_timeout > timedelta(0):
            frequency = (
                options.publish_frequency
                or options.polling_frequency
                or timedelta(seconds=self.service.settings.install_poll_frequency)
            )
            policy = PollingPolicy(frequency=frequency, timeout=options.publish_timeout)
            try:
                await self.service.publish_poller.run(
                    subscriber_id,
                    partial(self._fetch_publish_status, installation_key=request.password),
                    policy
                )
            except PollingTimeoutError as e:
                raise enrich_error(PackageNotPublishedError(subscriber_id)) from e
            except Exception as e:
                raise enrich_error(e)
            return

        try:
            status = await queries.get_installation_status(self.connection, subscriber_id, request.password)
        except Exception as e:
            raise enrich_error(e)
        if status is None or not status.is_published:
            raise enrich_error(PackageNotPublishedError(subscriber_id))

    async def get_install_status(
        self,
        request_or_id: Union[str, PackageInstallRequest],
        options: Optional[PackageInstallOptions] = None
    ) -> PackageInstallRequest:
        """
        Fetch an install request, waiting for a terminal status if options
        carry a polling timeout.

        Emits Package/install-* events while waiting.
        """
        if isinstance(request_or_id, PackageInstallRequest):
            request_id, current = request_or_id.id, request_or_id
        else:
            request_id, current = validate_id(PACKAGE_INSTALL_REQUEST_ID, request_or_id), None

        fetch = partial(queries.get_install_request_status, self.connection)
        try:
            if options is None or options.polling_timeout <= timedelta(0):
                return current or await fetch(request_id)

            frequency = options.polling_frequency or timedelta(seconds=self.service.settings.install_poll_frequency)
            policy = PollingPolicy(frequency=frequency, timeout=options.polling_timeout)
            return await self.service.install_poller.run(request_id, fetch, policy)
        except Exception as e:
            raise enrich_error(e)

    async def uninstall(self, policy: PollingPolicy = NO_POLLING) -> UninstallRequest:
        """
        Uninstall this version from the connected org.

        Raises:
            UninstallError: the request reached Error while polling
        """
        subscriber_id = await self.get_subscriber_id()
        fetch = partial(queries.get_uninstall_request_status, self.connection)
        try:
            request_id = await queries.submit_uninstall_request(self.connection, subscriber_id)
            result = await self.service.uninstall_poller.run(request_id, fetch, policy)
        except Exception as e:
            raise enrich_error(e)

        if policy.polls and result.status == UninstallRequestStatus.ERROR.value:
            raise await self.service.build_uninstall_error(request_id, result)
        return result

    # -------------------------------------------------------------------------
    # Project Metadata
    # -------------------------------------------------------------------------

    async def update_project_with_package_version(self, result: PackageVersionCreateRequestResult):
        """
        Record a newly created version in the project's packageAliases as
        '<package>@<major>.<minor>.<patch>[-<build>][-<branch>]'.
        """
        project = self.service.project
        if project is None:
            return

        version = await self.connection.single_record_query(
            f"SELECT Branch, MajorVersion, MinorVersion, PatchVersion, BuildNumber FROM Package2Version "
            f"WHERE SubscriberPackageVersionId='{result.subscriber_package_version_id}'"
        )
        package_alias = ",".join(project.get_package_aliases_from_id(result.package2_id)) or result.package2_id
        key = version_alias_key(
            package_alias,
            version.get("MajorVersion"),
            version.get("MinorVersion"),
            version.get("PatchVersion"),
            version.get("BuildNumber"),
            version.get("Branch"),
        )
        project.set_package_alias(key, result.subscriber_package_version_id)
        project.write()
        logger.info(f"Recorded package alias {key} -> {result.subscriber_package_version_id}")
