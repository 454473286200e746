"""
Unit Tests for the Long-Running Operation Poller

Test coverage for:
- Single fetch when the policy does not poll
- Event sequence for success, error and timeout outcomes
- Remaining wait time accounting
- Unrecognized statuses and fetcher failures
- Transition tables for every operation kind
"""

import pytest
from datetime import timedelta
from unittest.mock import AsyncMock

from package_lifecycle.errors import PollingTimeoutError, UnhandledStatusError
from package_lifecycle.events import EventNamespace
from package_lifecycle.models import (
    CreateRequestStatus,
    InstallValidationStatus,
    PackageVersionCreateRequestResult,
    PollingPolicy,
    SubscriberPackageVersionStatus,
)
from package_lifecycle.polling import (
    CREATE_TRANSITIONS,
    INSTALL_TRANSITIONS,
    PUBLISH_TRANSITIONS,
    UNINSTALL_TRANSITIONS,
    Classification,
    OperationPoller,
)

from .conftest import CREATE_REQUEST_ID, SUBSCRIBER_VERSION_ID, VERSION_ID


def create_record(status: str, **extra) -> PackageVersionCreateRequestResult:
    return PackageVersionCreateRequestResult(Id=CREATE_REQUEST_ID, Status=status, **extra)


def fetcher_for(*statuses):
    """AsyncMock fetcher returning one record per status, in order."""
    return AsyncMock(side_effect=[create_record(status) for status in statuses])


@pytest.fixture
def poller(emitter, no_sleep):
    return OperationPoller.for_namespace(EventNamespace.CREATE, emitter, sleep=no_sleep)


# -----------------------------------------------------------------------------
# No Polling
# -----------------------------------------------------------------------------
class TestNoPolling:
    """A non-positive timeout means one fetch and no events."""

    @pytest.mark.asyncio
    async def test_zero_timeout_fetches_once(self, poller, recorder):
        fetcher = fetcher_for("Queued")

        result = await poller.run(CREATE_REQUEST_ID, fetcher, PollingPolicy())

        assert result.status == "Queued"
        fetcher.assert_awaited_once_with(CREATE_REQUEST_ID)
        assert recorder.events == []

    @pytest.mark.asyncio
    async def test_negative_timeout_fetches_once(self, poller, recorder):
        fetcher = fetcher_for("InProgress")
        policy = PollingPolicy(frequency=timedelta(seconds=1), timeout=timedelta(seconds=-5))

        result = await poller.run(CREATE_REQUEST_ID, fetcher, policy)

        assert result.status == "InProgress"
        assert fetcher.await_count == 1
        assert recorder.events == []

    @pytest.mark.asyncio
    async def test_unknown_status_returned_without_polling(self, poller):
        """Classification only happens inside the loop."""
        fetcher = fetcher_for("SomethingNew")

        result = await poller.run(CREATE_REQUEST_ID, fetcher, PollingPolicy())

        assert result.status == "SomethingNew"


# -----------------------------------------------------------------------------
# Success Path
# -----------------------------------------------------------------------------
class TestSuccessSequence:
    """Non-terminal events followed by exactly one success event."""

    @pytest.mark.asyncio
    async def test_queued_in_progress_success(self, poller, recorder, no_sleep):
        fetcher = AsyncMock(side_effect=[
            create_record("Queued"),
            create_record("InProgress"),
            create_record(
                "Success",
                Package2VersionId=VERSION_ID,
                SubscriberPackageVersionId=SUBSCRIBER_VERSION_ID,
            ),
        ])
        policy = PollingPolicy.of_seconds(frequency=1, timeout=10)

        result = await poller.run(CREATE_REQUEST_ID, fetcher, policy)

        assert recorder.names == [
            "Package/create-enqueued",
            "Package/create-progress",
            "Package/create-success",
        ]
        assert result.status == CreateRequestStatus.SUCCESS.value
        assert result.package2_version_id == VERSION_ID
        assert result.subscriber_package_version_id == SUBSCRIBER_VERSION_ID
        assert fetcher.await_count == 3
        assert no_sleep.await_count == 2
        no_sleep.assert_awaited_with(1.0)

    @pytest.mark.asyncio
    async def test_remaining_wait_time_decreases_by_frequency(self, poller, recorder):
        fetcher = fetcher_for(
            "Queued", "Initializing", "VerifyingMetadata", "FinalizingPackageVersion", "Success"
        )
        policy = PollingPolicy.of_seconds(frequency=2, timeout=30)

        await poller.run(CREATE_REQUEST_ID, fetcher, policy)

        remaining = [event.remaining_wait_time for event in recorder.events]
        assert remaining[:4] == [
            timedelta(seconds=30),
            timedelta(seconds=28),
            timedelta(seconds=26),
            timedelta(seconds=24),
        ]
        for earlier, later in zip(remaining[:4], remaining[1:]):
            assert earlier - later == timedelta(seconds=2)

    @pytest.mark.asyncio
    async def test_all_progress_statuses_emit_progress(self, poller, recorder):
        progress_statuses = [
            "InProgress",
            "Initializing",
            "VerifyingFeaturesAndSettings",
            "VerifyingDependencies",
            "VerifyingMetadata",
            "FinalizingPackageVersion",
        ]
        fetcher = fetcher_for(*progress_statuses, "Success")

        await poller.run(CREATE_REQUEST_ID, fetcher, PollingPolicy.of_seconds(1, 60))

        assert recorder.names == ["Package/create-progress"] * 6 + ["Package/create-success"]

    @pytest.mark.asyncio
    async def test_events_carry_operation_id_and_record(self, poller, recorder):
        fetcher = fetcher_for("Queued", "Success")

        await poller.run(CREATE_REQUEST_ID, fetcher, PollingPolicy.of_seconds(1, 10))

        assert all(event.operation_id == CREATE_REQUEST_ID for event in recorder.events)
        assert [event.status for event in recorder.events] == ["Queued", "Success"]


# -----------------------------------------------------------------------------
# Error Path
# -----------------------------------------------------------------------------
class TestErrorSequence:
    """A remote Error is a terminal value, not an exception."""

    @pytest.mark.asyncio
    async def test_error_stops_polling(self, poller, recorder):
        fetcher = AsyncMock(side_effect=[
            create_record("Queued"),
            create_record("Error", Error=["Apex class failed to compile"]),
            create_record("Success"),
        ])

        result = await poller.run(CREATE_REQUEST_ID, fetcher, PollingPolicy.of_seconds(1, 10))

        assert result.status == "Error"
        assert result.error == ["Apex class failed to compile"]
        assert fetcher.await_count == 2
        assert recorder.names.count("Package/create-error") == 1
        assert recorder.names[-1] == "Package/create-error"

    @pytest.mark.asyncio
    async def test_fetcher_failure_propagates(self, poller, recorder):
        fetcher = AsyncMock(side_effect=[create_record("Queued"), RuntimeError("connection reset")])

        with pytest.raises(RuntimeError, match="connection reset"):
            await poller.run(CREATE_REQUEST_ID, fetcher, PollingPolicy.of_seconds(1, 10))

        assert recorder.names == ["Package/create-enqueued"]

    @pytest.mark.asyncio
    async def test_unknown_status_fails_fast(self, poller, recorder):
        fetcher = fetcher_for("Queued", "Archiving")

        with pytest.raises(UnhandledStatusError) as exc_info:
            await poller.run(CREATE_REQUEST_ID, fetcher, PollingPolicy.of_seconds(1, 10))

        assert exc_info.value.details["status"] == "Archiving"
        assert fetcher.await_count == 2
        assert recorder.names == ["Package/create-enqueued"]


# -----------------------------------------------------------------------------
# Timeout
# -----------------------------------------------------------------------------
class TestTimeout:
    """Exhausting the budget emits one timed-out event and raises."""

    @pytest.mark.asyncio
    async def test_never_terminal_times_out(self, emitter, recorder):
        poller = OperationPoller.for_namespace(EventNamespace.CREATE, emitter)
        fetcher = AsyncMock(return_value=create_record("InProgress"))
        policy = PollingPolicy(frequency=timedelta(milliseconds=10), timeout=timedelta(milliseconds=80))

        with pytest.raises(PollingTimeoutError) as exc_info:
            await poller.run(CREATE_REQUEST_ID, fetcher, policy)

        assert recorder.names.count("Package/create-timed-out") == 1
        assert recorder.names[-1] == "Package/create-timed-out"
        assert recorder.events[-1].record.status == "InProgress"
        assert exc_info.value.code == "POLLING_TIMEOUT"
        assert exc_info.value.details["last_status"] == "InProgress"
        assert fetcher.await_count >= 1

    @pytest.mark.asyncio
    async def test_timeout_before_first_poll_completes(self, emitter, recorder):
        import asyncio

        async def slow_fetch(operation_id):
            await asyncio.sleep(1)
            return create_record("Success")

        poller = OperationPoller.for_namespace(EventNamespace.CREATE, emitter)
        policy = PollingPolicy(frequency=timedelta(milliseconds=10), timeout=timedelta(milliseconds=30))

        with pytest.raises(PollingTimeoutError):
            await poller.run(CREATE_REQUEST_ID, slow_fetch, policy)

        assert recorder.names == ["Package/create-timed-out"]
        assert recorder.events[0].record is None


# -----------------------------------------------------------------------------
# Transition Tables
# -----------------------------------------------------------------------------
class TestTransitionTables:

    def test_create_table_covers_every_create_status(self):
        assert set(CREATE_TRANSITIONS) == {status.value for status in CreateRequestStatus}

    def test_create_terminal_classifications(self):
        assert CREATE_TRANSITIONS["Success"].classification == Classification.TERMINAL_SUCCESS
        assert CREATE_TRANSITIONS["Error"].classification == Classification.TERMINAL_ERROR
        assert not CREATE_TRANSITIONS["Queued"].is_terminal

    def test_publish_only_unavailable_is_non_terminal(self):
        non_terminal = [status for status, t in PUBLISH_TRANSITIONS.items() if not t.is_terminal]
        assert non_terminal == [InstallValidationStatus.PACKAGE_UNAVAILABLE.value]

    def test_install_and_uninstall_terminal_statuses(self):
        assert INSTALL_TRANSITIONS["SUCCESS"].is_terminal
        assert INSTALL_TRANSITIONS["ERROR"].is_terminal
        assert not INSTALL_TRANSITIONS["IN_PROGRESS"].is_terminal
        assert UNINSTALL_TRANSITIONS["Success"].is_terminal
        assert not UNINSTALL_TRANSITIONS["InProgress"].is_terminal

    @pytest.mark.asyncio
    async def test_publish_treats_unlisted_status_as_published(self, emitter, recorder, no_sleep):
        poller = OperationPoller.for_namespace(EventNamespace.PUBLISH, emitter, sleep=no_sleep)
        fetcher = AsyncMock(side_effect=[
            SubscriberPackageVersionStatus(Id=SUBSCRIBER_VERSION_ID, InstallValidationStatus="PACKAGE_UNAVAILABLE"),
            SubscriberPackageVersionStatus(
                Id=SUBSCRIBER_VERSION_ID, InstallValidationStatus="PACKAGE_UNAVAILABLE_DELETED"
            ),
        ])

        result = await poller.run(SUBSCRIBER_VERSION_ID, fetcher, PollingPolicy.of_seconds(1, 10))

        assert result.status == "PACKAGE_UNAVAILABLE_DELETED"
        assert recorder.names == ["Package/publish-progress", "Package/publish-success"]

    @pytest.mark.asyncio
    async def test_namespace_prefixes_event_names(self, emitter, recorder, no_sleep):
        from package_lifecycle.models import UninstallRequest

        poller = OperationPoller.for_namespace(EventNamespace.UNINSTALL, emitter, sleep=no_sleep)
        fetcher = AsyncMock(side_effect=[
            UninstallRequest(Id="06y000000000001", Status="InProgress"),
            UninstallRequest(Id="06y000000000001", Status="Success"),
        ])

        await poller.run("06y000000000001", fetcher, PollingPolicy.of_seconds(1, 10))

        assert recorder.names == ["Package/uninstall-progress", "Package/uninstall-success"]
