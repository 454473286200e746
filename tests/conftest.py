"""
Pytest configuration for package lifecycle tests.

This module provides:
1. An event recorder fixture wired to a fresh emitter
2. A mocked tooling connection with AsyncMock methods
3. Status record builders and well-formed test ids
"""

import pytest
from typing import List
from unittest.mock import AsyncMock, MagicMock

from package_lifecycle.config import LifecycleSettings
from package_lifecycle.connection import QueryResult
from package_lifecycle.events import LifecycleEvent, LifecycleEventEmitter
from package_lifecycle.models import SaveResult


# -----------------------------------------------------------------------------
# Test Constants
# -----------------------------------------------------------------------------
CREATE_REQUEST_ID = "08c000000000001"
VERSION_ID = "05i000000000001"
SUBSCRIBER_VERSION_ID = "04t000000000001"
PACKAGE_ID = "0Ho000000000001"
INSTALL_REQUEST_ID = "0Hf000000000001"
UNINSTALL_REQUEST_ID = "06y000000000001"


# -----------------------------------------------------------------------------
# Events
# -----------------------------------------------------------------------------
class EventRecorder:
    """Catch-all subscriber that keeps every event in order."""

    def __init__(self):
        self.events: List[LifecycleEvent] = []

    async def __call__(self, event: LifecycleEvent):
        self.events.append(event)

    @property
    def names(self) -> List[str]:
        return [event.name for event in self.events]


@pytest.fixture
def emitter():
    return LifecycleEventEmitter()


@pytest.fixture
def recorder(emitter):
    recorder = EventRecorder()
    emitter.subscribe_all(recorder)
    return recorder


@pytest.fixture
def no_sleep():
    """Sleep replacement so poll loops run without waiting."""
    return AsyncMock()


@pytest.fixture
def settings():
    return LifecycleSettings(auto_update_project=True, install_poll_frequency=10.0)


# -----------------------------------------------------------------------------
# Connection
# -----------------------------------------------------------------------------
def query_result(*records) -> QueryResult:
    return QueryResult(records=list(records), total_size=len(records))


def version_row(**overrides) -> dict:
    row = {
        "Id": VERSION_ID,
        "Package2Id": PACKAGE_ID,
        "SubscriberPackageVersionId": SUBSCRIBER_VERSION_ID,
        "Name": "ver 1.0",
        "MajorVersion": 1,
        "MinorVersion": 0,
        "PatchVersion": 0,
        "BuildNumber": 1,
        "IsDeprecated": False,
        "IsReleased": False,
    }
    row.update(overrides)
    return row


@pytest.fixture
def connection():
    """Mocked ToolingConnection; tests configure return values per method."""
    conn = MagicMock()
    conn.query = AsyncMock(return_value=query_result())
    conn.single_record_query = AsyncMock(return_value=version_row())
    conn.retrieve = AsyncMock()
    conn.create = AsyncMock()
    conn.update = AsyncMock(return_value=SaveResult(id=VERSION_ID, success=True))
    return conn
