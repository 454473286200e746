"""
Long-Running Operation Poller

Drives asynchronous remote package operations (version creation, publish
propagation, install and uninstall requests) to a terminal outcome.

One poller is parameterized by:
- an event namespace (which lifecycle event names it emits)
- a transition table (status value -> classification + event)

and run per operation with a status fetcher and a polling policy:

    poller = OperationPoller.for_namespace(EventNamespace.CREATE, emitter)
    record = await poller.run(request_id, get_create_request_status, policy)

Loop semantics:
    fetch -> classify -> emit -> (non-terminal) decrement remaining, sleep
                               -> (terminal) return the record
    budget exhausted -> emit timed-out with the last record, raise

IMPORTANT:
- timeout <= 0 means a single fetch, returned as-is, with no events
- An unknown status fails fast with UnhandledStatusError, unless the
  namespace has a fallback transition (publish: anything not unavailable)
- Fetcher exceptions propagate unchanged; callers apply error enrichment
"""

import asyncio
import logging
from dataclasses import dataclass
from datetime import timedelta
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, Optional

from .errors import PollingTimeoutError, UnhandledStatusError
from .events import (
    EventNamespace,
    LifecycleEvent,
    LifecycleEventEmitter,
    LifecycleEventType,
    event_name,
)
from .models import (
    CreateRequestStatus,
    InstallRequestStatus,
    InstallValidationStatus,
    PollingPolicy,
    UninstallRequestStatus,
)

logger = logging.getLogger("polling")

StatusFetcher = Callable[[str], Awaitable[Any]]
SleepFunction = Callable[[float], Awaitable[Any]]


# -----------------------------------------------------------------------------
# Transition Tables
# -----------------------------------------------------------------------------
class Classification(str, Enum):
    """How a polled status affects the loop."""
    NON_TERMINAL = "non_terminal"
    TERMINAL_SUCCESS = "terminal_success"
    TERMINAL_ERROR = "terminal_error"


@dataclass(frozen=True)
class Transition:
    classification: Classification
    event: LifecycleEventType

    @property
    def is_terminal(self) -> bool:
        return self.classification != Classification.NON_TERMINAL


ENQUEUED = Transition(Classification.NON_TERMINAL, LifecycleEventType.ENQUEUED)
PROGRESS = Transition(Classification.NON_TERMINAL, LifecycleEventType.PROGRESS)
SUCCEEDED = Transition(Classification.TERMINAL_SUCCESS, LifecycleEventType.SUCCESS)
FAILED = Transition(Classification.TERMINAL_ERROR, LifecycleEventType.ERROR)

TransitionTable = Dict[str, Transition]

CREATE_TRANSITIONS: TransitionTable = {
    CreateRequestStatus.QUEUED.value: ENQUEUED,
    CreateRequestStatus.IN_PROGRESS.value: PROGRESS,
    CreateRequestStatus.INITIALIZING.value: PROGRESS,
    CreateRequestStatus.VERIFYING_FEATURES_AND_SETTINGS.value: PROGRESS,
    CreateRequestStatus.VERIFYING_DEPENDENCIES.value: PROGRESS,
    CreateRequestStatus.VERIFYING_METADATA.value: PROGRESS,
    CreateRequestStatus.FINALIZING_PACKAGE_VERSION.value: PROGRESS,
    CreateRequestStatus.SUCCESS.value: SUCCEEDED,
    CreateRequestStatus.ERROR.value: FAILED,
}

# Published as soon as the validation status leaves PACKAGE_UNAVAILABLE, including
# validation statuses not listed in InstallValidationStatus (see FALLBACK_TRANSITIONS)
PUBLISH_TRANSITIONS: TransitionTable = {
    status.value: (PROGRESS if status == InstallValidationStatus.PACKAGE_UNAVAILABLE else SUCCEEDED)
    for status in InstallValidationStatus
}

INSTALL_TRANSITIONS: TransitionTable = {
    InstallRequestStatus.UNKNOWN.value: ENQUEUED,
    InstallRequestStatus.IN_PROGRESS.value: PROGRESS,
    InstallRequestStatus.SUCCESS.value: SUCCEEDED,
    InstallRequestStatus.ERROR.value: FAILED,
}

UNINSTALL_TRANSITIONS: TransitionTable = {
    UninstallRequestStatus.QUEUED.value: ENQUEUED,
    UninstallRequestStatus.IN_PROGRESS.value: PROGRESS,
    UninstallRequestStatus.SUCCESS.value: SUCCEEDED,
    UninstallRequestStatus.ERROR.value: FAILED,
}

TRANSITIONS_BY_NAMESPACE: Dict[EventNamespace, TransitionTable] = {
    EventNamespace.CREATE: CREATE_TRANSITIONS,
    EventNamespace.PUBLISH: PUBLISH_TRANSITIONS,
    EventNamespace.INSTALL: INSTALL_TRANSITIONS,
    EventNamespace.UNINSTALL: UNINSTALL_TRANSITIONS,
}

# Transition for statuses missing from a table; namespaces without one fail fast
FALLBACK_TRANSITIONS: Dict[EventNamespace, Transition] = {
    EventNamespace.PUBLISH: SUCCEEDED,
}


@dataclass
class _PollState:
    """Loop state that must survive cancellation of the loop coroutine."""
    remaining: timedelta
    last_record: Optional[Any] = None
    polls: int = 0


# -----------------------------------------------------------------------------
# Poller
# -----------------------------------------------------------------------------
class OperationPoller:
    """
    Generic poll loop for one kind of long-running operation.

    Stateless between runs: independent operations can share a poller.
    """

    def __init__(
        self,
        namespace: EventNamespace,
        transitions: TransitionTable,
        emitter: LifecycleEventEmitter,
        sleep: Optional[SleepFunction] = None,
        fallback: Optional[Transition] = None
    ):
        self.namespace = namespace
        self.transitions = transitions
        self.fallback = fallback
        self.emitter = emitter
        self._sleep = sleep or asyncio.sleep

    @classmethod
    def for_namespace(
        cls,
        namespace: EventNamespace,
        emitter: LifecycleEventEmitter,
        sleep: Optional[SleepFunction] = None
    ) -> "OperationPoller":
        return cls(
            namespace,
            TRANSITIONS_BY_NAMESPACE[namespace],
            emitter,
            sleep=sleep,
            fallback=FALLBACK_TRANSITIONS.get(namespace)
        )

    def classify(self, operation_id: str, record: Any) -> Transition:
        """Look up the transition for a polled record."""
        status = getattr(record, "status", None)
        transition = self.transitions.get(status, self.fallback) if status is not None else None
        if transition is None:
            logger.error(f"Unhandled {self.namespace.value} status {status!r} for {operation_id}")
            raise UnhandledStatusError(operation_id, self.namespace.value, status)
        return transition

    async def run(
        self,
        operation_id: str,
        fetcher: StatusFetcher,
        policy: PollingPolicy
    ) -> Any:
        """
        Drive an operation to a terminal status.

        Args:
            operation_id: Remote operation id
            fetcher: Async callable returning the current status record
            policy: Polling frequency and timeout

        Returns:
            The terminal record (success or error), or the single fetched
            record when the policy does not poll

        Raises:
            PollingTimeoutError: timeout exhausted before a terminal status
            UnhandledStatusError: status outside the transition table
        """
        if not policy.polls:
            return await fetcher(operation_id)

        state = _PollState(remaining=policy.timeout)
        timeout_seconds = policy.timeout.total_seconds()
        logger.info(
            f"Polling {self.namespace.value} operation {operation_id} every "
            f"{policy.frequency.total_seconds():g}s for up to {timeout_seconds:g}s"
        )

        try:
            return await asyncio.wait_for(
                self._poll(operation_id, fetcher, policy, state),
                timeout=timeout_seconds
            )
        except asyncio.TimeoutError:
            last_status = getattr(state.last_record, "status", None)
            logger.warning(
                f"{self.namespace.value} operation {operation_id} timed out after "
                f"{state.polls} polls (last status: {last_status})"
            )
            name = event_name(self.namespace, LifecycleEventType.TIMED_OUT)
            await self.emitter.emit(
                name,
                LifecycleEvent(
                    name=name,
                    operation_id=operation_id,
                    record=state.last_record,
                    remaining_wait_time=state.remaining,
                )
            )
            raise PollingTimeoutError(
                operation_id, self.namespace.value, timeout_seconds, last_status
            ) from None

    async def _poll(
        self,
        operation_id: str,
        fetcher: StatusFetcher,
        policy: PollingPolicy,
        state: _PollState
    ) -> Any:
        while True:
            record = await fetcher(operation_id)
            state.last_record = record
            state.polls += 1

            transition = self.classify(operation_id, record)
            name = event_name(self.namespace, transition.event)
            logger.debug(f"{operation_id}: status={record.status} -> {name}")
            await self.emitter.emit(
                name,
                LifecycleEvent(
                    name=name,
                    operation_id=operation_id,
                    record=record,
                    remaining_wait_time=state.remaining,
                )
            )

            if transition.is_terminal:
                logger.info(
                    f"{self.namespace.value} operation {operation_id} finished with "
                    f"status {record.status} after {state.polls} polls"
                )
                return record

            state.remaining -= policy.frequency
            await self._sleep(policy.frequency.total_seconds())
