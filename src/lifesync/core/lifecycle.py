"""
Reporter-side incident lifecycle.

Drives one emergency from the SOS trigger to acceptance:

    IDLE -> SUBMITTING -> PENDING -> ACCEPTED
    SUBMITTING -> IDLE   (no position fix, or the store write failed)

Nothing leaves ACCEPTED. The advisory fetch started by the same trigger runs
as a separate task and never blocks or fails the incident flow.
"""

import asyncio
import logging
from enum import Enum
from typing import Any, Callable, List, Optional, Set

from ..models.incidents import IncidentStatus, NewIncidentRecord, PatientInfo
from ..services.advisory import DEFAULT_CONTEXT, AdvisoryFallbackService, AdvisorySurface
from ..services.geolocation import GeolocationAcquirer
from .errors import CreationFailed, LifeSyncError, LocationUnavailable, StoreError
from .incident_store import COLLECTION, IncidentStore, Subscription, incident_key

logger = logging.getLogger(__name__)

ACCEPTED_MESSAGE = "Help is on the way"

AcceptedCallback = Callable[[str], Any]


class ReporterState(str, Enum):
    IDLE = "idle"
    SUBMITTING = "submitting"
    PENDING = "pending"
    ACCEPTED = "accepted"


def observed_status(value: Any) -> Optional[IncidentStatus]:
    """Status carried by a record notification, or None if absent or unknown."""
    if not isinstance(value, dict):
        return None
    try:
        return IncidentStatus(value.get("status"))
    except ValueError:
        return None


class IncidentLifecycleCoordinator:
    """Owns the pending -> accepted state machine for the reporting client."""

    def __init__(
        self,
        store: IncidentStore,
        geolocation: GeolocationAcquirer,
        advisory: Optional[AdvisoryFallbackService] = None,
    ):
        self.store = store
        self.geolocation = geolocation
        self.advisory = advisory
        self.state = ReporterState.IDLE
        self.incident_id: Optional[str] = None
        self.advisory_task: Optional[asyncio.Task] = None
        self._subscriptions: List[Subscription] = []
        self._tasks: Set[asyncio.Task] = set()

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()

    @property
    def status_message(self) -> str:
        return {
            ReporterState.IDLE: "Ready",
            ReporterState.SUBMITTING: "Locating and sending SOS...",
            ReporterState.PENDING: "SOS sent. Waiting for a responder...",
            ReporterState.ACCEPTED: ACCEPTED_MESSAGE,
        }[self.state]

    async def report_emergency(self, patient_info: PatientInfo) -> str:
        """
        Create a pending incident at the reporter's current position.

        Args:
            patient_info: Descriptive patient details

        Returns:
            The id assigned by the store

        Raises:
            LocationUnavailable: If no position fix could be obtained
            CreationFailed: If the store write failed; the reporter may retry
        """
        if self.state != ReporterState.IDLE:
            raise LifeSyncError(f"An emergency is already {self.state.value}")

        self.state = ReporterState.SUBMITTING
        try:
            location = await self.geolocation.acquire()
        except LocationUnavailable as e:
            self.state = ReporterState.IDLE
            logger.warning(f"Cannot report emergency without a position: {e}")
            raise

        record = NewIncidentRecord.build(patient_info, location).to_record()
        try:
            incident_id = await self.store.create(COLLECTION, record)
        except StoreError as e:
            self.state = ReporterState.IDLE
            logger.error(f"Failed to create incident: {e}")
            raise CreationFailed(f"Could not send SOS: {e}") from e

        self.incident_id = incident_id
        self.state = ReporterState.PENDING
        logger.info(
            f"Created incident {incident_id} at {location.lat:.4f}, {location.lng:.4f}"
        )
        return incident_id

    def watch_status(self, incident_id: str, on_accepted: AcceptedCallback) -> Subscription:
        """
        Watch one incident until a responder accepts it.

        `on_accepted(incident_id)` runs the first time the store reports
        `accepted`, and at most once for this subscription. Repeated
        notifications, unknown statuses and malformed payloads are ignored.
        """
        accepted = False

        def handle(value: Any):
            nonlocal accepted
            if accepted:
                return None
            status = observed_status(value)
            if status is None:
                if value is not None:
                    logger.debug(f"Ignoring unrecognised update for incident {incident_id}")
                return None
            if status != IncidentStatus.ACCEPTED:
                return None

            accepted = True
            if incident_id == self.incident_id:
                self.state = ReporterState.ACCEPTED
            logger.info(f"Incident {incident_id} accepted by a responder")
            return on_accepted(incident_id)

        subscription = self.store.subscribe(incident_key(incident_id), handle)
        self._subscriptions.append(subscription)
        return subscription

    async def trigger_sos(
        self,
        patient_info: PatientInfo,
        on_accepted: AcceptedCallback,
        surface: Optional[AdvisorySurface] = None,
        context: str = DEFAULT_CONTEXT,
    ) -> str:
        """
        Handle the SOS trigger: start the advisory fetch, then report and watch.

        The advisory runs in its own task (`advisory_task`) whether or not the
        report succeeds. Errors from `report_emergency` propagate unchanged.
        """
        if self.advisory is not None and surface is not None:
            self.advisory_task = self._spawn(self.advisory.update_surface(surface, context))

        incident_id = await self.report_emergency(patient_info)
        self.watch_status(incident_id, on_accepted)
        return incident_id

    def release(self):
        """Cancel every subscription and background task this coordinator owns."""
        for subscription in self._subscriptions:
            subscription.cancel()
        self._subscriptions.clear()
        for task in self._tasks:
            task.cancel()

    async def close(self):
        tasks = list(self._tasks)
        self.release()
        await asyncio.gather(*tasks, return_exceptions=True)

    def _spawn(self, coro) -> asyncio.Task:
        task = asyncio.create_task(coro)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task
