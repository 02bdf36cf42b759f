"""Live incident list for responders, and the claim operation."""

import logging
from typing import Any, Callable, Dict, List, Optional

from pydantic import ValidationError

from ..models.incidents import SERVER_TIMESTAMP, Incident, IncidentStatus
from .errors import AlreadyAccepted, IncidentNotFound, PreconditionFailed, RecordNotFound
from .incident_store import COLLECTION, IncidentStore, Subscription, incident_key

logger = logging.getLogger(__name__)

SnapshotCallback = Callable[[List[Incident]], Any]


def parse_entry(incident_id: str, record: Any) -> Optional[Incident]:
    """
    Validate one collection entry, or return None if it cannot be shown.

    Acceptance is permanent: a record that still carries `acceptedAt` is read
    as accepted whatever its `status` says.
    """
    if not isinstance(record, dict):
        logger.warning(f"Skipping malformed incident {incident_id}")
        return None
    if (
        record.get("acceptedAt") is not None
        and record.get("status") == IncidentStatus.PENDING.value
    ):
        record = {**record, "status": IncidentStatus.ACCEPTED.value}
    try:
        return Incident.from_record(incident_id, record)
    except ValidationError as e:
        logger.warning(
            f"Skipping malformed incident {incident_id}: {e.error_count()} validation error(s)"
        )
        return None


def build_snapshot(
    value: Optional[Any], held: Optional[Dict[str, Incident]] = None
) -> List[Incident]:
    """
    Turn a collection value into the visible incident list.

    Incidents are ordered most recently created first; equal timestamps keep
    reverse insertion order. Entries that fail validation (including any
    without a location) are skipped, unless `held` has an accepted version
    of them: an incident in `held` is never shown as pending or dropped.
    """
    if not value:
        return []
    if not isinstance(value, dict):
        logger.warning(f"Ignoring collection snapshot of type {type(value).__name__}")
        return []

    held = held or {}
    entries = []
    for position, (incident_id, record) in enumerate(value.items()):
        incident = parse_entry(incident_id, record)
        previous = held.get(incident_id)
        if previous is not None and (incident is None or incident.actionable):
            logger.warning(f"Ignoring status regression on incident {incident_id}")
            incident = previous
        if incident is not None:
            entries.append((position, incident))

    entries.sort(key=lambda entry: (entry[1].created_at, entry[0]), reverse=True)
    return [incident for _, incident in entries]


class ResponderFeed:
    """
    Keeps a responder's view of every incident current.

    Accepted incidents stay in the list (read-only) so responders keep track
    of resolved cases; only pending ones are actionable.
    """

    def __init__(self, store: IncidentStore):
        self.store = store
        self.incidents: List[Incident] = []
        self._accepted: Dict[str, Incident] = {}
        self._subscription: Optional[Subscription] = None

    def subscribe_all(self, on_snapshot: SnapshotCallback) -> Subscription:
        """
        Subscribe to the whole incident collection.

        Args:
            on_snapshot: Called with the rebuilt list after every change

        Returns:
            The underlying store subscription
        """
        if self._subscription is not None:
            self._subscription.cancel()

        def handle(value: Any):
            self.incidents = build_snapshot(value, self._accepted)
            self._remember_accepted(self.incidents)
            return on_snapshot(self.incidents)

        self._subscription = self.store.subscribe(COLLECTION, handle)
        return self._subscription

    async def accept(self, incident_id: str) -> Incident:
        """
        Claim a pending incident.

        The write is conditional on the incident still being pending, so of
        several responders claiming the same incident exactly one succeeds.

        Raises:
            AlreadyAccepted: If another responder claimed it first
            IncidentNotFound: If no such incident exists
        """
        try:
            record = await self.store.update(
                incident_key(incident_id),
                {"status": IncidentStatus.ACCEPTED.value, "acceptedAt": SERVER_TIMESTAMP},
                expect={"status": IncidentStatus.PENDING.value},
            )
        except RecordNotFound:
            raise IncidentNotFound(incident_id) from None
        except PreconditionFailed as e:
            logger.info(f"Claim on incident {incident_id} lost: already accepted")
            raise AlreadyAccepted(incident_id) from e

        logger.info(f"Accepted incident {incident_id}")
        return Incident.from_record(incident_id, record)

    def close(self):
        if self._subscription is not None:
            self._subscription.cancel()
            self._subscription = None

    def _remember_accepted(self, incidents: List[Incident]):
        for incident in incidents:
            if not incident.actionable:
                self._accepted[incident.id] = incident
