"""Exception hierarchy for the LifeSync incident engine."""

from typing import Any, Dict, Optional


class LifeSyncError(Exception):
    """Base exception for LifeSync errors."""
    pass


class LocationUnavailable(LifeSyncError):
    """Raised when no position fix can be obtained (denied, timeout, unsupported)."""
    pass


class CreationFailed(LifeSyncError):
    """Raised when an incident could not be written to the store. Retryable."""
    pass


class AdvisoryUnavailable(LifeSyncError):
    """Raised inside the advisory service when the text-generation call fails.

    Never escapes the advisory service; callers only ever see the fallback text.
    """
    pass


class SubscriptionError(LifeSyncError):
    """Raised when a live subscription loses its connection to the store."""
    pass


class StoreError(LifeSyncError):
    """Raised when the incident store rejects or cannot complete an operation."""
    pass


class RecordNotFound(StoreError):
    """Raised when a write targets a key that holds no record."""

    def __init__(self, key: str):
        super().__init__(f"No record at '{key}'")
        self.key = key


class PreconditionFailed(StoreError):
    """Raised when a conditional write finds the record in an unexpected state."""

    def __init__(self, key: str, current: Optional[Dict[str, Any]] = None):
        super().__init__(f"Precondition failed for '{key}'")
        self.key = key
        self.current = current


class IncidentNotFound(LifeSyncError):
    """Raised when a responder tries to claim an incident that does not exist."""

    def __init__(self, incident_id: str):
        super().__init__(f"Incident {incident_id} not found")
        self.incident_id = incident_id


class AlreadyAccepted(LifeSyncError):
    """Raised when a responder tries to claim an incident someone already claimed."""

    def __init__(self, incident_id: str):
        super().__init__(f"Incident {incident_id} has already been accepted")
        self.incident_id = incident_id
