"""Pytest configuration and shared fixtures for LifeSync tests."""

import pytest
from datetime import datetime, timezone
from typing import Dict, Any

from lifesync.models.incidents import Coordinate, Incident, IncidentStatus, PatientInfo

# Import fixtures from fixture modules to make them available
pytest_plugins = [
    "tests.fixtures.incident_fixtures",
    "tests.fixtures.llm_fixtures",
]


# ============================================================================
# Core Test Data Fixtures
# ============================================================================


@pytest.fixture
def sample_coordinate() -> Coordinate:
    """
    Provides the reporter position used across scenarios.

    Returns:
        Coordinate: 1.30, 103.80
    """
    return Coordinate(lat=1.30, lng=103.80)


@pytest.fixture
def sample_patient() -> PatientInfo:
    return PatientInfo(patient_name="John Doe", blood_type="O+")


@pytest.fixture
def sample_record() -> Dict[str, Any]:
    """
    Provides a pending incident as stored, keyed by wire names.

    Returns:
        Dict[str, Any]: Record without its id
    """
    return {
        "patientName": "John Doe",
        "bloodType": "O+",
        "location": {"lat": 1.30, "lng": 103.80},
        "status": "pending",
        "createdAt": "2026-01-01T08:00:00+00:00",
    }


@pytest.fixture
def sample_incident(sample_record) -> Incident:
    return Incident.from_record("incident-123", sample_record)


@pytest.fixture
def accepted_record(sample_record) -> Dict[str, Any]:
    return {
        **sample_record,
        "status": IncidentStatus.ACCEPTED.value,
        "acceptedAt": datetime(2026, 1, 1, 8, 5, tzinfo=timezone.utc).isoformat(),
    }
