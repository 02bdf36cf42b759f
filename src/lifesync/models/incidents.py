from pydantic import AwareDatetime, BaseModel, ConfigDict, Field, model_validator
from typing import Dict, Any, Optional
from enum import Enum


# Written by clients in place of a timestamp; the store substitutes its own clock.
SERVER_TIMESTAMP: Dict[str, str] = {".sv": "timestamp"}


class IncidentStatus(str, Enum):
    """Enumeration of incident lifecycle statuses. Only pending -> accepted is allowed."""
    PENDING = "pending"
    ACCEPTED = "accepted"


class Coordinate(BaseModel):
    lat: float = Field(ge=-90.0, le=90.0)
    lng: float = Field(ge=-180.0, le=180.0)

    @property
    def map_url(self) -> str:
        """Link handed to the external map launcher."""
        return f"https://www.google.com/maps?q={self.lat},{self.lng}"


class PatientInfo(BaseModel):
    patient_name: str = "John Doe"
    blood_type: str = "O+"


class Incident(BaseModel):
    """An emergency report as seen by subscribers of the incident store."""

    model_config = ConfigDict(populate_by_name=True)

    id: str
    patient_name: str = Field(alias="patientName")
    blood_type: str = Field(alias="bloodType")
    location: Coordinate
    status: IncidentStatus
    created_at: AwareDatetime = Field(alias="createdAt")
    # Absent on an accepted record only after a raw status-only write
    accepted_at: Optional[AwareDatetime] = Field(default=None, alias="acceptedAt")

    @model_validator(mode="after")
    def check_accepted_at(self) -> "Incident":
        if self.status == IncidentStatus.PENDING and self.accepted_at is not None:
            raise ValueError("pending incident carries acceptedAt")
        return self

    @property
    def actionable(self) -> bool:
        """Pending incidents can still be claimed; accepted ones are read-only."""
        return self.status == IncidentStatus.PENDING

    @classmethod
    def from_record(cls, incident_id: str, record: Dict[str, Any]) -> "Incident":
        return cls.model_validate({**record, "id": incident_id})

    def to_record(self) -> Dict[str, Any]:
        return self.model_dump(
            mode="json", by_alias=True, exclude={"id"}, exclude_none=True
        )


class NewIncidentRecord(BaseModel):
    """Body of a create request. createdAt is always assigned by the store."""

    model_config = ConfigDict(populate_by_name=True)

    patient_name: str = Field(alias="patientName", min_length=1)
    blood_type: str = Field(alias="bloodType")
    location: Coordinate
    status: IncidentStatus = IncidentStatus.PENDING

    @model_validator(mode="after")
    def check_pending(self) -> "NewIncidentRecord":
        if self.status != IncidentStatus.PENDING:
            raise ValueError("incidents must be created in pending status")
        return self

    @classmethod
    def build(cls, patient: PatientInfo, location: Coordinate) -> "NewIncidentRecord":
        return cls(
            patient_name=patient.patient_name,
            blood_type=patient.blood_type,
            location=location,
        )

    def to_record(self) -> Dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True)


class NewRecordResponse(BaseModel):
    id: str


class RecordUpdateRequest(BaseModel):
    """Merge-write of `fields`; committed only if every `expect` entry matches."""
    fields: Dict[str, Any]
    expect: Optional[Dict[str, Any]] = None
