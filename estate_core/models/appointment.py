"""Viewing appointment models and the appointment state machine."""

from enum import Enum
from typing import Optional
from datetime import datetime, timezone
from pydantic import BaseModel, Field, field_validator


class AppointmentStatus(str, Enum):
    """Appointment status values."""
    REQUESTED = "Requested"
    CONFIRMED = "Confirmed"
    CANCELLED = "Cancelled"
    COMPLETED = "Completed"


class AppointmentType(str, Enum):
    """Appointment type values."""
    VIEWING = "Viewing"


# Monotonic: no edge leads back to REQUESTED.
APPOINTMENT_TRANSITIONS: dict[AppointmentStatus, set[AppointmentStatus]] = {
    AppointmentStatus.REQUESTED: {AppointmentStatus.CONFIRMED, AppointmentStatus.CANCELLED},
    AppointmentStatus.CONFIRMED: {AppointmentStatus.COMPLETED, AppointmentStatus.CANCELLED},
    AppointmentStatus.CANCELLED: set(),  # Terminal state
    AppointmentStatus.COMPLETED: set(),  # Terminal state
}


def can_transition_appointment(from_status: AppointmentStatus, to_status: AppointmentStatus) -> bool:
    """Check if an appointment status transition is on the edge set."""
    return to_status in APPOINTMENT_TRANSITIONS.get(from_status, set())


class Appointment(BaseModel):
    """Viewing appointment requested by a client for a listing."""
    appointment_id: str = Field(..., description="Appointment ID (ULID text)")
    property_id: str = Field(..., description="Referenced listing")
    client_id: str = Field(..., description="Requesting client")
    agent_id: Optional[str] = Field(None, description="Agent who first acted on the appointment")
    requested_at: datetime = Field(..., description="Requested viewing instant (UTC)")
    status: AppointmentStatus = Field(default=AppointmentStatus.REQUESTED)
    appointment_type: AppointmentType = Field(default=AppointmentType.VIEWING)
    notes: str = Field(default="", max_length=2000, description="Client notes")
    agent_notes: Optional[str] = Field(None, max_length=2000, description="Notes left by the acting agent")
    created_at: datetime
    updated_at: datetime

    @field_validator("requested_at", "created_at", "updated_at")
    @classmethod
    def normalize_to_utc(cls, v: datetime) -> datetime:
        if v.tzinfo is None:
            return v.replace(tzinfo=timezone.utc)
        return v.astimezone(timezone.utc)

    @property
    def is_terminal(self) -> bool:
        return not APPOINTMENT_TRANSITIONS.get(self.status)

    def to_item(self) -> dict:
        """Serialize for the entity store."""
        return self.model_dump(mode="json")

    @classmethod
    def from_item(cls, item: dict) -> "Appointment":
        return cls.model_validate(item)


class AgentAppointment(BaseModel):
    """Appointment joined with the listing fields an agent dashboard shows."""
    appointment: Appointment
    property_title: str
    property_address: str
    property_city: str
