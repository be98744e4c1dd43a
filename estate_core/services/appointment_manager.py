"""Appointment lifecycle: client requests, listing-agent transitions, expiry housekeeping."""

import re
from datetime import date, datetime, time, timezone
from typing import Any, Dict, List, Optional, Union

from pydantic import BaseModel, Field, ValidationError as PydanticValidationError
from ulid import ULID

from estate_core.models.appointment import (
    AgentAppointment,
    Appointment,
    AppointmentStatus,
    AppointmentType,
    can_transition_appointment,
)
from estate_core.models.listing import Property
from estate_core.services.store import Condition, EntityStore, Predicate
from estate_core.utils.errors import (
    ConflictError,
    ForbiddenError,
    InvalidTransitionError,
    NotFoundError,
    PreconditionFailedError,
    ValidationError,
    format_validation_errors,
)
from estate_core.utils.logging import get_structured_logger, log_timing, mask_user_id, sanitize_text, timed

logger = get_structured_logger(__name__)

# Same shape the booking form submits: 24h "HH:MM"
TIME_OF_DAY_PATTERN = re.compile(r"^[0-2][0-9]:[0-5][0-9]$")


def generate_appointment_id() -> str:
    """Generate a ULID for a new appointment."""
    return str(ULID())


def parse_requested_at(value: Union[datetime, str]) -> datetime:
    """
    Normalize a requested viewing time to an aware UTC datetime.

    Accepts datetimes or ISO-8601 strings. Values without an offset are taken
    as UTC.
    """
    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, str) and value.strip():
        try:
            parsed = datetime.fromisoformat(value.strip().replace("Z", "+00:00"))
        except ValueError as e:
            raise ValidationError(f"Invalid requested date/time: {value!r}") from e
    else:
        raise ValidationError("Requested date/time is required")

    if parsed.tzinfo is None:
        return parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)


def combine_date_and_time(day: Union[date, str], time_of_day: str) -> datetime:
    """Combine a calendar date and an "HH:MM" string into a UTC instant."""
    if isinstance(day, str):
        try:
            day = date.fromisoformat(day.strip())
        except ValueError as e:
            raise ValidationError(f"Invalid date: {day!r}") from e
    if isinstance(day, datetime):
        day = day.date()
    if not isinstance(day, date):
        raise ValidationError("Date is required")

    if not isinstance(time_of_day, str):
        raise ValidationError(f"Invalid time format, expected HH:MM: {time_of_day!r}")
    time_of_day = time_of_day.strip()
    if not TIME_OF_DAY_PATTERN.match(time_of_day):
        raise ValidationError(f"Invalid time format, expected HH:MM: {time_of_day!r}")
    hours, minutes = (int(part) for part in time_of_day.split(":"))
    if hours > 23:
        raise ValidationError(f"Invalid time format, expected HH:MM: {time_of_day!r}")

    return datetime.combine(day, time(hours, minutes), tzinfo=timezone.utc)


class ExpiryResult(BaseModel):
    """Outcome of one housekeeping sweep."""
    cancelled: List[str] = Field(default_factory=list)
    skipped: List[str] = Field(default_factory=list, description="Moved by another actor before the sweep")


class AppointmentManager:
    """Owns every write to the appointments table. Never writes to properties."""

    def __init__(self, store: EntityStore):
        self.store = store
        self.table = store.config.appointments_table
        self.properties_table = store.config.properties_table

    @staticmethod
    def _now() -> datetime:
        return datetime.now(timezone.utc)

    async def _load_property(self, property_id: str) -> Optional[Property]:
        item = await self.store.get(
            self.properties_table, {self.properties_table.partition_key: property_id}
        )
        return Property.from_item(item) if item is not None else None

    async def get(self, appointment_id: str) -> Appointment:
        if not appointment_id:
            raise ValidationError("appointment_id is required")
        item = await self.store.get(self.table, {self.table.partition_key: appointment_id})
        if item is None:
            raise NotFoundError(f"Appointment {appointment_id} not found", entity_id=appointment_id)
        return Appointment.from_item(item)

    async def request(
        self,
        client_id: str,
        property_id: str,
        requested_at: Union[datetime, str],
        notes: Optional[str] = None,
    ) -> Appointment:
        """Create a Requested appointment. The referenced listing is never modified."""
        if not client_id:
            raise ValidationError("client_id is required")
        if not property_id or not isinstance(property_id, str):
            raise ValidationError("property_id is required")

        if notes is not None and not isinstance(notes, str):
            raise ValidationError("notes must be a string")

        when = parse_requested_at(requested_at)
        now = self._now()
        if when < now:
            raise ValidationError("Requested date/time is in the past")

        if await self._load_property(property_id) is None:
            raise NotFoundError(f"Listing {property_id} not found", entity_id=property_id)

        try:
            appointment = Appointment(
                appointment_id=generate_appointment_id(),
                property_id=property_id,
                client_id=client_id,
                agent_id=None,
                requested_at=when,
                status=AppointmentStatus.REQUESTED,
                appointment_type=AppointmentType.VIEWING,
                notes=(notes or "").strip(),
                created_at=now,
                updated_at=now,
            )
        except PydanticValidationError as e:
            raise ValidationError(format_validation_errors(e)) from e

        try:
            await self.store.put(
                self.table,
                appointment.to_item(),
                Predicate([Condition.absent(self.table.partition_key)]),
            )
        except PreconditionFailedError as e:
            raise ConflictError(
                f"Appointment id {appointment.appointment_id} already exists; retry the request",
                entity_id=appointment.appointment_id,
            ) from e

        logger.info(
            "Appointment requested",
            appointment_id=appointment.appointment_id,
            property_id=property_id,
            client_id=mask_user_id(client_id),
            requested_at=appointment.requested_at.isoformat(),
            notes_preview=sanitize_text(appointment.notes, max_length=50),
        )
        return appointment

    async def list_for_agent(
        self,
        agent_id: str,
        status: Optional[AppointmentStatus] = None,
    ) -> List[AgentAppointment]:
        """Appointments on listings currently held by ``agent_id``, soonest first."""
        if not agent_id:
            raise ValidationError("agent_id is required")

        predicate = Predicate([Condition.equals("status", status)]) if status else None
        with log_timing("appointment_scan", logger=logger):
            items = await self.store.scan(self.table, predicate)

        # Each listing is fetched at most once per call
        listings: Dict[str, Optional[Property]] = {}
        results: List[AgentAppointment] = []
        for item in items:
            appointment = Appointment.from_item(item)
            if appointment.property_id not in listings:
                listings[appointment.property_id] = await self._load_property(appointment.property_id)
            prop = listings[appointment.property_id]

            if prop is None:
                logger.warning(
                    "Appointment references a missing listing",
                    appointment_id=appointment.appointment_id,
                    property_id=appointment.property_id,
                )
                continue
            if prop.listing_agent_id != agent_id:
                continue

            results.append(AgentAppointment(
                appointment=appointment,
                property_title=prop.title,
                property_address=prop.address,
                property_city=prop.city,
            ))

        results.sort(key=lambda row: (row.appointment.requested_at, row.appointment.appointment_id))
        return results

    async def transition(
        self,
        appointment_id: str,
        acting_agent_id: str,
        new_status: Union[AppointmentStatus, str],
        agent_notes: Optional[str] = None,
    ) -> Appointment:
        """Move an appointment along its edge set on behalf of the listing agent."""
        try:
            target = AppointmentStatus(new_status)
        except ValueError as e:
            raise ValidationError(f"Unknown appointment status: {new_status!r}") from e

        appointment = await self.get(appointment_id)
        prop = await self._load_property(appointment.property_id)
        if prop is None:
            raise NotFoundError(
                f"Listing {appointment.property_id} not found", entity_id=appointment.property_id
            )

        # Authorization is decided before edge validity
        if not acting_agent_id or prop.listing_agent_id != acting_agent_id:
            raise ForbiddenError(
                f"Only the listing agent may update appointment {appointment_id}",
                entity_id=appointment_id,
            )
        if not can_transition_appointment(appointment.status, target):
            raise InvalidTransitionError(
                f"Cannot move appointment {appointment_id} from {appointment.status.value} to {target.value}",
                entity_id=appointment_id,
            )

        mutation: Dict[str, Any] = {"status": target, "updated_at": self._now()}
        if appointment.agent_id is None:
            mutation["agent_id"] = acting_agent_id
        if agent_notes is not None:
            if not isinstance(agent_notes, str):
                raise ValidationError("agent_notes must be a string")
            if len(agent_notes) > 2000:
                raise ValidationError("agent_notes must be at most 2000 characters")
            mutation["agent_notes"] = agent_notes.strip()

        try:
            item = await self.store.update(
                self.table,
                {self.table.partition_key: appointment_id},
                mutation,
                Predicate([Condition.equals("status", appointment.status)]),
            )
        except PreconditionFailedError as e:
            latest = await self.get(appointment_id)
            raise InvalidTransitionError(
                f"Appointment {appointment_id} moved to {latest.status.value} concurrently",
                entity_id=appointment_id,
            ) from e

        logger.info(
            "Appointment status changed",
            appointment_id=appointment_id,
            agent_id=mask_user_id(acting_agent_id),
            from_status=appointment.status.value,
            to_status=target.value,
        )
        return Appointment.from_item(item)

    @timed("appointment_expiry_sweep", logger=logger)
    async def cancel_expired_requests(self, now: Optional[datetime] = None) -> ExpiryResult:
        """Cancel every Requested appointment whose time has passed."""
        now = parse_requested_at(now) if now is not None else self._now()
        result = ExpiryResult()

        items = await self.store.scan(
            self.table, Predicate([Condition.equals("status", AppointmentStatus.REQUESTED)])
        )
        for item in items:
            appointment = Appointment.from_item(item)
            if appointment.requested_at >= now:
                continue
            try:
                await self.store.update(
                    self.table,
                    {self.table.partition_key: appointment.appointment_id},
                    {"status": AppointmentStatus.CANCELLED, "updated_at": now},
                    Predicate([Condition.equals("status", AppointmentStatus.REQUESTED)]),
                )
                result.cancelled.append(appointment.appointment_id)
            except PreconditionFailedError:
                logger.info(
                    "Expired request moved before cancellation",
                    appointment_id=appointment.appointment_id,
                )
                result.skipped.append(appointment.appointment_id)

        logger.info(
            "Expired appointment requests swept",
            cancelled_count=len(result.cancelled),
            skipped_count=len(result.skipped),
        )
        return result
