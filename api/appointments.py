"""Appointment endpoints for Vercel.

POST /api/appointments              request a viewing (any signed-in caller)
GET  /api/appointments/agent        appointments on the caller's listings (agent, optional ?status=)
GET  /api/appointments/{id}         single appointment (client who asked, or the acting agent)
PUT  /api/appointments/{id}         change status (listing agent; body: status, agent_notes)
"""

from typing import Mapping, Optional

from estate_core.models.appointment import AppointmentStatus
from estate_core.models.identity import UserRole
from estate_core.services.appointment_manager import combine_date_and_time
from estate_core.services.identity import require_role, resolve_caller
from estate_core.services.registry import get_appointment_manager, get_identity_verifier
from estate_core.utils.errors import ForbiddenError, NotFoundError, ValidationError
from estate_core.utils.http import JsonRequestHandler, Response, guarded, split_path


async def _request(headers: Mapping[str, str], body: Optional[dict]) -> Response:
    caller = resolve_caller(headers, get_identity_verifier())
    if body is None:
        raise ValidationError("Request body is required")

    requested_at = body.get("requested_at")
    if requested_at is None and body.get("date") is not None:
        # Booking form sends the day and the "HH:MM" time separately
        requested_at = combine_date_and_time(body["date"], body.get("time", ""))

    appointment = await get_appointment_manager().request(
        caller.user_id,
        body.get("property_id", ""),
        requested_at,
        body.get("notes"),
    )
    return 201, appointment.model_dump(mode="json")


async def _list_for_agent(headers: Mapping[str, str], query: Mapping[str, str]) -> Response:
    caller = require_role(resolve_caller(headers, get_identity_verifier()), UserRole.AGENT)
    status = None
    if query.get("status"):
        try:
            status = AppointmentStatus(query["status"])
        except ValueError as e:
            raise ValidationError(f"Unknown appointment status: {query['status']!r}") from e

    rows = await get_appointment_manager().list_for_agent(caller.user_id, status)
    return 200, {"items": [row.model_dump(mode="json") for row in rows]}


async def _get(appointment_id: str, headers: Mapping[str, str]) -> Response:
    caller = resolve_caller(headers, get_identity_verifier())
    appointment = await get_appointment_manager().get(appointment_id)
    if caller.user_id not in (appointment.client_id, appointment.agent_id):
        raise ForbiddenError("Not a participant of this appointment", entity_id=appointment_id)
    return 200, appointment.model_dump(mode="json")


async def _transition(appointment_id: str, headers: Mapping[str, str], body: Optional[dict]) -> Response:
    caller = require_role(resolve_caller(headers, get_identity_verifier()), UserRole.AGENT)
    if not body or not body.get("status"):
        raise ValidationError("status is required")

    appointment = await get_appointment_manager().transition(
        appointment_id,
        caller.user_id,
        body["status"],
        body.get("agent_notes"),
    )
    return 200, appointment.model_dump(mode="json")


async def dispatch(method: str, path: str, headers: Mapping[str, str], body: Optional[dict]) -> Response:
    """Route one request and return (status, payload)."""
    segments, query = split_path(path)
    # segments start with ["api", "appointments"]
    rest = segments[2:]

    async def route() -> Response:
        if method == "POST" and not rest:
            return await _request(headers, body)
        if method == "GET" and rest == ["agent"]:
            return await _list_for_agent(headers, query)
        if method == "GET" and len(rest) == 1:
            return await _get(rest[0], headers)
        if method == "PUT" and len(rest) == 1:
            return await _transition(rest[0], headers, body)
        raise NotFoundError(f"No route for {method} {'/'.join(segments)}")

    return await guarded(route)


class handler(JsonRequestHandler):
    """Vercel serverless function handler for appointments."""

    dispatcher = staticmethod(dispatch)
