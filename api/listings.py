"""Listing endpoints for Vercel.

GET  /api/listings                      search (city, property_type, status, price_min,
                                        price_max, unassigned_only, sort, skip, limit)
GET  /api/listings/{id}                 single listing with media URLs
POST /api/listings                      create (client)
POST /api/listings/{id}/{action}        claim | review | activate | deactivate | mark-sold (agent)
"""

from typing import Mapping, Optional

from estate_core.models.identity import UserRole
from estate_core.services.identity import require_role, resolve_caller
from estate_core.services.query_filter import filter_from_query_params
from estate_core.services.registry import get_identity_verifier, get_listing_manager
from estate_core.utils.errors import NotFoundError, ValidationError
from estate_core.utils.http import JsonRequestHandler, Response, guarded, split_path

AGENT_ACTIONS = {
    "claim": "claim",
    "review": "review",
    "activate": "activate",
    "deactivate": "deactivate",
    "mark-sold": "mark_sold",
}


async def _create(headers: Mapping[str, str], body: Optional[dict]) -> Response:
    caller = require_role(resolve_caller(headers, get_identity_verifier()), UserRole.CLIENT)
    if body is None:
        raise ValidationError("Request body is required")

    attributes = {name: value for name, value in body.items() if name != "media_keys"}
    media_keys = body.get("media_keys") or []
    if not isinstance(media_keys, list):
        raise ValidationError("media_keys must be a list")

    listing = await get_listing_manager().create(caller.user_id, attributes, media_keys)
    return 201, listing.model_dump(mode="json")


async def _agent_action(property_id: str, action: str, headers: Mapping[str, str]) -> Response:
    caller = require_role(resolve_caller(headers, get_identity_verifier()), UserRole.AGENT)
    operation = getattr(get_listing_manager(), AGENT_ACTIONS[action])
    listing = await operation(property_id, caller.user_id)
    return 200, listing.model_dump(mode="json")


async def dispatch(method: str, path: str, headers: Mapping[str, str], body: Optional[dict]) -> Response:
    """Route one request and return (status, payload)."""
    segments, query = split_path(path)
    # segments start with ["api", "listings"]
    rest = segments[2:]

    async def route() -> Response:
        manager = get_listing_manager()

        if method == "GET" and not rest:
            listing_filter, page = filter_from_query_params(query)
            listings = await manager.list(listing_filter, page)
            return 200, {
                "items": [listing.model_dump(mode="json") for listing in listings],
                "skip": page.skip,
                "limit": page.limit,
            }

        if method == "GET" and len(rest) == 1:
            listing = await manager.get(rest[0])
            return 200, listing.model_dump(mode="json")

        if method == "POST" and not rest:
            return await _create(headers, body)

        if method == "POST" and len(rest) == 2 and rest[1] in AGENT_ACTIONS:
            return await _agent_action(rest[0], rest[1], headers)

        raise NotFoundError(f"No route for {method} {'/'.join(segments)}")

    return await guarded(route)


class handler(JsonRequestHandler):
    """Vercel serverless function handler for listings."""

    dispatcher = staticmethod(dispatch)
