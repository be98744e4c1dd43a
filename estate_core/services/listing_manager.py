"""Listing lifecycle: creation, the agent claim, and claim-holder status transitions."""

from datetime import datetime, timezone
from typing import Any, Iterable, List, Mapping, Optional, Union

from pydantic import ValidationError as PydanticValidationError
from ulid import ULID

from estate_core.models.listing import (
    ListingAttributes,
    ListingStatus,
    ListingView,
    Property,
    can_transition_listing,
)
from estate_core.services.media_resolver import MediaReferenceResolver
from estate_core.services.query_filter import (
    ListingFilter,
    Page,
    build_predicate,
    order_and_page,
    parse_filter,
)
from estate_core.services.store import Condition, EntityStore, Predicate
from estate_core.utils.errors import (
    AlreadyClaimedError,
    ConflictError,
    ForbiddenError,
    InvalidTransitionError,
    NotFoundError,
    PreconditionFailedError,
    ValidationError,
    format_validation_errors,
)
from estate_core.utils.logging import get_structured_logger, log_timing, mask_user_id

logger = get_structured_logger(__name__)


def generate_property_id() -> str:
    """Generate a ULID for a new listing."""
    return str(ULID())


class ListingManager:
    """Owns every write to the properties table.

    The claim is a single conditional update on "agent unset", so among
    concurrent claimants exactly one wins. Later transitions are conditioned on
    the status and agent observed just before the write; when the store rejects
    the write the row is re-read to report the specific business error.
    """

    def __init__(self, store: EntityStore, resolver: MediaReferenceResolver):
        self.store = store
        self.resolver = resolver
        self.table = store.config.properties_table

    @staticmethod
    def _now() -> datetime:
        return datetime.now(timezone.utc)

    def _key(self, property_id: str) -> dict:
        return {self.table.partition_key: property_id}

    async def _load(self, property_id: str) -> Property:
        if not property_id:
            raise ValidationError("property_id is required")
        item = await self.store.get(self.table, self._key(property_id))
        if item is None:
            raise NotFoundError(f"Listing {property_id} not found", entity_id=property_id)
        return Property.from_item(item)

    def _view(self, prop: Property, thumbnail_only: bool = False) -> ListingView:
        if thumbnail_only:
            thumbnail = self.resolver.thumbnail(prop.media_keys)
            urls = [thumbnail] if thumbnail else []
        else:
            urls = self.resolver.resolve_all(prop.media_keys)
        return ListingView(**prop.model_dump(), media_urls=urls)

    async def create(
        self,
        owner_id: str,
        attributes: Union[ListingAttributes, Mapping[str, Any]],
        media_keys: Iterable[str],
    ) -> ListingView:
        """Create an Unassigned listing owned by ``owner_id``."""
        if not owner_id:
            raise ValidationError("owner_id is required")

        media_keys = list(media_keys or [])
        if any(not isinstance(key, str) for key in media_keys):
            raise ValidationError("media_keys must be strings")
        keys = [key.strip() for key in media_keys if key.strip()]
        if not keys:
            raise ValidationError("At least one image is required")

        try:
            if not isinstance(attributes, ListingAttributes):
                attributes = ListingAttributes.model_validate(dict(attributes or {}))
            now = self._now()
            prop = Property(
                **attributes.model_dump(),
                property_id=generate_property_id(),
                owner_id=owner_id,
                listing_agent_id=None,
                status=ListingStatus.UNASSIGNED,
                media_keys=keys,
                created_at=now,
                updated_at=now,
            )
        except PydanticValidationError as e:
            raise ValidationError(format_validation_errors(e)) from e

        try:
            with log_timing("listing_create", logger=logger, property_id=prop.property_id):
                await self.store.put(
                    self.table,
                    prop.to_item(),
                    Predicate([Condition.absent(self.table.partition_key)]),
                )
        except PreconditionFailedError as e:
            raise ConflictError(
                f"Listing id {prop.property_id} already exists; retry the create",
                entity_id=prop.property_id,
            ) from e

        logger.info(
            "Listing created",
            property_id=prop.property_id,
            owner_id=mask_user_id(owner_id),
            media_count=len(keys),
        )
        return self._view(prop)

    async def claim(self, property_id: str, agent_id: str) -> Property:
        """Assign ``agent_id`` to an Unassigned listing. Single attempt, no retry."""
        if not agent_id:
            raise ValidationError("agent_id is required")
        if not property_id:
            raise ValidationError("property_id is required")

        precondition = Predicate([
            Condition.absent("listing_agent_id"),
            Condition.equals("status", ListingStatus.UNASSIGNED),
        ])
        mutation = {
            "listing_agent_id": agent_id,
            "status": ListingStatus.CLAIMED,
            "updated_at": self._now(),
        }
        try:
            item = await self.store.update(self.table, self._key(property_id), mutation, precondition)
        except PreconditionFailedError as e:
            # Missing row and lost race both fail the precondition; the re-read tells them apart
            current = await self._load(property_id)
            logger.info(
                "Claim rejected",
                property_id=property_id,
                agent_id=mask_user_id(agent_id),
                current_status=current.status.value,
            )
            raise AlreadyClaimedError(
                f"Listing {property_id} is already claimed", entity_id=property_id
            ) from e

        logger.info("Listing claimed", property_id=property_id, agent_id=mask_user_id(agent_id))
        return Property.from_item(item)

    async def _transition(self, property_id: str, agent_id: str, target: ListingStatus) -> Property:
        current = await self._load(property_id)

        if not agent_id or current.listing_agent_id != agent_id:
            raise ForbiddenError(
                f"Only the listing agent may change listing {property_id}", entity_id=property_id
            )
        if not can_transition_listing(current.status, target):
            raise InvalidTransitionError(
                f"Cannot move listing {property_id} from {current.status.value} to {target.value}",
                entity_id=property_id,
            )

        precondition = Predicate([
            Condition.equals("listing_agent_id", agent_id),
            Condition.equals("status", current.status),
        ])
        try:
            item = await self.store.update(
                self.table,
                self._key(property_id),
                {"status": target, "updated_at": self._now()},
                precondition,
            )
        except PreconditionFailedError as e:
            latest = await self._load(property_id)
            if latest.listing_agent_id != agent_id:
                raise ForbiddenError(
                    f"Only the listing agent may change listing {property_id}", entity_id=property_id
                ) from e
            raise InvalidTransitionError(
                f"Listing {property_id} moved to {latest.status.value} concurrently",
                entity_id=property_id,
            ) from e

        logger.info(
            "Listing status changed",
            property_id=property_id,
            agent_id=mask_user_id(agent_id),
            from_status=current.status.value,
            to_status=target.value,
        )
        return Property.from_item(item)

    async def review(self, property_id: str, agent_id: str) -> Property:
        """Active -> UnderReview."""
        return await self._transition(property_id, agent_id, ListingStatus.UNDER_REVIEW)

    async def activate(self, property_id: str, agent_id: str) -> Property:
        """Claimed or UnderReview -> Active."""
        return await self._transition(property_id, agent_id, ListingStatus.ACTIVE)

    async def deactivate(self, property_id: str, agent_id: str) -> Property:
        """Any assigned, non-terminal status -> Inactive."""
        return await self._transition(property_id, agent_id, ListingStatus.INACTIVE)

    async def mark_sold(self, property_id: str, agent_id: str) -> Property:
        """Active -> Sold."""
        return await self._transition(property_id, agent_id, ListingStatus.SOLD)

    async def get(self, property_id: str) -> ListingView:
        """Single listing with every media key resolved."""
        return self._view(await self._load(property_id))

    async def list(
        self,
        listing_filter: Union[ListingFilter, Mapping[str, Any], None] = None,
        page: Optional[Page] = None,
    ) -> List[ListingView]:
        """Listings matching the filter, each carrying a thumbnail URL."""
        if not isinstance(listing_filter, ListingFilter):
            listing_filter = parse_filter(listing_filter)
        page = page or Page()

        with log_timing("listing_scan", logger=logger):
            items = await self.store.scan(self.table, build_predicate(listing_filter))

        selected = order_and_page(items, listing_filter, page)
        logger.debug(
            "Listings scanned",
            matched=len(items),
            returned=len(selected),
            skip=page.skip,
            limit=page.limit,
        )
        return [self._view(Property.from_item(item), thumbnail_only=True) for item in selected]

    async def list_unassigned(self, page: Optional[Page] = None) -> List[ListingView]:
        """Agent triage view: listings nobody has claimed yet, newest first."""
        return await self.list(ListingFilter(unassigned_only=True, sort_by_created=True), page)
