"""Property listing models and the listing assignment state machine."""

from enum import Enum
from typing import Optional
from datetime import datetime
from pydantic import BaseModel, ConfigDict, Field, model_validator


class ListingStatus(str, Enum):
    """Assignment status of a property listing."""
    UNASSIGNED = "Unassigned"
    CLAIMED = "Claimed"
    UNDER_REVIEW = "UnderReview"
    ACTIVE = "Active"
    SOLD = "Sold"
    INACTIVE = "Inactive"


# Claim is the only edge out of UNASSIGNED and is handled separately (conditional on the agent being unset).
LISTING_TRANSITIONS: dict[ListingStatus, set[ListingStatus]] = {
    ListingStatus.UNASSIGNED: {ListingStatus.CLAIMED},
    ListingStatus.CLAIMED: {ListingStatus.ACTIVE, ListingStatus.INACTIVE},
    ListingStatus.ACTIVE: {ListingStatus.UNDER_REVIEW, ListingStatus.SOLD, ListingStatus.INACTIVE},
    ListingStatus.UNDER_REVIEW: {ListingStatus.ACTIVE, ListingStatus.INACTIVE},
    ListingStatus.SOLD: set(),  # Terminal state
    ListingStatus.INACTIVE: set(),  # Terminal state
}


def can_transition_listing(from_status: ListingStatus, to_status: ListingStatus) -> bool:
    """Check if a listing status transition is on the edge set."""
    return to_status in LISTING_TRANSITIONS.get(from_status, set())


def is_terminal_listing_status(status: ListingStatus) -> bool:
    return not LISTING_TRANSITIONS.get(status)


class ListingAttributes(BaseModel):
    """Descriptive attributes collected by the listing form. Opaque to the lifecycle."""
    model_config = ConfigDict(str_strip_whitespace=True)

    title: str = Field(..., min_length=1, max_length=200, description="Listing headline")
    description: str = Field(..., min_length=1, max_length=5000, description="Listing body")
    price: float = Field(..., gt=0, description="Asking price")
    address: str = Field(..., min_length=1, max_length=255, description="Street address")
    city: str = Field(..., min_length=1, max_length=100, description="City")
    state: str = Field(default="", max_length=100)
    postal_code: str = Field(default="", max_length=20)
    country: str = Field(default="Philippines", max_length=100)
    property_type: str = Field(default="Residential", min_length=1, max_length=50)
    bedrooms: int = Field(default=0, ge=0)
    bathrooms: float = Field(default=0, ge=0)
    square_footage: float = Field(default=0, ge=0)


class Property(ListingAttributes):
    """A persisted listing with its assignment state."""
    property_id: str = Field(..., description="Listing ID (ULID text)")
    owner_id: str = Field(..., description="Client who created the listing")
    listing_agent_id: Optional[str] = Field(None, description="Agent holding the claim; unset means unassigned")
    status: ListingStatus = Field(default=ListingStatus.UNASSIGNED)
    media_keys: list[str] = Field(default_factory=list, description="Ordered media object keys")
    created_at: datetime
    updated_at: datetime

    @model_validator(mode="after")
    def check_assignment_invariant(self) -> "Property":
        """Agent is set exactly when the listing is not Unassigned."""
        assigned = self.listing_agent_id is not None
        if assigned == (self.status == ListingStatus.UNASSIGNED):
            raise ValueError(
                f"listing_agent_id must be set iff status is not Unassigned "
                f"(status={self.status.value}, agent set={assigned})"
            )
        return self

    def to_item(self) -> dict:
        """Serialize for the entity store."""
        return self.model_dump(mode="json")

    @classmethod
    def from_item(cls, item: dict) -> "Property":
        return cls.model_validate(item)


class ListingView(Property):
    """Listing returned to callers, with media keys resolved to time-bounded URLs."""
    media_urls: list[str] = Field(default_factory=list, description="Do not persist; URLs expire")
