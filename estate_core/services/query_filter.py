"""Listing search parameters and their translation into store predicates."""

from datetime import datetime, timezone
from typing import Any, Iterable, List, Mapping, Optional

from pydantic import BaseModel, Field, ValidationError as PydanticValidationError, model_validator

from estate_core.models.listing import ListingStatus
from estate_core.services.store import Condition, Predicate
from estate_core.utils.errors import ValidationError, format_validation_errors

DEFAULT_PAGE_LIMIT = 20
MAX_PAGE_LIMIT = 100

_TRUE_VALUES = {"1", "true", "yes", "on"}


class ListingFilter(BaseModel):
    """Listing search criteria. Every field is optional; set fields are ANDed."""
    city: Optional[str] = Field(None, min_length=1, description="Exact, case-sensitive city match")
    property_type: Optional[str] = Field(None, min_length=1, description="Exact property type match")
    status: Optional[ListingStatus] = None
    price_min: Optional[float] = Field(None, ge=0, description="Inclusive lower bound")
    price_max: Optional[float] = Field(None, ge=0, description="Inclusive upper bound")
    unassigned_only: bool = False
    sort_by_created: bool = False
    descending: bool = True

    @model_validator(mode="after")
    def check_price_range(self) -> "ListingFilter":
        if self.price_min is not None and self.price_max is not None and self.price_min > self.price_max:
            raise ValueError("price_min must not exceed price_max")
        return self


class Page(BaseModel):
    """Offset pagination window."""
    skip: int = Field(default=0, ge=0)
    limit: int = Field(default=DEFAULT_PAGE_LIMIT, ge=1, le=MAX_PAGE_LIMIT)


def parse_filter(data: Optional[Mapping[str, Any]] = None) -> ListingFilter:
    """Build a ListingFilter, raising the core ValidationError on bad input."""
    try:
        return ListingFilter.model_validate(dict(data or {}))
    except PydanticValidationError as e:
        raise ValidationError(format_validation_errors(e)) from e


def parse_page(skip: Any = 0, limit: Any = DEFAULT_PAGE_LIMIT) -> Page:
    try:
        return Page(skip=skip, limit=limit)
    except PydanticValidationError as e:
        raise ValidationError(format_validation_errors(e)) from e


def filter_from_query_params(params: Mapping[str, str]) -> tuple[ListingFilter, Page]:
    """Map URL query parameters onto a filter and a page."""
    data: dict[str, Any] = {}
    for name in ("city", "property_type", "status", "price_min", "price_max"):
        value = (params.get(name) or "").strip()
        if value:
            data[name] = value

    for name in ("unassigned_only", "descending"):
        if name in params:
            data[name] = params[name].strip().lower() in _TRUE_VALUES

    sort = (params.get("sort") or "").strip().lower()
    if sort in ("created", "created_at", "newest"):
        data["sort_by_created"] = True
    elif sort == "oldest":
        data["sort_by_created"] = True
        data["descending"] = False
    elif sort:
        raise ValidationError(f"Unsupported sort: {sort}")

    page = parse_page(
        skip=params.get("skip") or 0,
        limit=params.get("limit") or DEFAULT_PAGE_LIMIT,
    )
    return parse_filter(data), page


def build_predicate(listing_filter: ListingFilter) -> Predicate:
    """Translate a filter into a conjunctive store predicate. Unset fields impose nothing."""
    conditions: List[Condition] = []
    if listing_filter.city is not None:
        conditions.append(Condition.equals("city", listing_filter.city))
    if listing_filter.property_type is not None:
        conditions.append(Condition.equals("property_type", listing_filter.property_type))
    if listing_filter.status is not None:
        conditions.append(Condition.equals("status", listing_filter.status))
    if listing_filter.price_min is not None:
        conditions.append(Condition.at_least("price", listing_filter.price_min))
    if listing_filter.price_max is not None:
        conditions.append(Condition.at_most("price", listing_filter.price_max))
    if listing_filter.unassigned_only:
        conditions.append(Condition.absent("listing_agent_id"))
    return Predicate(conditions)


def _created_at(item: Mapping[str, Any]) -> datetime:
    value = item.get("created_at")
    if isinstance(value, datetime):
        parsed = value
    else:
        # Compare instants, not strings: offsets and precision vary between backends
        parsed = datetime.fromisoformat(str(value).replace("Z", "+00:00"))
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def order_and_page(items: Iterable[dict], listing_filter: ListingFilter, page: Page) -> List[dict]:
    """Order scan results and cut the requested page.

    Ties, and the unsorted case, fall back to identifier ascending so that pages
    do not overlap between calls.
    """
    ordered = sorted(items, key=lambda item: item["property_id"])
    if listing_filter.sort_by_created:
        ordered.sort(key=_created_at, reverse=listing_filter.descending)
    return ordered[page.skip:page.skip + page.limit]
