"""Test data factories using Faker."""

from faker import Faker
from typing import Optional

fake = Faker()


def create_user_id(prefix: str = "user") -> str:
    """Create a test user identifier."""
    return f"{prefix}-{fake.uuid4().replace('-', '')[:12]}"


def create_listing_attributes(**overrides) -> dict:
    """Create listing form attributes."""
    data = {
        "title": fake.sentence(nb_words=4).rstrip("."),
        "description": fake.text(max_nb_chars=300),
        "price": float(fake.random_int(min=1_000_000, max=20_000_000)),
        "address": fake.street_address(),
        "city": fake.random_element(["Makati", "Taguig", "Quezon City", "Pasig", "Cebu City"]),
        "state": "Metro Manila",
        "postal_code": fake.postcode(),
        "property_type": "Residential",
        "bedrooms": fake.random_int(min=1, max=5),
        "bathrooms": float(fake.random_int(min=1, max=4)),
        "square_footage": float(fake.random_int(min=40, max=400)),
    }
    data.update(overrides)
    return data


def create_media_keys(count: int = 2, owner_id: Optional[str] = None) -> list[str]:
    """Create media object keys as the upload service would store them."""
    owner = owner_id or create_user_id("client")
    return [f"properties/{owner}/{fake.uuid4()}.jpg" for _ in range(count)]


def create_appointment_item(property_id: str, requested_at: str, **overrides) -> dict:
    """Create a raw appointments-table row."""
    item = {
        "appointment_id": fake.uuid4().replace('-', '')[:26].upper(),
        "property_id": property_id,
        "client_id": create_user_id("client"),
        "agent_id": None,
        "requested_at": requested_at,
        "status": "Requested",
        "appointment_type": "Viewing",
        "notes": fake.sentence(),
        "agent_notes": None,
        "created_at": "2024-12-09T12:00:00Z",
        "updated_at": "2024-12-09T12:00:00Z",
    }
    item.update(overrides)
    return item
