"""Tests for the in-memory entity store."""

import pytest
from datetime import datetime, timezone
from estate_core.models.listing import ListingStatus
from estate_core.services.memory_store import InMemoryStore
from estate_core.services.store import Condition, Predicate
from estate_core.utils.config import TableSpec
from estate_core.utils.errors import PreconditionFailedError


@pytest.fixture
def table(store_config):
    return store_config.properties_table


@pytest.mark.unit
@pytest.mark.asyncio
async def test_put_and_get(memory_store, table):
    """Test a written item can be read back by key."""
    await memory_store.put(table, {"property_id": "p1", "city": "Makati"})

    item = await memory_store.get(table, {"property_id": "p1"})

    assert item == {"property_id": "p1", "city": "Makati"}
    assert await memory_store.get(table, {"property_id": "missing"}) is None


@pytest.mark.unit
@pytest.mark.asyncio
async def test_returned_items_are_copies(memory_store, table):
    """Test callers cannot mutate stored rows through returned dicts."""
    await memory_store.put(table, {"property_id": "p1", "media_keys": ["a.jpg"]})

    item = await memory_store.get(table, {"property_id": "p1"})
    item["media_keys"].append("b.jpg")

    assert (await memory_store.get(table, {"property_id": "p1"}))["media_keys"] == ["a.jpg"]


@pytest.mark.unit
@pytest.mark.asyncio
async def test_put_with_key_absent_precondition(memory_store, table):
    """Test create-only put fails when the key already exists."""
    precondition = Predicate([Condition.absent("property_id")])
    await memory_store.put(table, {"property_id": "p1", "title": "first"}, precondition)

    with pytest.raises(PreconditionFailedError):
        await memory_store.put(table, {"property_id": "p1", "title": "second"}, precondition)

    assert (await memory_store.get(table, {"property_id": "p1"}))["title"] == "first"


@pytest.mark.unit
@pytest.mark.asyncio
async def test_update_applies_mutation_when_precondition_holds(memory_store, table):
    """Test conditional update on an absent attribute."""
    await memory_store.put(table, {"property_id": "p1", "status": "Unassigned", "listing_agent_id": None})

    updated = await memory_store.update(
        table,
        {"property_id": "p1"},
        {"listing_agent_id": "agent-x", "status": ListingStatus.CLAIMED},
        Predicate([Condition.absent("listing_agent_id")]),
    )

    assert updated["listing_agent_id"] == "agent-x"
    assert updated["status"] == "Claimed"


@pytest.mark.unit
@pytest.mark.asyncio
async def test_failed_precondition_applies_nothing(memory_store, table):
    """Test a rejected update leaves the row untouched."""
    await memory_store.put(table, {"property_id": "p1", "status": "Claimed", "listing_agent_id": "agent-x"})

    with pytest.raises(PreconditionFailedError):
        await memory_store.update(
            table,
            {"property_id": "p1"},
            {"listing_agent_id": "agent-y"},
            Predicate([Condition.absent("listing_agent_id")]),
        )

    assert (await memory_store.get(table, {"property_id": "p1"}))["listing_agent_id"] == "agent-x"


@pytest.mark.unit
@pytest.mark.asyncio
async def test_update_never_creates_rows(memory_store, table):
    """Test updating a missing key fails its precondition."""
    with pytest.raises(PreconditionFailedError):
        await memory_store.update(table, {"property_id": "ghost"}, {"status": "Active"})

    assert await memory_store.get(table, {"property_id": "ghost"}) is None


@pytest.mark.unit
@pytest.mark.asyncio
async def test_update_rejects_key_changes(memory_store, table):
    """Test key attributes are immutable."""
    await memory_store.put(table, {"property_id": "p1"})

    with pytest.raises(ValueError):
        await memory_store.update(table, {"property_id": "p1"}, {"property_id": "p2"})
    with pytest.raises(ValueError):
        await memory_store.update(table, {"property_id": "p1"}, {})


@pytest.mark.unit
@pytest.mark.asyncio
async def test_datetimes_stored_as_utc_text(memory_store, table):
    """Test mutation values are serialized like model dumps."""
    await memory_store.put(table, {"property_id": "p1"})

    updated = await memory_store.update(
        table, {"property_id": "p1"}, {"updated_at": datetime(2024, 12, 9, 12, 0, tzinfo=timezone.utc)}
    )

    assert updated["updated_at"] == "2024-12-09T12:00:00Z"


@pytest.mark.unit
@pytest.mark.asyncio
async def test_scan_with_range_predicate(memory_store, table):
    """Test scan filters with inclusive bounds and ignores rows missing the attribute."""
    for pid, price in [("p1", 100.0), ("p2", 200.0), ("p3", 300.0)]:
        await memory_store.put(table, {"property_id": pid, "price": price})
    await memory_store.put(table, {"property_id": "p4"})

    rows = await memory_store.scan(
        table, Predicate([Condition.at_least("price", 200), Condition.at_most("price", 300)])
    )

    assert sorted(row["property_id"] for row in rows) == ["p2", "p3"]
    assert len(await memory_store.scan(table)) == 4


@pytest.mark.unit
@pytest.mark.asyncio
async def test_composite_keys():
    """Test tables keyed by partition and sort key."""
    store = InMemoryStore()
    table = TableSpec(name="viewings", partition_key="property_id", sort_key="appointment_id")

    await store.put(table, {"property_id": "p1", "appointment_id": "a1", "status": "Requested"})
    await store.put(table, {"property_id": "p1", "appointment_id": "a2", "status": "Confirmed"})

    item = await store.get(table, {"property_id": "p1", "appointment_id": "a2"})
    assert item["status"] == "Confirmed"

    with pytest.raises(ValueError):
        await store.get(table, {"property_id": "p1"})
    with pytest.raises(ValueError):
        await store.put(table, {"property_id": "p1"})


@pytest.mark.unit
@pytest.mark.asyncio
async def test_ping(memory_store):
    """Test in-memory store is always reachable."""
    assert await memory_store.ping() is True
