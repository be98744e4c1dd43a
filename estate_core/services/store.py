"""Entity store contract: keyed get/put/update/scan with atomic preconditions."""

from abc import ABC, abstractmethod
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Iterable, Iterator, Mapping, Optional

from estate_core.utils.config import StoreConfig, TableSpec


class ConditionOp(str, Enum):
    """Comparison operators understood by every store backend."""
    EQ = "eq"
    GTE = "gte"
    LTE = "lte"
    ABSENT = "absent"


def _plain(value: Any) -> Any:
    # Enums are stored by value, datetimes as UTC ISO-8601 text
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, datetime):
        if value.tzinfo is None:
            value = value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc).isoformat().replace("+00:00", "Z")
    return value


class Condition:
    """Single attribute test. Missing attributes and None both count as absent."""

    __slots__ = ("attribute", "op", "value")

    def __init__(self, attribute: str, op: ConditionOp, value: Any = None):
        if op != ConditionOp.ABSENT and value is None:
            raise ValueError(f"Condition {op.value} on {attribute} needs a value")
        self.attribute = attribute
        self.op = op
        self.value = _plain(value)

    @classmethod
    def absent(cls, attribute: str) -> "Condition":
        return cls(attribute, ConditionOp.ABSENT)

    @classmethod
    def equals(cls, attribute: str, value: Any) -> "Condition":
        return cls(attribute, ConditionOp.EQ, value)

    @classmethod
    def at_least(cls, attribute: str, value: Any) -> "Condition":
        return cls(attribute, ConditionOp.GTE, value)

    @classmethod
    def at_most(cls, attribute: str, value: Any) -> "Condition":
        return cls(attribute, ConditionOp.LTE, value)

    def matches(self, item: Mapping[str, Any]) -> bool:
        current = item.get(self.attribute)
        if self.op == ConditionOp.ABSENT:
            return current is None
        if current is None:
            return False
        if self.op == ConditionOp.EQ:
            return current == self.value
        try:
            if self.op == ConditionOp.GTE:
                return current >= self.value
            return current <= self.value
        except TypeError:
            return False

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Condition):
            return NotImplemented
        return (self.attribute, self.op, self.value) == (other.attribute, other.op, other.value)

    def __hash__(self) -> int:
        return hash((self.attribute, self.op, repr(self.value)))

    def __repr__(self) -> str:
        if self.op == ConditionOp.ABSENT:
            return f"Condition({self.attribute} absent)"
        return f"Condition({self.attribute} {self.op.value} {self.value!r})"


class Predicate:
    """Conjunction of conditions. An empty predicate matches everything."""

    def __init__(self, conditions: Iterable[Condition] = ()):
        self.conditions: tuple[Condition, ...] = tuple(conditions)

    def matches(self, item: Mapping[str, Any]) -> bool:
        return all(condition.matches(item) for condition in self.conditions)

    def and_(self, *conditions: Condition) -> "Predicate":
        return Predicate(self.conditions + conditions)

    @property
    def only_absent(self) -> bool:
        return bool(self.conditions) and all(c.op == ConditionOp.ABSENT for c in self.conditions)

    def attributes(self) -> set[str]:
        return {c.attribute for c in self.conditions}

    def __iter__(self) -> Iterator[Condition]:
        return iter(self.conditions)

    def __len__(self) -> int:
        return len(self.conditions)

    def __bool__(self) -> bool:
        return bool(self.conditions)

    def __repr__(self) -> str:
        return f"Predicate({list(self.conditions)!r})"


# Preconditions on writes use the same shape as scan predicates.
Precondition = Predicate


class EntityStore(ABC):
    """Contract the lifecycle managers depend on.

    ``put`` and ``update`` either apply completely or raise
    ``PreconditionFailedError``; the precondition check and the write are one
    indivisible step at the store. ``update`` never creates rows, so a missing
    row fails its precondition. Transport failures raise
    ``StoreUnavailableError`` and are not retried here.
    """

    def __init__(self, config: StoreConfig):
        self.config = config

    @abstractmethod
    async def get(self, table: TableSpec, key: Mapping[str, Any]) -> Optional[dict]:
        """Fetch one item by key, or None."""

    @abstractmethod
    async def put(
        self,
        table: TableSpec,
        item: Mapping[str, Any],
        precondition: Optional[Precondition] = None,
    ) -> dict:
        """Write a whole item, optionally conditioned on the current row."""

    @abstractmethod
    async def update(
        self,
        table: TableSpec,
        key: Mapping[str, Any],
        mutation: Mapping[str, Any],
        precondition: Optional[Precondition] = None,
    ) -> dict:
        """Set attributes on an existing item and return the updated item."""

    @abstractmethod
    async def scan(self, table: TableSpec, predicate: Optional[Predicate] = None) -> list[dict]:
        """Return every item matching the predicate, in no particular order."""

    @abstractmethod
    async def ping(self) -> bool:
        """Health check."""

    @staticmethod
    def _check_mutation(table: TableSpec, mutation: Mapping[str, Any]) -> dict:
        changed_keys = set(mutation) & set(table.key_attributes)
        if changed_keys:
            raise ValueError(f"Mutation may not change key attributes {sorted(changed_keys)}")
        if not mutation:
            raise ValueError("Mutation is empty")
        return {attribute: _plain(value) for attribute, value in mutation.items()}
