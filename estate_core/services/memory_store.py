"""In-memory entity store used for tests and local demo mode."""

from __future__ import annotations

import copy
import threading
from typing import Any, Dict, List, Mapping, Optional

from estate_core.services.store import EntityStore, Precondition, Predicate
from estate_core.utils.config import StoreConfig, TableSpec
from estate_core.utils.errors import PreconditionFailedError


class InMemoryStore(EntityStore):
    """Dict-backed store. A single lock makes each check-and-write atomic, like a row write in the database."""

    def __init__(self, config: Optional[StoreConfig] = None) -> None:
        super().__init__(config or StoreConfig(backend="memory"))
        self._tables: Dict[str, Dict[tuple, Dict[str, Any]]] = {}
        self._lock = threading.Lock()

    def _rows(self, table: TableSpec) -> Dict[tuple, Dict[str, Any]]:
        return self._tables.setdefault(table.name, {})

    @staticmethod
    def _row_key(table: TableSpec, key: Mapping[str, Any]) -> tuple:
        return tuple(key[attribute] for attribute in table.key_attributes)

    async def get(self, table: TableSpec, key: Mapping[str, Any]) -> Optional[dict]:
        row_key = self._row_key(table, table.check_key(key))
        with self._lock:
            row = self._rows(table).get(row_key)
            return copy.deepcopy(row) if row is not None else None

    async def put(
        self,
        table: TableSpec,
        item: Mapping[str, Any],
        precondition: Optional[Precondition] = None,
    ) -> dict:
        row_key = self._row_key(table, table.key_of(item))
        new_row = copy.deepcopy(dict(item))
        with self._lock:
            rows = self._rows(table)
            # A missing row has every attribute absent
            current = rows.get(row_key, {})
            if precondition and not precondition.matches(current):
                raise PreconditionFailedError(
                    f"Precondition failed on put into {table.name}: {precondition!r}",
                    entity_id=str(row_key[0]),
                )
            rows[row_key] = new_row
            return copy.deepcopy(new_row)

    async def update(
        self,
        table: TableSpec,
        key: Mapping[str, Any],
        mutation: Mapping[str, Any],
        precondition: Optional[Precondition] = None,
    ) -> dict:
        row_key = self._row_key(table, table.check_key(key))
        changes = self._check_mutation(table, mutation)
        with self._lock:
            rows = self._rows(table)
            current = rows.get(row_key)
            if current is None:
                raise PreconditionFailedError(
                    f"Item does not exist in {table.name}", entity_id=str(row_key[0])
                )
            if precondition and not precondition.matches(current):
                raise PreconditionFailedError(
                    f"Precondition failed on update of {table.name}: {precondition!r}",
                    entity_id=str(row_key[0]),
                )
            current.update(copy.deepcopy(changes))
            return copy.deepcopy(current)

    async def scan(self, table: TableSpec, predicate: Optional[Predicate] = None) -> List[dict]:
        with self._lock:
            rows = list(self._rows(table).values())
            return [
                copy.deepcopy(row)
                for row in rows
                if predicate is None or predicate.matches(row)
            ]

    async def ping(self) -> bool:
        return True
