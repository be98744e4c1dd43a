"""Supabase-backed entity store. Preconditions become PostgREST filters on a single UPDATE/INSERT."""

from typing import Any, Callable, Iterable, List, Mapping, Optional

import httpx
from postgrest import APIError
from supabase import create_client, Client
from supabase.client import ClientOptions

from estate_core.services.store import Condition, ConditionOp, EntityStore, Precondition, Predicate
from estate_core.utils.config import StoreConfig, TableSpec
from estate_core.utils.errors import PreconditionFailedError, StoreUnavailableError
from estate_core.utils.logging import get_structured_logger, log_timing

logger = get_structured_logger(__name__)

# Postgres unique_violation: the primary key already exists
UNIQUE_VIOLATION = "23505"

# PostgREST caps responses at 1000 rows by default
SCAN_PAGE_SIZE = 1000


def create_supabase_client(config: StoreConfig) -> Client:
    """Create a Supabase client from explicit configuration."""
    if not config.supabase_url or not config.supabase_key:
        raise StoreUnavailableError("supabase_url and supabase_key must be configured")

    # Service-role access from a server process: no user session to refresh or persist
    options = ClientOptions(
        auto_refresh_token=False,
        persist_session=False,
    )
    client = create_client(config.supabase_url, config.supabase_key, options)
    logger.info("Supabase client initialized", url=config.supabase_url)
    return client


class SupabaseStore(EntityStore):
    """Entity store over Supabase tables."""

    def __init__(self, config: StoreConfig, client: Optional[Client] = None) -> None:
        super().__init__(config)
        self.client: Client = client if client is not None else create_supabase_client(config)

    def _table(self, table: TableSpec):
        return self.client.table(table.name)

    @staticmethod
    def _key_conditions(key: Mapping[str, Any]) -> List[Condition]:
        return [Condition.equals(attribute, value) for attribute, value in key.items()]

    @staticmethod
    def _apply(query, conditions: Iterable[Condition]):
        for condition in conditions:
            if condition.op == ConditionOp.EQ:
                query = query.eq(condition.attribute, condition.value)
            elif condition.op == ConditionOp.GTE:
                query = query.gte(condition.attribute, condition.value)
            elif condition.op == ConditionOp.LTE:
                query = query.lte(condition.attribute, condition.value)
            else:
                query = query.is_(condition.attribute, "null")
        return query

    def _execute(self, operation: str, table: TableSpec, fn: Callable[[], Any]) -> Any:
        try:
            with log_timing(f"supabase_{operation}", logger=logger, table=table.name):
                return fn()
        except APIError as e:
            if e.code == UNIQUE_VIOLATION:
                raise PreconditionFailedError(
                    f"Item already exists in {table.name}"
                ) from e
            logger.error(
                "Supabase API error",
                operation=operation,
                table=table.name,
                error_code=e.code,
                error=e.message,
            )
            raise StoreUnavailableError(f"Supabase {operation} on {table.name} failed: {e.message}") from e
        except httpx.HTTPError as e:
            logger.error(
                "Supabase transport error",
                operation=operation,
                table=table.name,
                error=str(e),
            )
            raise StoreUnavailableError(f"Supabase {operation} on {table.name} failed: {e}") from e

    async def get(self, table: TableSpec, key: Mapping[str, Any]) -> Optional[dict]:
        conditions = self._key_conditions(table.check_key(key))
        result = self._execute(
            "get",
            table,
            lambda: self._apply(self._table(table).select("*"), conditions).limit(1).execute(),
        )
        return result.data[0] if result.data else None

    async def _insert(self, table: TableSpec, row: dict) -> dict:
        result = self._execute("insert", table, lambda: self._table(table).insert(row).execute())
        return result.data[0] if result.data else row

    async def put(
        self,
        table: TableSpec,
        item: Mapping[str, Any],
        precondition: Optional[Precondition] = None,
    ) -> dict:
        key = table.key_of(item)
        row = dict(item)

        if not precondition:
            result = self._execute("upsert", table, lambda: self._table(table).upsert(row).execute())
            return result.data[0] if result.data else row

        # Key absent means "row must not exist": the primary key constraint enforces it
        if precondition.only_absent and precondition.attributes() & set(table.key_attributes):
            return await self._insert(table, row)

        conditions = self._key_conditions(key) + list(precondition)
        result = self._execute(
            "conditional_put",
            table,
            lambda: self._apply(self._table(table).update(row), conditions).execute(),
        )
        if result.data:
            return result.data[0]

        # No row matched. For absent-only preconditions a missing row satisfies them;
        # if the row exists after all, the insert hits the primary key and fails the precondition.
        if precondition.only_absent:
            return await self._insert(table, row)

        raise PreconditionFailedError(
            f"Precondition failed on put into {table.name}: {precondition!r}",
            entity_id=str(key[table.partition_key]),
        )

    async def update(
        self,
        table: TableSpec,
        key: Mapping[str, Any],
        mutation: Mapping[str, Any],
        precondition: Optional[Precondition] = None,
    ) -> dict:
        key = table.check_key(key)
        changes = self._check_mutation(table, mutation)
        conditions = self._key_conditions(key) + list(precondition or ())

        result = self._execute(
            "update",
            table,
            lambda: self._apply(self._table(table).update(changes), conditions).execute(),
        )
        if not result.data:
            raise PreconditionFailedError(
                f"Precondition failed on update of {table.name}: {precondition!r}",
                entity_id=str(key[table.partition_key]),
            )
        return result.data[0]

    async def scan(self, table: TableSpec, predicate: Optional[Predicate] = None) -> List[dict]:
        rows: List[dict] = []
        start = 0
        while True:
            end = start + SCAN_PAGE_SIZE - 1
            result = self._execute(
                "scan",
                table,
                lambda: self._apply(self._table(table).select("*"), predicate or ())
                .order(table.partition_key)
                .range(start, end)
                .execute(),
            )
            batch = result.data or []
            rows.extend(batch)
            if len(batch) < SCAN_PAGE_SIZE:
                return rows
            start += SCAN_PAGE_SIZE

    async def ping(self) -> bool:
        table = self.config.properties_table
        try:
            self._execute(
                "ping",
                table,
                lambda: self._table(table).select(table.partition_key).limit(1).execute(),
            )
            return True
        except StoreUnavailableError as e:
            logger.warning("Supabase ping failed", error=str(e))
            return False
