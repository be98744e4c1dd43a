"""Store configuration, read once at process start and passed explicitly to the store."""

import os
from typing import Literal, Mapping, Optional

from pydantic import BaseModel, Field


class TableSpec(BaseModel):
    """Physical table name plus its key schema (partition key and optional sort key)."""
    name: str = Field(..., min_length=1, description="Physical table name")
    partition_key: str = Field(..., min_length=1, description="Primary identifier attribute")
    sort_key: Optional[str] = Field(None, description="Sort key attribute for composite keys")

    @property
    def key_attributes(self) -> tuple[str, ...]:
        if self.sort_key:
            return (self.partition_key, self.sort_key)
        return (self.partition_key,)

    def key_of(self, item: Mapping) -> dict:
        """Extract the key from a full item, failing if any key attribute is missing."""
        key = {}
        for attribute in self.key_attributes:
            value = item.get(attribute)
            if value is None or value == "":
                raise ValueError(f"Item for table {self.name} is missing key attribute {attribute}")
            key[attribute] = value
        return key

    def check_key(self, key: Mapping) -> dict:
        """Validate that a key dict names exactly this table's key attributes."""
        if set(key) != set(self.key_attributes):
            raise ValueError(
                f"Key for table {self.name} must contain exactly {list(self.key_attributes)}, got {sorted(key)}"
            )
        return self.key_of(key)


class StoreConfig(BaseModel):
    """Everything the Entity Store Adapter and media resolver need to connect."""
    backend: Literal["supabase", "memory"] = "supabase"
    supabase_url: Optional[str] = None
    supabase_key: Optional[str] = Field(None, repr=False)
    properties_table: TableSpec = Field(
        default_factory=lambda: TableSpec(name="properties", partition_key="property_id")
    )
    appointments_table: TableSpec = Field(
        default_factory=lambda: TableSpec(name="appointments", partition_key="appointment_id")
    )
    media_bucket: str = "property-media"
    media_url_ttl_seconds: int = Field(default=1800, gt=0)
    media_base_url: str = "http://localhost:8000/media"

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> "StoreConfig":
        """Build config from environment variables."""
        env = os.environ if environ is None else environ
        return cls(
            backend=env.get("STORE_BACKEND", "supabase").strip().lower(),
            supabase_url=(env.get("SUPABASE_URL") or "").strip() or None,
            supabase_key=(env.get("SUPABASE_SERVICE_ROLE_KEY") or "").strip() or None,
            properties_table=TableSpec(
                name=env.get("PROPERTIES_TABLE", "properties"),
                partition_key="property_id",
            ),
            appointments_table=TableSpec(
                name=env.get("APPOINTMENTS_TABLE", "appointments"),
                partition_key="appointment_id",
            ),
            media_bucket=env.get("MEDIA_BUCKET", "property-media"),
            media_url_ttl_seconds=int(env.get("MEDIA_URL_TTL_SECONDS", "1800")),
            media_base_url=env.get("MEDIA_BASE_URL", "http://localhost:8000/media"),
        )
