"""Resolve stored media object keys into time-bounded URLs at read time."""

from abc import ABC, abstractmethod
from typing import Iterable, List, Optional
from urllib.parse import quote

import httpx
from storage3.utils import StorageException
from supabase import Client

from estate_core.utils.errors import MediaResolutionError
from estate_core.utils.logging import get_structured_logger

logger = get_structured_logger(__name__)

DEFAULT_URL_TTL_SECONDS = 1800


class MediaSigner(ABC):
    """Issues a URL for one object key. Implementations raise MediaResolutionError."""

    @abstractmethod
    def sign(self, key: str, expires_in: int) -> str:
        """Return a URL valid for ``expires_in`` seconds."""


class LocalMediaSigner(MediaSigner):
    """URLs under a local base URL, for the in-memory demo backend. Nothing is actually signed."""

    def __init__(self, base_url: str, bucket: str):
        self.base_url = base_url.rstrip("/")
        self.bucket = bucket

    def sign(self, key: str, expires_in: int) -> str:
        return f"{self.base_url}/{self.bucket}/{quote(key)}?expires_in={expires_in}"


class SupabaseMediaSigner(MediaSigner):
    """Signed URLs from a Supabase Storage bucket."""

    def __init__(self, client: Client, bucket: str):
        self.client = client
        self.bucket = bucket

    def sign(self, key: str, expires_in: int) -> str:
        try:
            response = self.client.storage.from_(self.bucket).create_signed_url(key, expires_in)
        except (StorageException, httpx.HTTPError) as e:
            raise MediaResolutionError(f"Could not sign {key}: {e}", entity_id=key) from e

        # storage3 has returned both spellings across releases
        url = (response or {}).get("signedURL") or (response or {}).get("signedUrl")
        if not url:
            raise MediaResolutionError(f"No signed URL returned for {key}", entity_id=key)
        return url


class MediaReferenceResolver:
    """Maps object keys to URLs on every read. Nothing is cached; URLs must not be persisted."""

    def __init__(self, signer: MediaSigner, expires_in: int = DEFAULT_URL_TTL_SECONDS):
        if expires_in <= 0:
            raise ValueError("expires_in must be positive")
        self.signer = signer
        self.expires_in = expires_in

    def resolve(self, key: str) -> str:
        if not key:
            raise MediaResolutionError("Empty media key")
        return self.signer.sign(key, self.expires_in)

    def resolve_all(self, keys: Iterable[str]) -> List[str]:
        """Resolve keys in order. A key that fails is skipped and logged."""
        urls: List[str] = []
        for key in keys:
            try:
                urls.append(self.resolve(key))
            except MediaResolutionError as e:
                logger.warning("Skipping unresolvable media key", media_key=key, error=e.message)
        return urls

    def thumbnail(self, keys: List[str]) -> Optional[str]:
        """URL for the first key only, as list views show one image."""
        resolved = self.resolve_all(keys[:1])
        return resolved[0] if resolved else None
