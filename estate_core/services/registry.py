"""Process-wide service wiring. Configuration is read once and passed down explicitly."""

from typing import Optional

from estate_core.models.identity import Caller
from estate_core.services.appointment_manager import AppointmentManager
from estate_core.services.identity import IdentityVerifier
from estate_core.services.listing_manager import ListingManager
from estate_core.services.media_resolver import (
    LocalMediaSigner,
    MediaReferenceResolver,
    MediaSigner,
    SupabaseMediaSigner,
)
from estate_core.services.memory_store import InMemoryStore
from estate_core.services.store import EntityStore
from estate_core.services.supabase_client import SupabaseStore
from estate_core.utils.config import StoreConfig
from estate_core.utils.errors import UnauthenticatedError
from estate_core.utils.logging import get_structured_logger

logger = get_structured_logger(__name__)

# Global instances, created on first use
_config: Optional[StoreConfig] = None
_store: Optional[EntityStore] = None
_resolver: Optional[MediaReferenceResolver] = None
_listing_manager: Optional[ListingManager] = None
_appointment_manager: Optional[AppointmentManager] = None
_identity_verifier: Optional[IdentityVerifier] = None


def build_store(config: StoreConfig) -> EntityStore:
    """Create the store backend named by the configuration."""
    if config.backend == "memory":
        return InMemoryStore(config)
    return SupabaseStore(config)


def build_signer(config: StoreConfig, store: EntityStore) -> MediaSigner:
    if isinstance(store, SupabaseStore):
        return SupabaseMediaSigner(store.client, config.media_bucket)
    return LocalMediaSigner(config.media_base_url, config.media_bucket)


def get_config() -> StoreConfig:
    global _config
    if _config is None:
        _config = StoreConfig.from_env()
        logger.info("Store configuration loaded", backend=_config.backend)
    return _config


def get_store() -> EntityStore:
    """Get or create the global store instance."""
    global _store
    if _store is None:
        _store = build_store(get_config())
    return _store


def get_media_resolver() -> MediaReferenceResolver:
    global _resolver
    if _resolver is None:
        config = get_config()
        _resolver = MediaReferenceResolver(
            build_signer(config, get_store()),
            expires_in=config.media_url_ttl_seconds,
        )
    return _resolver


def get_listing_manager() -> ListingManager:
    """Get or create the global listing manager."""
    global _listing_manager
    if _listing_manager is None:
        _listing_manager = ListingManager(get_store(), get_media_resolver())
    return _listing_manager


def get_appointment_manager() -> AppointmentManager:
    """Get or create the global appointment manager."""
    global _appointment_manager
    if _appointment_manager is None:
        _appointment_manager = AppointmentManager(get_store())
    return _appointment_manager


def _unconfigured_verifier(token: str) -> Caller:
    raise UnauthenticatedError("Identity verification is not configured")


def set_identity_verifier(verifier: Optional[IdentityVerifier]) -> None:
    """Install the verifier the account subsystem provides."""
    global _identity_verifier
    _identity_verifier = verifier


def get_identity_verifier() -> IdentityVerifier:
    return _identity_verifier or _unconfigured_verifier


def configure_services(
    config: StoreConfig,
    store: Optional[EntityStore] = None,
    signer: Optional[MediaSigner] = None,
) -> None:
    """Replace the global wiring, e.g. with an in-memory store."""
    global _config, _store, _resolver, _listing_manager, _appointment_manager
    _config = config
    _store = store or build_store(config)
    _resolver = MediaReferenceResolver(
        signer or build_signer(config, _store),
        expires_in=config.media_url_ttl_seconds,
    )
    _listing_manager = None
    _appointment_manager = None


def reset_services() -> None:
    """Drop every global instance."""
    global _config, _store, _resolver, _listing_manager, _appointment_manager, _identity_verifier
    _config = None
    _store = None
    _resolver = None
    _listing_manager = None
    _appointment_manager = None
    _identity_verifier = None
