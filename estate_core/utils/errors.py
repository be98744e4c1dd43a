"""Error handling utilities."""

from typing import Optional


class EstateCoreError(Exception):
    """Base exception for the listing and appointment lifecycle core."""
    status_code = 500

    def __init__(self, message: str = "", entity_id: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.entity_id = entity_id


class ValidationError(EstateCoreError):
    """Malformed input (caller's fault)."""
    status_code = 400


class UnauthenticatedError(EstateCoreError):
    """Bearer token missing or rejected by the identity verifier."""
    status_code = 401


class ForbiddenError(EstateCoreError):
    """Caller lacks rights over the entity."""
    status_code = 403


class NotFoundError(EstateCoreError):
    """Referenced entity is absent."""
    status_code = 404


class AlreadyClaimedError(EstateCoreError):
    """Another agent already holds the listing."""
    status_code = 409


class InvalidTransitionError(EstateCoreError):
    """Requested status is not a legal successor of the current one."""
    status_code = 409


class ConflictError(EstateCoreError):
    """Identifier collision on create. Retryable."""
    status_code = 409


class PreconditionFailedError(EstateCoreError):
    """Store rejected a conditional write; nothing was applied."""
    status_code = 412


class StoreUnavailableError(EstateCoreError):
    """Store transport fault. Retryable by the caller, never retried internally."""
    status_code = 503


class MediaResolutionError(EstateCoreError):
    """Media URL could not be issued for an object key."""
    status_code = 502


def format_validation_errors(exc) -> str:
    """Flatten a pydantic ValidationError into one readable message."""
    parts = []
    for error in exc.errors():
        location = ".".join(str(part) for part in error.get("loc", ())) or "input"
        parts.append(f"{location}: {error.get('msg', 'invalid value')}")
    return "; ".join(parts)
