"""Bearer token to caller identity, plus role guards."""

import os
from typing import Callable, Mapping, Optional

from pydantic import ValidationError as PydanticValidationError

from estate_core.models.identity import Caller, UserRole
from estate_core.utils.errors import ForbiddenError, UnauthenticatedError
from estate_core.utils.logging import get_structured_logger, mask_user_id

logger = get_structured_logger(__name__)

# Verifies a raw bearer token and returns the caller, or raises UnauthenticatedError
IdentityVerifier = Callable[[str], Caller]


def should_bypass_verification() -> bool:
    """Check if token verification should be bypassed (dev mode)."""
    env = os.environ.get("ENVIRONMENT", "").lower()
    if env in ("development", "local"):
        return True

    bypass_flag = os.environ.get("AUTH_BYPASS_VERIFY", "").lower()
    return bypass_flag == "true"


def parse_bypass_token(token: str) -> Caller:
    """Read a development token of the form ``<user_id>:<Role>``."""
    user_id, _, role = (token or "").partition(":")
    try:
        return Caller(user_id=user_id.strip(), role=UserRole(role.strip()))
    except (ValueError, PydanticValidationError) as e:
        raise UnauthenticatedError("Development token must look like <user_id>:<Client|Agent>") from e


def extract_bearer_token(headers: Mapping[str, str]) -> str:
    """Pull the token out of an Authorization header (case-insensitive lookup)."""
    header = None
    for name, value in headers.items():
        if name.lower() == "authorization":
            header = value
            break

    if not header:
        raise UnauthenticatedError("Not authorized, no token")
    scheme, _, token = header.strip().partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        raise UnauthenticatedError("Not authorized, malformed token")
    return token.strip()


def resolve_caller(headers: Mapping[str, str], verifier: Optional[IdentityVerifier]) -> Caller:
    """Verify the request's bearer token and return who is calling."""
    token = extract_bearer_token(headers)

    if should_bypass_verification():
        caller = parse_bypass_token(token)
        logger.debug("Token verification bypassed", user_id=mask_user_id(caller.user_id))
        return caller

    if verifier is None:
        raise UnauthenticatedError("Identity verification is not configured")

    caller = verifier(token)
    if not isinstance(caller, Caller):
        raise UnauthenticatedError("Identity verifier returned no caller")
    return caller


def require_role(caller: Caller, role: UserRole) -> Caller:
    """Reject callers whose role does not match."""
    if caller.role != role:
        raise ForbiddenError(f"Not authorized as {role.value.lower()}")
    return caller
