"""Caller identity as returned by the identity verifier."""

from enum import Enum
from pydantic import BaseModel, Field


class UserRole(str, Enum):
    """Account roles."""
    CLIENT = "Client"
    AGENT = "Agent"


class Caller(BaseModel):
    """Verified caller. The core trusts this verbatim and only compares it to entity fields."""
    user_id: str = Field(..., min_length=1, description="User ID")
    role: UserRole = Field(..., description="Client or Agent")
