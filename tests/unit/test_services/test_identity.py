"""Tests for caller identity resolution."""

import pytest
from unittest.mock import Mock
from estate_core.models.identity import Caller, UserRole
from estate_core.services.identity import (
    extract_bearer_token,
    parse_bypass_token,
    require_role,
    resolve_caller,
    should_bypass_verification,
)
from estate_core.utils.errors import ForbiddenError, UnauthenticatedError


@pytest.fixture(autouse=True)
def no_bypass(monkeypatch):
    monkeypatch.setenv("ENVIRONMENT", "test")
    monkeypatch.delenv("AUTH_BYPASS_VERIFY", raising=False)


@pytest.mark.unit
def test_should_bypass_verification(monkeypatch):
    """Test development and local environments bypass verification."""
    assert should_bypass_verification() is False

    monkeypatch.setenv("ENVIRONMENT", "development")
    assert should_bypass_verification() is True

    monkeypatch.setenv("ENVIRONMENT", "production")
    monkeypatch.setenv("AUTH_BYPASS_VERIFY", "true")
    assert should_bypass_verification() is True


@pytest.mark.unit
def test_extract_bearer_token():
    """Test Authorization header parsing is case-insensitive on the name."""
    assert extract_bearer_token({"authorization": "Bearer abc.def"}) == "abc.def"
    assert extract_bearer_token({"Authorization": "bearer  xyz "}) == "xyz"


@pytest.mark.unit
@pytest.mark.parametrize("headers", [{}, {"Authorization": ""}, {"Authorization": "Basic abc"}, {"Authorization": "Bearer"}])
def test_extract_bearer_token_rejects(headers):
    """Test missing or malformed credentials."""
    with pytest.raises(UnauthenticatedError):
        extract_bearer_token(headers)


@pytest.mark.unit
def test_resolve_caller_uses_verifier():
    """Test the injected verifier decides who is calling."""
    verifier = Mock(return_value=Caller(user_id="agent-x", role=UserRole.AGENT))

    caller = resolve_caller({"Authorization": "Bearer signed-token"}, verifier)

    assert caller.user_id == "agent-x"
    verifier.assert_called_once_with("signed-token")


@pytest.mark.unit
def test_resolve_caller_propagates_rejection():
    """Test verifier failures reach the caller."""
    verifier = Mock(side_effect=UnauthenticatedError("token expired"))

    with pytest.raises(UnauthenticatedError):
        resolve_caller({"Authorization": "Bearer expired"}, verifier)


@pytest.mark.unit
def test_resolve_caller_without_verifier():
    """Test an unconfigured verifier rejects everything."""
    with pytest.raises(UnauthenticatedError):
        resolve_caller({"Authorization": "Bearer token"}, None)


@pytest.mark.unit
def test_resolve_caller_bypass(monkeypatch):
    """Test development tokens skip the verifier."""
    monkeypatch.setenv("AUTH_BYPASS_VERIFY", "true")
    verifier = Mock()

    caller = resolve_caller({"Authorization": "Bearer client-1:Client"}, verifier)

    assert caller == Caller(user_id="client-1", role=UserRole.CLIENT)
    verifier.assert_not_called()


@pytest.mark.unit
@pytest.mark.parametrize("token", ["client-1", "client-1:Admin", ":Agent"])
def test_parse_bypass_token_rejects(token):
    """Test malformed development tokens."""
    with pytest.raises(UnauthenticatedError):
        parse_bypass_token(token)


@pytest.mark.unit
def test_require_role(client_caller, agent_caller):
    """Test role guard."""
    assert require_role(agent_caller, UserRole.AGENT) is agent_caller

    with pytest.raises(ForbiddenError):
        require_role(client_caller, UserRole.AGENT)
