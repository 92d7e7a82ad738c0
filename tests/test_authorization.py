"""
Tests for the authorization dependency state machine
"""

import pytest
from starlette.requests import Request

from banking_api.auth_client import Verifier
from banking_api.auth_service import Verdict
from banking_api.authorization import Authorizer, extract_bearer_token, request_params
from banking_api.errors import (
    AuthenticationError, ForbiddenError, NotFoundError, ServiceUnavailableError, UnexpectedError
)
from banking_api.permissions import PermissionPolicy, RouteName


class FakeRoute:
    def __init__(self, name):
        self.name = name


class RecordingVerifier(Verifier):
    """Returns a fixed verdict or raises a fixed error, recording each call"""

    def __init__(self, verdict=None, error=None):
        self.verdict = verdict
        self.error = error
        self.calls = []

    async def verify(self, token, route_name, params):
        self.calls.append((token, route_name, dict(params)))
        if self.error is not None:
            raise self.error
        return self.verdict

    async def login(self, body):
        return {}

    async def health_check(self):
        return True


def make_request(route_name=None, authorization=None, path_params=None, query=b""):
    headers = []
    if authorization is not None:
        headers.append((b"authorization", authorization.encode()))
    scope = {
        "type": "http",
        "method": "GET",
        "path": "/customers/42",
        "query_string": query,
        "headers": headers,
        "path_params": path_params or {},
    }
    if route_name is not None:
        scope["route"] = FakeRoute(route_name)
    return Request(scope)


class TestVerifierInterface:

    def test_cannot_instantiate_incomplete_verifier(self):
        class VerifyOnly(Verifier):
            async def verify(self, token, route_name, params):
                return Verdict(True, "user")

        with pytest.raises(TypeError):
            VerifyOnly()

    @pytest.mark.asyncio
    async def test_aclose_defaults_to_noop(self):
        await RecordingVerifier().aclose()


class TestExtractBearerToken:

    @pytest.mark.parametrize("header,expected", [
        ("Bearer abc.def.ghi", "abc.def.ghi"),
        ("bearer abc", "abc"),
        ("BEARER   abc  ", "abc"),
        (None, None),
        ("", None),
        ("Bearer", None),
        ("Bearer    ", None),
        ("Basic abc", None),
        ("abc", None),
    ])
    def test_extraction(self, header, expected):
        assert extract_bearer_token(header) == expected


class TestRequestParams:

    def test_path_params_override_query(self):
        request = make_request(path_params={"customer_id": "43"}, query=b"customer_id=42&status=active")
        assert request_params(request) == {"customer_id": "43", "status": "active"}


class TestAuthorizer:

    @pytest.fixture
    def policy(self):
        return PermissionPolicy()

    @pytest.mark.asyncio
    async def test_no_route_is_404(self, policy):
        authorizer = Authorizer(RecordingVerifier(), policy)
        decision = await authorizer.authorize(make_request())
        assert not decision.allowed
        assert isinstance(decision.error, NotFoundError)

    @pytest.mark.asyncio
    @pytest.mark.parametrize("route", [RouteName.AUTH_LOGIN, RouteName.HEALTH_CHECK])
    async def test_public_routes_bypass(self, policy, route):
        verifier = RecordingVerifier()
        decision = await Authorizer(verifier, policy).authorize(make_request(route))
        assert decision.allowed
        assert verifier.calls == []

    @pytest.mark.asyncio
    async def test_missing_token_is_401(self, policy):
        verifier = RecordingVerifier()
        decision = await Authorizer(verifier, policy).authorize(make_request(RouteName.GET_CUSTOMER))
        assert isinstance(decision.error, AuthenticationError)
        assert verifier.calls == []

    @pytest.mark.asyncio
    async def test_forwards_token_route_and_params(self, policy):
        verifier = RecordingVerifier(verdict=Verdict(True, "user"))
        request = make_request(RouteName.GET_CUSTOMER, "Bearer tok", {"customer_id": "42"})

        decision = await Authorizer(verifier, policy).authorize(request)

        assert decision.allowed
        assert decision.role == "user"
        assert decision.route_name == RouteName.GET_CUSTOMER
        assert verifier.calls == [("tok", RouteName.GET_CUSTOMER, {"customer_id": "42"})]

    @pytest.mark.asyncio
    @pytest.mark.parametrize("error", [
        AuthenticationError("Unauthorized"),
        UnexpectedError("Error verifying token"),
        ServiceUnavailableError(),
    ])
    async def test_verifier_errors_pass_through(self, policy, error):
        authorizer = Authorizer(RecordingVerifier(error=error), policy)
        decision = await authorizer.authorize(make_request(RouteName.GET_CUSTOMER, "Bearer tok"))
        assert decision.error is error

    @pytest.mark.asyncio
    async def test_negative_verdict_is_403(self, policy):
        authorizer = Authorizer(RecordingVerifier(verdict=Verdict(False, "user")), policy)
        decision = await authorizer.authorize(make_request(RouteName.GET_CUSTOMER, "Bearer tok"))
        assert isinstance(decision.error, ForbiddenError)
        assert decision.role == "user"

    @pytest.mark.asyncio
    async def test_local_role_recheck_is_403(self, policy):
        authorizer = Authorizer(RecordingVerifier(verdict=Verdict(True, "guest")), policy)
        decision = await authorizer.authorize(make_request(RouteName.GET_CUSTOMER, "Bearer tok"))
        assert isinstance(decision.error, ForbiddenError)
        assert decision.error.message == "Insufficient permissions"

    @pytest.mark.asyncio
    async def test_call_raises_denial(self, policy):
        authorizer = Authorizer(RecordingVerifier(verdict=Verdict(False, "user")), policy)
        with pytest.raises(ForbiddenError):
            await authorizer(make_request(RouteName.GET_CUSTOMER, "Bearer tok"))

    @pytest.mark.asyncio
    async def test_call_records_decision_on_request(self, policy):
        authorizer = Authorizer(RecordingVerifier(verdict=Verdict(True, "admin")), policy)
        request = make_request(RouteName.GET_ALL_CUSTOMERS, "Bearer tok")
        decision = await authorizer(request)
        assert request.state.auth is decision
