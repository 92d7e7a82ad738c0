"""
Tests for the auth service client and the in-process verifier
"""

import asyncio
import json
import time

import httpx
import pytest

from banking_api.auth_client import AuthServiceClient, LocalVerifier, build_verify_params
from banking_api.auth_service import AuthService, Verdict
from banking_api.errors import (
    AuthenticationError, ServiceUnavailableError, UnexpectedError, ValidationError
)
from banking_api.permissions import RouteName


def client_with(handler, timeout: float = 3.0) -> AuthServiceClient:
    return AuthServiceClient("http://auth.test", timeout=timeout, transport=httpx.MockTransport(handler))


class TestBuildVerifyParams:

    def test_reserved_keys_cannot_be_shadowed(self):
        params = build_verify_params("real-token", "GetCustomer", {
            "customer_id": "42",
            "token": "attacker-token",
            "routeName": "GetAllCustomers",
        })
        assert params == {"customer_id": "42", "token": "real-token", "routeName": "GetCustomer"}


class TestAuthServiceClientVerify:

    def test_client_initialization(self):
        client = AuthServiceClient("http://localhost:8181/", timeout=2.5)
        assert client.base_url == "http://localhost:8181"
        assert client.timeout == 2.5

    @pytest.mark.asyncio
    async def test_verify_sends_token_route_and_params(self):
        seen = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen["path"] = request.url.path
            seen["params"] = dict(request.url.params)
            return httpx.Response(200, json={"isAuthorized": True, "role": "user"})

        client = client_with(handler)
        verdict = await client.verify("abc", RouteName.GET_CUSTOMER, {"customer_id": "42"})
        await client.aclose()

        assert verdict == Verdict(is_authorized=True, role="user")
        assert seen["path"] == "/auth/verify"
        assert seen["params"] == {"token": "abc", "routeName": "GetCustomer", "customer_id": "42"}

    @pytest.mark.asyncio
    async def test_negative_verdict_is_not_an_error(self):
        client = client_with(lambda request: httpx.Response(200, json={"isAuthorized": False, "role": "user"}))
        verdict = await client.verify("abc", RouteName.GET_ALL_CUSTOMERS, {})
        await client.aclose()
        assert verdict.is_authorized is False

    @pytest.mark.asyncio
    @pytest.mark.parametrize("status_code", [400, 401, 403, 404, 500, 502])
    async def test_non_200_maps_to_unauthorized(self, status_code):
        client = client_with(lambda request: httpx.Response(status_code, json={"error": "nope"}))
        with pytest.raises(AuthenticationError) as exc_info:
            await client.verify("abc", RouteName.GET_CUSTOMER, {"customer_id": "42"})
        await client.aclose()
        assert exc_info.value.status_code == 401
        assert exc_info.value.message == "Unauthorized"

    @pytest.mark.asyncio
    @pytest.mark.parametrize("body", [
        b"not json",
        b"[]",
        b'{"isAuthorized": "yes", "role": "user"}',
        b'{"isAuthorized": true}',
    ])
    async def test_bad_response_format(self, body):
        client = client_with(lambda request: httpx.Response(200, content=body))
        with pytest.raises(UnexpectedError) as exc_info:
            await client.verify("abc", RouteName.GET_CUSTOMER, {})
        await client.aclose()
        assert exc_info.value.status_code == 500
        assert exc_info.value.message == "Invalid response format"

    @pytest.mark.asyncio
    async def test_timeout_maps_to_500(self):
        def handler(request):
            raise httpx.ReadTimeout("timed out", request=request)

        client = client_with(handler)
        with pytest.raises(UnexpectedError) as exc_info:
            await client.verify("abc", RouteName.GET_CUSTOMER, {})
        await client.aclose()

        assert exc_info.value.status_code == 500
        assert exc_info.value.message == "Error verifying token"
        assert "timed out" not in exc_info.value.message

    @pytest.mark.asyncio
    async def test_connection_refused_maps_to_503(self):
        def handler(request):
            raise httpx.ConnectError("connection refused", request=request)

        client = client_with(handler)
        with pytest.raises(ServiceUnavailableError) as exc_info:
            await client.verify("abc", RouteName.GET_CUSTOMER, {})
        await client.aclose()
        assert exc_info.value.status_code == 503

    @pytest.mark.asyncio
    async def test_hanging_auth_service_bounded_by_timeout(self):
        """A server that accepts but never answers must not hold the caller past the timeout"""
        release = asyncio.Event()

        async def never_answer(reader, writer):
            await release.wait()
            writer.close()

        server = await asyncio.start_server(never_answer, "127.0.0.1", 0)
        port = server.sockets[0].getsockname()[1]
        client = AuthServiceClient(f"http://127.0.0.1:{port}", timeout=0.3)

        start = time.monotonic()
        try:
            with pytest.raises(UnexpectedError) as exc_info:
                await client.verify("abc", RouteName.GET_CUSTOMER, {"customer_id": "42"})
        finally:
            await client.aclose()
            release.set()
            server.close()

        assert time.monotonic() - start < 2.0
        assert exc_info.value.status_code == 500


class TestAuthServiceClientLogin:

    @pytest.mark.asyncio
    async def test_login_success(self):
        def handler(request):
            assert request.method == "POST"
            assert json.loads(request.content) == {"username": "alice", "password": "secret1"}
            return httpx.Response(200, json={"token": "t", "refreshToken": "r"})

        client = client_with(handler)
        data = await client.login(b'{"username": "alice", "password": "secret1"}')
        await client.aclose()
        assert data == {"token": "t", "refreshToken": "r"}

    @pytest.mark.asyncio
    @pytest.mark.parametrize("status_code,error_cls", [
        (401, AuthenticationError),
        (422, ValidationError),
        (503, ServiceUnavailableError),
    ])
    async def test_login_errors_keep_status_and_message(self, status_code, error_cls):
        client = client_with(lambda request: httpx.Response(status_code, json={"error": "Invalid credentials"}))
        with pytest.raises(error_cls) as exc_info:
            await client.login(b"{}")
        await client.aclose()
        assert exc_info.value.status_code == status_code
        assert exc_info.value.message == "Invalid credentials"

    @pytest.mark.asyncio
    async def test_login_unreachable(self):
        def handler(request):
            raise httpx.ConnectError("connection refused", request=request)

        client = client_with(handler)
        with pytest.raises(ServiceUnavailableError):
            await client.login(b"{}")
        await client.aclose()


class TestHealth:

    @pytest.mark.asyncio
    async def test_health_check(self):
        client = client_with(lambda request: httpx.Response(200, json={"status": "healthy"}))
        assert await client.health_check() is True
        await client.aclose()

    @pytest.mark.asyncio
    async def test_health_check_unreachable(self):
        def handler(request):
            raise httpx.ConnectError("connection refused", request=request)

        client = client_with(handler)
        assert await client.health_check() is False
        await client.aclose()

    @pytest.mark.asyncio
    async def test_wait_until_ready_polls(self):
        calls = []

        def handler(request):
            calls.append(request.url.path)
            if len(calls) < 3:
                raise httpx.ConnectError("connection refused", request=request)
            return httpx.Response(200, json={"status": "healthy"})

        client = client_with(handler)
        await client.wait_until_ready(timeout=5.0, interval=0.01)
        await client.aclose()
        assert calls == ["/health"] * 3

    @pytest.mark.asyncio
    async def test_wait_until_ready_deadline(self):
        client = client_with(lambda request: httpx.Response(503))
        with pytest.raises(ServiceUnavailableError):
            await client.wait_until_ready(timeout=0.05, interval=0.01)
        await client.aclose()


class TestLocalVerifier:

    @pytest.fixture
    def verifier(self, credential_store, token_service, policy):
        return LocalVerifier(AuthService(credential_store, token_service, policy))

    @pytest.mark.asyncio
    async def test_local_verify_matches_service(self, verifier):
        data = await verifier.login(b'{"username": "alice", "password": "secret1"}')

        allowed = await verifier.verify(data["token"], RouteName.GET_CUSTOMER, {"customer_id": "42"})
        denied = await verifier.verify(data["token"], RouteName.GET_CUSTOMER, {"customer_id": "43"})

        assert allowed == Verdict(True, "user")
        assert denied == Verdict(False, "user")
        assert await verifier.health_check() is True

    @pytest.mark.asyncio
    async def test_local_verify_invalid_token(self, verifier):
        with pytest.raises(AuthenticationError):
            await verifier.verify("garbage", RouteName.GET_CUSTOMER, {"customer_id": "42"})
