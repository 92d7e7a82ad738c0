"""
Integration tests for the main API verifying tokens through the auth service
over the remote verification protocol
"""

import httpx
import pytest
from fastapi.testclient import TestClient

from banking_api.api import create_app
from banking_api.auth_app import create_auth_app
from banking_api.auth_client import AuthServiceClient
from banking_api.system import AuthSystem, BankingSystem

from tests.conftest import make_config


def remote_client(transport) -> TestClient:
    verifier = AuthServiceClient("http://auth.test", timeout=1.0, transport=transport)
    system = BankingSystem(make_config(auth_mode="remote", wait_for_auth_service=False), verifier=verifier)
    return TestClient(create_app(system), raise_server_exceptions=False)


@pytest.fixture
def auth_app():
    return create_auth_app(AuthSystem(make_config(auth_mode="remote")).auth_service)


@pytest.fixture
def client(auth_app):
    verifier = AuthServiceClient("http://auth.test", transport=httpx.ASGITransport(app=auth_app))
    system = BankingSystem(make_config(auth_mode="remote", wait_for_auth_service=True), verifier=verifier)
    with TestClient(create_app(system), raise_server_exceptions=False) as client:
        yield client


def bearer(token):
    return {"Authorization": f"Bearer {token}"}


class TestRemoteVerification:
    """Same observable behavior as in-process verification"""

    def test_login_through_main_api(self, client):
        r = client.post("/auth/login", json={"username": "alice", "password": "secret1"})
        assert r.status_code == 200
        assert set(r.json()) == {"token", "refreshToken"}

    def test_login_error_passed_through(self, client):
        r = client.post("/auth/login", json={"username": "alice", "password": "wrong-password"})
        assert r.status_code == 401
        assert r.json() == {"error": "Invalid credentials"}

    def test_end_to_end_scenario(self, client):
        token = client.post("/auth/login", json={"username": "alice", "password": "secret1"}).json()["token"]

        assert client.get("/customers/42", headers=bearer(token)).status_code == 200
        assert client.get("/customers/99", headers=bearer(token)).status_code == 403
        assert client.get("/customers", headers=bearer(token)).status_code == 403

    def test_admin(self, client):
        token = client.post("/auth/login", json={"username": "admin", "password": "admin123"}).json()["token"]
        assert client.get("/customers", headers=bearer(token)).status_code == 200
        assert client.get("/customers/43", headers=bearer(token)).status_code == 200

    def test_invalid_token_is_401(self, client):
        r = client.get("/customers/42", headers=bearer("garbage"))
        assert r.status_code == 401
        assert r.json() == {"error": "Unauthorized"}

    def test_query_params_cannot_override_route_name(self, client):
        token = client.post("/auth/login", json={"username": "alice", "password": "secret1"}).json()["token"]
        r = client.get("/customers/43", params={"routeName": "GetCustomer", "customer_id": "42"},
                       headers=bearer(token))
        assert r.status_code == 403


class TestAuthServiceFailures:

    def test_unreachable_auth_service_is_503(self):
        def handler(request):
            raise httpx.ConnectError("connection refused", request=request)

        client = remote_client(httpx.MockTransport(handler))
        r = client.get("/customers/42", headers=bearer("abc"))
        assert r.status_code == 503
        assert r.json() == {"error": "Auth service unavailable"}

    def test_timeout_is_500_with_generic_message(self):
        def handler(request):
            raise httpx.ReadTimeout("read timed out after 1.0s", request=request)

        client = remote_client(httpx.MockTransport(handler))
        r = client.get("/customers/42", headers=bearer("abc"))
        assert r.status_code == 500
        assert r.json() == {"error": "Error verifying token"}

    def test_protocol_violation_is_500(self):
        client = remote_client(httpx.MockTransport(lambda request: httpx.Response(200, json={"ok": True})))
        r = client.get("/customers/42", headers=bearer("abc"))
        assert r.status_code == 500
        assert r.json() == {"error": "Invalid response format"}

    def test_verdict_role_rechecked_locally(self):
        """An authorized verdict for a role the local policy does not grant is still forbidden"""
        client = remote_client(httpx.MockTransport(
            lambda request: httpx.Response(200, json={"isAuthorized": True, "role": "user"})
        ))
        r = client.get("/customers", headers=bearer("abc"))
        assert r.status_code == 403

    def test_public_routes_skip_verification(self):
        def handler(request):
            raise AssertionError("verification must not be called")

        client = remote_client(httpx.MockTransport(handler))
        assert client.get("/health").status_code == 200
