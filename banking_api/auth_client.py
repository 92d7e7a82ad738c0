"""
Auth Service Client Module

How the main API reaches the auth service. Two strategies share one interface:

- AuthServiceClient talks to a separate auth service process over HTTP
- LocalVerifier calls an in-process AuthService directly

Callers only see Verdicts and AppErrors, so the authorization dependency does
not care which one it was given.
"""

import asyncio
import logging
import time
from abc import ABC, abstractmethod
from typing import Any, Dict, Mapping, Optional

import httpx

from .auth_service import AuthService, Verdict
from .errors import (
    AuthenticationError, ServiceUnavailableError, UnexpectedError, error_for_status
)
from .logging_config import token_prefix


logger = logging.getLogger("banking_api.auth_client")

RESERVED_VERIFY_PARAMS = ("token", "routeName")


def build_verify_params(token: str, route_name: str, params: Mapping[str, str]) -> Dict[str, str]:
    """Query parameters for a verification call; request params cannot shadow the reserved keys"""
    query = {key: str(value) for key, value in params.items() if key not in RESERVED_VERIFY_PARAMS}
    query["token"] = token
    query["routeName"] = route_name
    return query


class Verifier(ABC):
    """Interface of a verification strategy"""

    @abstractmethod
    async def verify(self, token: str, route_name: str, params: Mapping[str, str]) -> Verdict:
        pass

    @abstractmethod
    async def login(self, body: bytes) -> Dict[str, Any]:
        pass

    @abstractmethod
    async def health_check(self) -> bool:
        pass

    async def aclose(self) -> None:
        pass


class LocalVerifier(Verifier):
    """Verifies tokens against an AuthService living in the same process"""

    def __init__(self, auth_service: AuthService):
        self.auth_service = auth_service

    async def verify(self, token: str, route_name: str, params: Mapping[str, str]) -> Verdict:
        return self.auth_service.verify(token, route_name, params)

    async def login(self, body: bytes) -> Dict[str, Any]:
        # Password hashing is CPU bound; keep it off the event loop
        pair = await asyncio.to_thread(self.auth_service.login_from_body, body)
        return pair.to_dict()

    async def health_check(self) -> bool:
        return True


class AuthServiceClient(Verifier):
    """HTTP client for the auth service"""

    def __init__(
        self,
        base_url: str = "http://localhost:8181",
        timeout: float = 3.0,  # hard cap on every call, no retries
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self._client = httpx.AsyncClient(base_url=self.base_url, timeout=timeout, transport=transport)

    async def verify(self, token: str, route_name: str, params: Mapping[str, str]) -> Verdict:
        """
        Ask the auth service whether a token may call a route.

        Raises:
            ServiceUnavailableError: the auth service could not be reached
            UnexpectedError: timeout, transport failure or malformed response
            AuthenticationError: the auth service answered with a non-200 status
        """
        start = time.time()
        try:
            response = await self._client.get(
                "/auth/verify", params=build_verify_params(token, route_name, params)
            )
        except httpx.ConnectError as e:
            logger.error(f"Auth service unreachable at {self.base_url}: {e}")
            raise ServiceUnavailableError("Auth service unavailable") from e
        except httpx.HTTPError as e:
            logger.error(f"Auth service verification call failed: {e!r}")
            raise UnexpectedError("Error verifying token") from e

        latency_ms = (time.time() - start) * 1000
        if response.status_code != 200:
            logger.warning(
                f"Auth service rejected token (prefix {token_prefix(token)!r}) "
                f"for {route_name} with {response.status_code} in {latency_ms:.1f}ms"
            )
            raise AuthenticationError("Unauthorized")

        try:
            data = response.json()
        except ValueError as e:
            logger.error(f"Auth service returned a non-JSON verification body: {e}")
            raise UnexpectedError("Invalid response format") from e
        return Verdict.from_dict(data)

    async def login(self, body: bytes) -> Dict[str, Any]:
        """Forward a raw login body; error statuses come back as the matching AppError"""
        try:
            response = await self._client.post(
                "/auth/login", content=body, headers={"Content-Type": "application/json"}
            )
        except httpx.ConnectError as e:
            logger.error(f"Auth service unreachable at {self.base_url}: {e}")
            raise ServiceUnavailableError("Auth service unavailable") from e
        except httpx.HTTPError as e:
            logger.error(f"Auth service login call failed: {e!r}")
            raise UnexpectedError("Error during login") from e

        try:
            data = response.json()
        except ValueError as e:
            logger.error(f"Auth service returned a non-JSON login body ({response.status_code}): {e}")
            raise UnexpectedError("Invalid response format") from e

        if response.status_code != 200:
            message = data.get("error", "") if isinstance(data, dict) else ""
            raise error_for_status(response.status_code, message)
        if not isinstance(data, dict) or not isinstance(data.get("token"), str):
            raise UnexpectedError("Invalid response format")
        return data

    async def health_check(self) -> bool:
        """Check if the auth service is healthy"""
        try:
            response = await self._client.get("/health")
        except httpx.HTTPError as e:
            logger.debug(f"Auth service health check failed: {e!r}")
            return False
        return response.status_code == 200

    async def wait_until_ready(self, timeout: float = 10.0, interval: float = 0.2) -> None:
        """Poll /health until it answers; raises ServiceUnavailableError on deadline"""
        deadline = time.monotonic() + timeout
        while True:
            if await self.health_check():
                logger.info(f"Auth service at {self.base_url} is ready")
                return
            if time.monotonic() >= deadline:
                logger.error(f"Auth service at {self.base_url} not ready after {timeout}s")
                raise ServiceUnavailableError("Auth service unavailable")
            await asyncio.sleep(interval)

    async def aclose(self) -> None:
        """Close the HTTP client"""
        await self._client.aclose()
