"""
Authorization Dependency

Runs once per request on the main API, after routing and before the handler:

    route resolved -> allow-list -> bearer token -> verification -> role check -> handler

Verification is delegated to a Verifier (remote auth service or in-process),
which also applies the customer ownership rule. The returned role is then
checked again against the local permission policy, so a main API never serves
a route its own policy does not grant.
"""

import logging
from dataclasses import dataclass
from typing import Dict, Optional

from fastapi import Request

from .auth_client import Verifier
from .errors import AppError, AuthenticationError, ForbiddenError, NotFoundError
from .logging_config import log_action
from .permissions import PUBLIC_ROUTES, PermissionPolicy


logger = logging.getLogger("banking_api.authorization")

BEARER_SCHEME = "bearer"


@dataclass
class Decision:
    """Outcome of authorizing one request"""
    allowed: bool
    route_name: Optional[str] = None
    role: Optional[str] = None
    error: Optional[AppError] = None

    @classmethod
    def allow(cls, route_name: str, role: Optional[str] = None) -> 'Decision':
        return cls(allowed=True, route_name=route_name, role=role)

    @classmethod
    def deny(cls, error: AppError, route_name: Optional[str] = None,
             role: Optional[str] = None) -> 'Decision':
        return cls(allowed=False, route_name=route_name, role=role, error=error)


def extract_bearer_token(header: Optional[str]) -> Optional[str]:
    """Token from an 'Authorization: Bearer <token>' header, or None"""
    if not header:
        return None
    scheme, _, token = header.strip().partition(" ")
    if scheme.lower() != BEARER_SCHEME:
        return None
    token = token.strip()
    return token or None


def request_params(request: Request) -> Dict[str, str]:
    """Query parameters overlaid with path parameters"""
    params = dict(request.query_params)
    params.update({key: str(value) for key, value in request.path_params.items()})
    return params


class Authorizer:
    """FastAPI dependency enforcing authentication and role permissions"""

    def __init__(self, verifier: Verifier, policy: PermissionPolicy):
        self.verifier = verifier
        self.policy = policy

    async def __call__(self, request: Request) -> Decision:
        decision = await self.authorize(request)
        if not decision.allowed:
            raise decision.error
        request.state.auth = decision
        return decision

    async def authorize(self, request: Request) -> Decision:
        route = request.scope.get("route")
        route_name = getattr(route, "name", None)
        if not route_name:
            logger.warning(f"No route resolved for {request.method} {request.url.path}")
            return Decision.deny(NotFoundError("Route not found"))

        if route_name in PUBLIC_ROUTES:
            return Decision.allow(route_name)

        token = extract_bearer_token(request.headers.get("Authorization"))
        if token is None:
            log_action(logger, "warning", "Missing or malformed bearer token",
                       action="authorize_denied", resource=route_name)
            return Decision.deny(AuthenticationError("Unauthorized"), route_name)

        try:
            verdict = await self.verifier.verify(token, route_name, request_params(request))
        except AppError as e:
            return Decision.deny(e, route_name)

        if not verdict.is_authorized:
            log_action(logger, "warning", "Token not authorized for route",
                       action="authorize_denied", resource=route_name, extra={"role": verdict.role})
            return Decision.deny(ForbiddenError("Insufficient permissions"), route_name, verdict.role)

        if not self.policy.is_authorized_for(verdict.role, route_name):
            log_action(logger, "warning", "Role not permitted by local policy",
                       action="authorize_denied", resource=route_name, extra={"role": verdict.role})
            return Decision.deny(ForbiddenError("Insufficient permissions"), route_name, verdict.role)

        return Decision.allow(route_name, verdict.role)
