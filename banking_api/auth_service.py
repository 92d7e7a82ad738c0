"""
Authentication Service Module

Login, token refresh, logout and token verification. The auth service process
exposes these over HTTP; the main API calls verify() either through the remote
verification protocol or, when both run in one process, directly.
"""

import json
import logging
from dataclasses import dataclass
from typing import Any, Dict, Mapping, Optional

from pydantic import BaseModel

from .credentials import CredentialStore, UserIdentity
from .errors import (
    AppError, AuthenticationError, BadRequestError, UnexpectedError, ValidationError
)
from .logging_config import log_action
from .permissions import PermissionPolicy
from .tokens import ACCESS_TOKEN, REFRESH_TOKEN, TokenClaims, TokenService


logger = logging.getLogger("banking_api.auth")


class LoginRequest(BaseModel):
    username: str = ""
    password: str = ""


@dataclass(frozen=True)
class TokenPair:
    """Tokens handed to a client; refresh_token is None when not reissued"""
    token: str
    refresh_token: Optional[str] = None

    def to_dict(self) -> Dict[str, str]:
        body = {"token": self.token}
        if self.refresh_token is not None:
            body["refreshToken"] = self.refresh_token
        return body


@dataclass(frozen=True)
class Verdict:
    """Result of a verification call; the only state crossing the process boundary"""
    is_authorized: bool
    role: str

    def to_dict(self) -> Dict[str, Any]:
        return {"isAuthorized": self.is_authorized, "role": self.role}

    @classmethod
    def from_dict(cls, data: Any) -> 'Verdict':
        """Parse a verification response body"""
        if not isinstance(data, dict):
            raise UnexpectedError("Invalid response format")
        is_authorized = data.get("isAuthorized")
        role = data.get("role")
        if not isinstance(is_authorized, bool) or not isinstance(role, str):
            raise UnexpectedError("Invalid response format")
        return cls(is_authorized=is_authorized, role=role)


class AuthService:
    """Credential authentication and token verification"""

    def __init__(self, store: CredentialStore, tokens: TokenService, policy: PermissionPolicy,
                 password_min_length: int = 6, rotate_refresh_tokens: bool = False):
        self.store = store
        self.tokens = tokens
        self.policy = policy
        self.password_min_length = password_min_length
        self.rotate_refresh_tokens = rotate_refresh_tokens

    # Login

    def login_from_body(self, raw_body: bytes) -> TokenPair:
        """Decode a JSON login body and log the user in"""
        try:
            payload = json.loads(raw_body or b"")
            request = LoginRequest.model_validate(payload)
        except (ValueError, TypeError) as e:
            # pydantic's ValidationError is a ValueError
            logger.warning(f"Invalid login request payload: {e}")
            raise BadRequestError("Invalid request payload") from e
        return self.login(request.username, request.password)

    def login(self, username: str, password: str) -> TokenPair:
        """
        Authenticate credentials and issue an access/refresh token pair.

        The refresh token is persisted before the pair is returned; if that
        fails the whole login fails.
        """
        self._validate_credentials_input(username, password)

        try:
            identity = self.store.find_user(username, password)
        except AuthenticationError:
            log_action(logger, "warning", "Login failed",
                       action="login_failed", resource="auth", extra={"username": username})
            raise AuthenticationError("Invalid credentials")

        access_token = self.tokens.issue_access_token(identity)
        refresh_token = self.tokens.issue_refresh_token(identity.username)
        try:
            self.store.save_refresh_token(refresh_token)
        except AppError as e:
            logger.error(f"Failed to save refresh token for {username!r}: {e.message}")
            raise UnexpectedError("Failed to save refresh token") from e

        log_action(logger, "info", "Successful login",
                   user_id=identity.username, action="login", resource="auth")
        return TokenPair(token=access_token, refresh_token=refresh_token)

    def _validate_credentials_input(self, username: str, password: str) -> None:
        if not username or not password:
            logger.warning(f"Missing required fields in login request (username={username!r})")
            raise ValidationError("Username and password are required")
        if len(password) < self.password_min_length:
            logger.warning(f"Password below minimum length in login request (username={username!r})")
            raise ValidationError(
                f"Insufficient password length, minimum {self.password_min_length} characters required"
            )

    # Refresh

    def refresh(self, refresh_token: str) -> TokenPair:
        """
        Mint a new access token from a refresh token.

        The token must still be on record (revocation wins over a valid
        signature), must be a valid, unexpired refresh token, and its user must
        still exist. Role and customer id come from the store, not the token.
        """
        if not refresh_token or not self.store.refresh_token_exists(refresh_token):
            log_action(logger, "warning", "Refresh token not on record",
                       action="refresh_failed", resource="auth")
            raise AuthenticationError("Invalid refresh token")

        try:
            claims = self.tokens.parse_and_validate(refresh_token, expected_type=REFRESH_TOKEN)
        except AuthenticationError as e:
            if e.message == "Token expired":
                raise AuthenticationError("Refresh token expired") from e
            raise AuthenticationError("Invalid refresh token") from e

        identity = self.store.get_user(claims.username)
        if identity is None:
            log_action(logger, "warning", "Refresh token belongs to an unknown user",
                       user_id=claims.username, action="refresh_failed", resource="auth")
            raise AuthenticationError("Invalid refresh token")

        access_token = self.tokens.issue_access_token(identity)
        new_refresh_token = None
        if self.rotate_refresh_tokens:
            new_refresh_token = self._rotate(refresh_token, identity)

        log_action(logger, "info", "Access token refreshed",
                   user_id=identity.username, action="refresh", resource="auth")
        return TokenPair(token=access_token, refresh_token=new_refresh_token)

    def _rotate(self, old_token: str, identity: UserIdentity) -> str:
        new_token = self.tokens.issue_refresh_token(identity.username)
        try:
            self.store.save_refresh_token(new_token)
            self.store.delete_refresh_token(old_token)
        except AppError as e:
            logger.error(f"Failed to rotate refresh token for {identity.username!r}: {e.message}")
            raise UnexpectedError("Failed to save refresh token") from e
        return new_token

    # Logout

    def logout(self, refresh_token: str) -> bool:
        """Revoke a refresh token; True when a record was removed"""
        if not refresh_token:
            raise ValidationError("Refresh token is required")
        removed = self.store.delete_refresh_token(refresh_token)
        log_action(logger, "info", "Refresh token revoked" if removed else "Refresh token already revoked",
                   action="logout", resource="auth")
        return removed

    # Verification

    def verify(self, token: str, route_name: str, params: Mapping[str, str]) -> Verdict:
        """
        Check an access token against a route.

        An invalid or expired token raises AuthenticationError; a valid token
        that is not allowed on the route yields a negative verdict.
        """
        claims = self.tokens.parse_and_validate(token, expected_type=ACCESS_TOKEN)
        is_authorized = self.authorize_claims(claims, route_name, params)
        return Verdict(is_authorized=is_authorized, role=claims.role or "")

    def authorize_claims(self, claims: TokenClaims, route_name: str, params: Mapping[str, str]) -> bool:
        """Role gating followed by the ownership rule for customer-scoped routes"""
        if not self.policy.is_authorized_for(claims.role, route_name):
            log_action(logger, "warning", "Role not permitted on route",
                       user_id=claims.username, action="authorize_denied", resource=route_name,
                       extra={"role": claims.role, "reason": "role"})
            return False

        if self.policy.requires_ownership(route_name) and not self.policy.check_ownership(
                claims.role, claims.customer_id, params):
            log_action(logger, "warning", "Customer ownership check failed",
                       user_id=claims.username, action="authorize_denied", resource=route_name,
                       extra={"role": claims.role, "reason": "ownership"})
            return False

        return True
