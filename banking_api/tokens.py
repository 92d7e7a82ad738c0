"""
Token Service Module

Issues and validates the signed bearer credentials used by the banking API:

- access tokens carry the caller's identity (username, role, customer id) and
  live for a fixed TTL; they are stateless and cannot be revoked
- refresh tokens carry only the username and live longer; the auth service also
  keeps a server-side record of each one so they can be revoked

Tokens are HMAC-signed JWTs. Only the configured HMAC algorithm is accepted on
the way in, whatever the token header claims.
"""

import logging
import secrets
from dataclasses import dataclass
from datetime import datetime, timezone, timedelta
from typing import Any, Callable, Dict, Optional

import jwt

from .credentials import UserIdentity
from .errors import AuthenticationError, UnexpectedError
from .logging_config import token_prefix


logger = logging.getLogger("banking_api.tokens")

ACCESS_TOKEN = "access"
REFRESH_TOKEN = "refresh"

HMAC_ALGORITHMS = ("HS256", "HS384", "HS512")


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class TokenClaims:
    """Validated token payload"""
    username: str
    token_type: str
    expires_at: datetime
    issued_at: Optional[datetime] = None
    role: Optional[str] = None
    customer_id: Optional[str] = None
    jti: Optional[str] = None

    def to_identity(self) -> UserIdentity:
        """Identity asserted by an access token"""
        return UserIdentity(username=self.username, role=self.role or "", customer_id=self.customer_id)


class TokenService:
    """Mints and validates access and refresh tokens"""

    def __init__(self, secret_key: str, algorithm: str = "HS256",
                 access_ttl: timedelta = timedelta(hours=24),
                 refresh_ttl: timedelta = timedelta(days=30),
                 clock: Callable[[], datetime] = utc_now):
        if not secret_key:
            raise ValueError("A signing secret is required")
        if algorithm not in HMAC_ALGORITHMS:
            raise ValueError(f"Unsupported signing algorithm: {algorithm}")
        self._secret_key = secret_key
        self.algorithm = algorithm
        self.access_ttl = access_ttl
        self.refresh_ttl = refresh_ttl
        self._clock = clock

    # Issuance

    def issue_access_token(self, identity: UserIdentity) -> str:
        """Create a signed access token for an identity"""
        now = self._clock()
        claims: Dict[str, Any] = {
            "username": identity.username,
            "role": identity.role,
            "type": ACCESS_TOKEN,
            "iat": int(now.timestamp()),
            "exp": int((now + self.access_ttl).timestamp()),
        }
        if identity.customer_id is not None:
            claims["customer_id"] = str(identity.customer_id)
        return self._sign(claims)

    def issue_refresh_token(self, username: str) -> str:
        """Create a signed refresh token; the caller persists it"""
        now = self._clock()
        claims = {
            "username": username,
            "type": REFRESH_TOKEN,
            "iat": int(now.timestamp()),
            "exp": int((now + self.refresh_ttl).timestamp()),
            "jti": secrets.token_hex(16),
        }
        return self._sign(claims)

    def _sign(self, claims: Dict[str, Any]) -> str:
        try:
            return jwt.encode(claims, self._secret_key, algorithm=self.algorithm)
        except (jwt.PyJWTError, TypeError, ValueError) as e:
            logger.error(f"Failed to sign {claims.get('type')} token: {e}")
            raise UnexpectedError("Error generating token") from e

    # Validation

    def parse_and_validate(self, token: str, expected_type: Optional[str] = None) -> TokenClaims:
        """
        Verify a token's signature and expiry and return its claims.

        Args:
            token: Encoded JWT
            expected_type: "access" or "refresh"; any type when None

        Raises:
            AuthenticationError: malformed token, wrong algorithm, bad signature,
                expired token or unusable claims
        """
        if not token:
            raise AuthenticationError("Token cannot be empty")

        try:
            payload = jwt.decode(
                token,
                self._secret_key,
                algorithms=[self.algorithm],
                options={"verify_exp": False, "verify_iat": False, "require": ["exp"]},
            )
        except jwt.InvalidAlgorithmError as e:
            logger.warning(f"Rejected token with unexpected signing algorithm (prefix {token_prefix(token)!r}): {e}")
            raise AuthenticationError("Invalid token") from e
        except jwt.InvalidTokenError as e:
            logger.warning(f"Failed to parse token (prefix {token_prefix(token)!r}): {e}")
            raise AuthenticationError("Invalid token") from e

        claims = self._claims_from_payload(payload)

        if self._is_past(claims.expires_at):
            raise AuthenticationError("Token expired")

        if expected_type and claims.token_type != expected_type:
            logger.warning(f"Expected {expected_type} token, got {claims.token_type}")
            raise AuthenticationError("Invalid token")

        return claims

    def is_expired(self, token: str) -> bool:
        """True when a correctly signed token is past its expiry"""
        try:
            self.parse_and_validate(token)
        except AuthenticationError as e:
            return e.message == "Token expired"
        return False

    def _is_past(self, moment: datetime) -> bool:
        return moment <= self._clock()

    @staticmethod
    def _claims_from_payload(payload: Dict[str, Any]) -> TokenClaims:
        username = payload.get("username")
        token_type = payload.get("type", ACCESS_TOKEN)
        exp = payload.get("exp")
        role = payload.get("role")
        customer_id = payload.get("customer_id")

        if not isinstance(username, str) or not username:
            raise AuthenticationError("Invalid token claims")
        if not isinstance(exp, (int, float)) or isinstance(exp, bool):
            raise AuthenticationError("Invalid token claims")
        if token_type == ACCESS_TOKEN and (not isinstance(role, str) or not role):
            raise AuthenticationError("Invalid token claims")

        iat = payload.get("iat")
        return TokenClaims(
            username=username,
            token_type=token_type,
            expires_at=datetime.fromtimestamp(exp, tz=timezone.utc),
            issued_at=datetime.fromtimestamp(iat, tz=timezone.utc) if isinstance(iat, (int, float)) else None,
            role=role,
            customer_id=str(customer_id) if customer_id is not None else None,
            jti=payload.get("jti"),
        )
