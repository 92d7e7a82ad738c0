"""
Credential Store Module

Users, password verification and the revocable refresh-token records consumed
by the auth service. The auth service only depends on the CredentialStore
interface; StorageCredentialStore implements it over a StorageInterface.
"""

import hashlib
import logging
import secrets
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Optional

from .errors import AuthenticationError, UnexpectedError, ValidationError
from .storage import StorageInterface


logger = logging.getLogger("banking_api.credentials")

USERS_TABLE = "users"
REFRESH_TOKENS_TABLE = "refresh_tokens"


@dataclass(frozen=True)
class UserIdentity:
    """Who a caller is; customer_id is None for staff and admin accounts"""
    username: str
    role: str
    customer_id: Optional[str] = None


class CredentialStore(ABC):
    """Source of truth for users and refresh-token records"""

    @abstractmethod
    def find_user(self, username: str, password: str) -> UserIdentity:
        """
        Look up a user by credentials.

        Raises AuthenticationError("Invalid credentials") for an unknown user
        and for a wrong password alike.
        """
        pass

    @abstractmethod
    def get_user(self, username: str) -> Optional[UserIdentity]:
        """Current identity for a username, or None"""
        pass

    @abstractmethod
    def save_refresh_token(self, refresh_token: str) -> None:
        pass

    @abstractmethod
    def refresh_token_exists(self, refresh_token: str) -> bool:
        pass

    @abstractmethod
    def delete_refresh_token(self, refresh_token: str) -> bool:
        pass


def _token_key(refresh_token: str) -> str:
    # Records are keyed by digest so raw refresh tokens are never persisted
    return hashlib.sha256(refresh_token.encode()).hexdigest()


class StorageCredentialStore(CredentialStore):
    """Credential store backed by a StorageInterface"""

    def __init__(self, storage: StorageInterface):
        self.storage = storage
        # Unknown usernames are checked against this so both failure paths hash once
        self._dummy_salt = secrets.token_hex(16)
        self._dummy_hash = self._hash_password(secrets.token_hex(16), self._dummy_salt)

    # Users

    def create_user(self, username: str, password: str, role: str,
                    customer_id: Optional[str] = None) -> UserIdentity:
        """Register a user with a salted password hash"""
        if not username or not password or not role:
            raise ValidationError("Username, password and role are required")
        if self._call(self.storage.exists, USERS_TABLE, username):
            raise ValidationError(f"User with username {username} already exists")

        salt = self._generate_salt()
        self._call(self.storage.save, USERS_TABLE, username, {
            "username": username,
            "role": role,
            "customer_id": str(customer_id) if customer_id is not None else None,
            "password_hash": self._hash_password(password, salt),
            "password_salt": salt,
            "created_on": datetime.now(timezone.utc).isoformat(),
        })
        logger.info(f"Created user {username!r} with role {role!r}")
        return UserIdentity(username=username, role=role,
                            customer_id=str(customer_id) if customer_id is not None else None)

    def find_user(self, username: str, password: str) -> UserIdentity:
        data = self._call(self.storage.load, USERS_TABLE, username)

        if data is None:
            secrets.compare_digest(self._hash_password(password, self._dummy_salt), self._dummy_hash)
            logger.warning(f"Invalid credentials for username {username!r}")
            raise AuthenticationError("Invalid credentials")

        candidate = self._hash_password(password, data.get("password_salt", ""))
        if not secrets.compare_digest(candidate, data.get("password_hash", "")):
            logger.warning(f"Invalid credentials for username {username!r}")
            raise AuthenticationError("Invalid credentials")

        return self._identity(data)

    def get_user(self, username: str) -> Optional[UserIdentity]:
        data = self._call(self.storage.load, USERS_TABLE, username)
        return self._identity(data) if data else None

    # Refresh tokens

    def save_refresh_token(self, refresh_token: str) -> None:
        self._call(self.storage.save, REFRESH_TOKENS_TABLE, _token_key(refresh_token), {
            "created_on": datetime.now(timezone.utc).isoformat(),
        })

    def refresh_token_exists(self, refresh_token: str) -> bool:
        return self._call(self.storage.exists, REFRESH_TOKENS_TABLE, _token_key(refresh_token))

    def delete_refresh_token(self, refresh_token: str) -> bool:
        return self._call(self.storage.delete, REFRESH_TOKENS_TABLE, _token_key(refresh_token))

    # Helpers

    @staticmethod
    def _identity(data: dict) -> UserIdentity:
        customer_id = data.get("customer_id")
        return UserIdentity(
            username=data["username"],
            role=data["role"],
            customer_id=str(customer_id) if customer_id is not None else None,
        )

    @staticmethod
    def _call(operation, *args):
        try:
            return operation(*args)
        except Exception as e:
            logger.error(f"Credential storage failure in {operation.__name__}: {e}", exc_info=True)
            raise UnexpectedError("Unexpected database error") from e

    @staticmethod
    def _generate_salt() -> str:
        return secrets.token_hex(16)

    @staticmethod
    def _hash_password(password: str, salt: str) -> str:
        """Hash password with salt using scrypt"""
        return hashlib.scrypt(
            password.encode(),
            salt=salt.encode(),
            n=16384, r=8, p=1
        ).hex()


DEMO_USERS = (
    ("admin", "admin123", "admin", None),
    ("alice", "secret1", "user", "42"),
)


def seed_demo_users(store: StorageCredentialStore) -> int:
    """Create the demo users that do not exist yet; returns how many were added"""
    created = 0
    for username, password, role, customer_id in DEMO_USERS:
        if store.get_user(username) is None:
            store.create_user(username, password, role, customer_id)
            created += 1
    return created
