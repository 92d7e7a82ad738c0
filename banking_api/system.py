"""
System wiring

Builds the collaborators of each service from a BankingConfig. Nothing here is
a module-level singleton: each application is created around its own system
object.
"""

import logging
from contextlib import asynccontextmanager
from datetime import timedelta
from typing import Optional

from .auth_client import AuthServiceClient, LocalVerifier, Verifier
from .auth_service import AuthService
from .authorization import Authorizer
from .banking import AccountRepository, CustomerRepository, seed_demo_customers
from .config import BankingConfig, get_config
from .credentials import StorageCredentialStore, seed_demo_users
from .permissions import PermissionPolicy
from .storage import StorageInterface, create_storage
from .tokens import TokenService


logger = logging.getLogger("banking_api.system")

AUTH_MODES = ("remote", "local")


def create_policy(config: BankingConfig) -> PermissionPolicy:
    return PermissionPolicy(admin_bypass=config.admin_emergency_bypass)


class AuthSystem:
    """Auth service collaborators: credential store, token service, policy"""

    def __init__(self, config: Optional[BankingConfig] = None,
                 storage: Optional[StorageInterface] = None):
        self.config = config or get_config()
        self.storage = storage or create_storage(self.config.database_url)
        self.credential_store = StorageCredentialStore(self.storage)
        self.token_service = TokenService(
            self.config.jwt_secret,
            algorithm=self.config.jwt_algorithm,
            access_ttl=timedelta(hours=self.config.access_token_expiry_hours),
            refresh_ttl=timedelta(days=self.config.refresh_token_expiry_days),
        )
        self.policy = create_policy(self.config)
        self.auth_service = AuthService(
            self.credential_store,
            self.token_service,
            self.policy,
            password_min_length=self.config.password_min_length,
            rotate_refresh_tokens=self.config.rotate_refresh_tokens,
        )

        if self.config.seed_demo_data:
            created = seed_demo_users(self.credential_store)
            if created:
                logger.info(f"Seeded {created} demo users")

    def close(self) -> None:
        self.storage.close()


class BankingSystem:
    """Main API collaborators: repositories, policy, verifier and authorizer"""

    def __init__(self, config: Optional[BankingConfig] = None,
                 storage: Optional[StorageInterface] = None,
                 verifier: Optional[Verifier] = None):
        self.config = config or get_config()
        if self.config.auth_mode not in AUTH_MODES:
            raise ValueError(f"Unsupported auth mode: {self.config.auth_mode}")

        self.storage = storage or create_storage(self.config.database_url)
        self.customers = CustomerRepository(self.storage)
        self.accounts = AccountRepository(self.storage, self.customers)
        self.policy = create_policy(self.config)
        self.auth_system: Optional[AuthSystem] = None
        self.verifier = verifier or self._create_verifier()
        self.authorizer = Authorizer(self.verifier, self.policy)

        if self.config.seed_demo_data:
            created = seed_demo_customers(self.customers)
            if created:
                logger.info(f"Seeded {created} demo customers")

    def _create_verifier(self) -> Verifier:
        """Create the verification strategy based on configuration"""
        if self.config.auth_mode == "local":
            # Users and refresh tokens live next to the banking data
            self.auth_system = AuthSystem(self.config, storage=self.storage)
            return LocalVerifier(self.auth_system.auth_service)

        return AuthServiceClient(
            base_url=self.config.auth_service_url,
            timeout=self.config.auth_verify_timeout,
        )

    @asynccontextmanager
    async def lifespan(self, app):
        """Wait for the auth service before serving; release the verifier afterwards"""
        if isinstance(self.verifier, AuthServiceClient) and self.config.wait_for_auth_service:
            await self.verifier.wait_until_ready(timeout=self.config.auth_startup_timeout)
        try:
            yield
        finally:
            await self.verifier.aclose()

    def close(self) -> None:
        self.storage.close()
