"""
Permission Policy Module

Role-scoped access control for the banking API. Every protected endpoint has a
stable symbolic route name; a role is allowed to call a route when the name is
listed under that role. Customer-scoped routes additionally require the caller
to own the customer record named in the route.

The policy is built once and passed explicitly to the services that enforce
it. It is read-only after construction, so concurrent readers need no locking.
"""

import logging
import threading
from types import MappingProxyType
from typing import Dict, FrozenSet, Iterable, List, Mapping, Optional


logger = logging.getLogger("banking_api.permissions")


class RouteName:
    """Symbolic route names shared by the main API and the auth service"""
    # Public routes
    AUTH_LOGIN = "AuthLogin"
    HEALTH_CHECK = "HealthCheck"

    # Customer routes
    GET_ALL_CUSTOMERS = "GetAllCustomers"
    GET_CUSTOMER = "GetCustomer"
    GET_CUSTOMER_ACCOUNTS = "GetCustomerAccounts"

    # Account routes
    NEW_ACCOUNT = "NewAccount"
    NEW_TRANSACTION = "NewTransaction"

    # Admin routes
    GET_ROLE_PERMISSIONS = "GetRolePermissions"

    # Auth service routes
    VERIFY_TOKEN = "VerifyToken"
    REFRESH_TOKEN = "RefreshToken"
    LOGOUT = "Logout"


ADMIN_ROLE = "admin"
USER_ROLE = "user"

# Routes reachable without a bearer token. Adding a route here is the only way
# to make it public.
PUBLIC_ROUTES: FrozenSet[str] = frozenset({
    RouteName.AUTH_LOGIN,
    RouteName.HEALTH_CHECK,
})

DEFAULT_ROLE_PERMISSIONS: Mapping[str, FrozenSet[str]] = MappingProxyType({
    ADMIN_ROLE: frozenset({
        RouteName.GET_ALL_CUSTOMERS,
        RouteName.GET_CUSTOMER,
        RouteName.GET_CUSTOMER_ACCOUNTS,
        RouteName.NEW_ACCOUNT,
        RouteName.NEW_TRANSACTION,
        RouteName.GET_ROLE_PERMISSIONS,
    }),
    USER_ROLE: frozenset({
        RouteName.GET_CUSTOMER,
        RouteName.GET_CUSTOMER_ACCOUNTS,
        RouteName.NEW_TRANSACTION,
    }),
})

CUSTOMER_SCOPED_ROUTES: FrozenSet[str] = frozenset({
    RouteName.GET_CUSTOMER,
    RouteName.GET_CUSTOMER_ACCOUNTS,
    RouteName.NEW_ACCOUNT,
    RouteName.NEW_TRANSACTION,
})

CUSTOMER_ID_PARAM = "customer_id"


def normalize_role(role: Optional[str]) -> str:
    """Roles compare case-insensitively and ignore surrounding whitespace"""
    return (role or "").strip().lower()


def _freeze(role_permissions: Mapping[str, Iterable[str]]) -> Mapping[str, FrozenSet[str]]:
    table: Dict[str, FrozenSet[str]] = {}
    for role, routes in role_permissions.items():
        normalized = normalize_role(role)
        table[normalized] = table.get(normalized, frozenset()) | frozenset(r.strip() for r in routes)
    return MappingProxyType(table)


class PermissionPolicy:
    """Role -> allowed route names, plus the customer ownership rule"""

    def __init__(self, role_permissions: Optional[Mapping[str, Iterable[str]]] = None,
                 customer_scoped_routes: Optional[Iterable[str]] = None,
                 admin_bypass: bool = True):
        source = DEFAULT_ROLE_PERMISSIONS if role_permissions is None else role_permissions
        self._table = _freeze(source)
        self._customer_scoped = frozenset(
            CUSTOMER_SCOPED_ROUTES if customer_scoped_routes is None else customer_scoped_routes
        )
        self.admin_bypass = admin_bypass
        self._rebuild_lock = threading.Lock()
        logger.info(f"Permission policy initialized with {len(self._table)} roles")

    def _permissions(self) -> Mapping[str, FrozenSet[str]]:
        table = self._table
        if not table:
            with self._rebuild_lock:
                if not self._table:
                    logger.warning("Role permission table is empty, restoring default permissions")
                    self._table = _freeze(DEFAULT_ROLE_PERMISSIONS)
                table = self._table
        return table

    def is_authorized_for(self, role: Optional[str], route_name: Optional[str]) -> bool:
        """Check whether a role may call a route"""
        normalized_role = normalize_role(role)
        normalized_route = (route_name or "").strip()
        table = self._permissions()

        if self.admin_bypass and normalized_role == ADMIN_ROLE:
            if normalized_route not in table.get(ADMIN_ROLE, frozenset()):
                logger.info(f"Emergency bypass for admin role on route {normalized_route!r}")
            return True

        routes = table.get(normalized_role)
        if routes is None:
            logger.warning(f"Role not found: {normalized_role!r}")
            return False

        if normalized_route not in routes:
            logger.warning(f"Permission not found for role {normalized_role!r} on route {normalized_route!r}")
            return False
        return True

    def requires_ownership(self, route_name: Optional[str]) -> bool:
        """Check whether a route only serves the caller's own customer record"""
        return (route_name or "").strip() in self._customer_scoped

    def check_ownership(self, role: Optional[str], claimed_customer_id: Optional[str],
                        route_params: Mapping[str, str]) -> bool:
        """
        Check that the caller owns the customer record addressed by the route.

        Admins are exempt. A caller without a customer id, or a request without
        a customer_id route parameter, is denied.
        """
        if normalize_role(role) == ADMIN_ROLE:
            return True

        if claimed_customer_id is None or str(claimed_customer_id) == "":
            logger.warning(f"Customer ID not found for role {normalize_role(role)!r}")
            return False

        requested = route_params.get(CUSTOMER_ID_PARAM)
        if requested is None or requested == "":
            logger.warning("Customer-scoped route called without a customer_id parameter")
            return False

        if str(claimed_customer_id) != str(requested):
            logger.warning(
                f"Permission denied - customer data access attempt "
                f"(requested {requested!r}, owner {claimed_customer_id!r})"
            )
            return False
        return True

    def get_all_permissions(self) -> List[str]:
        """Every route name granted to any role, de-duplicated"""
        routes = set()
        for granted in self._permissions().values():
            routes |= granted
        return sorted(routes)

    def as_dict(self) -> Dict[str, List[str]]:
        """Role -> sorted route names, for reporting"""
        return {role: sorted(routes) for role, routes in self._permissions().items()}

    @property
    def roles(self) -> List[str]:
        return sorted(self._permissions())
