"""
Banking API Application Factory

Every route carries a RouteName; the app-level Authorizer dependency uses it
as the permission key, so a route without an entry in the policy is only
reachable by admins (or nobody, with the admin bypass disabled).
"""

from typing import List, Optional

from fastapi import APIRouter, Depends, FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from . import __version__
from .errors import register_error_handlers, request_validation_handler
from .permissions import RouteName
from .schemas import (
    AccountResponse,
    CustomerResponse,
    NewAccountRequest,
    NewAccountResponse,
    PermissionsResponse,
    TokenResponse,
    TransactionRequest,
    TransactionResponse,
)
from .system import BankingSystem


def get_banking_system(request: Request) -> BankingSystem:
    return request.app.state.system


auth_router = APIRouter()
customers_router = APIRouter()
admin_router = APIRouter()


@auth_router.post("/login", name=RouteName.AUTH_LOGIN, response_model=TokenResponse,
                  response_model_exclude_none=True)
async def login(request: Request, system: BankingSystem = Depends(get_banking_system)):
    """Log in through the auth service"""
    body = await request.body()
    return await system.verifier.login(body)


@customers_router.get("", name=RouteName.GET_ALL_CUSTOMERS, response_model=List[CustomerResponse])
async def get_all_customers(
    status: Optional[str] = None,
    system: BankingSystem = Depends(get_banking_system)
):
    """List customers, optionally filtered by status"""
    customers = system.customers.list_customers(status)
    return [CustomerResponse.from_customer(customer) for customer in customers]


@customers_router.get("/{customer_id}", name=RouteName.GET_CUSTOMER, response_model=CustomerResponse)
async def get_customer(
    customer_id: str,
    system: BankingSystem = Depends(get_banking_system)
):
    """Get customer by ID"""
    return CustomerResponse.from_customer(system.customers.get_customer(customer_id))


@customers_router.get("/{customer_id}/accounts", name=RouteName.GET_CUSTOMER_ACCOUNTS,
                      response_model=List[AccountResponse])
async def get_customer_accounts(
    customer_id: str,
    system: BankingSystem = Depends(get_banking_system)
):
    """List a customer's accounts"""
    accounts = system.accounts.list_accounts(customer_id)
    return [AccountResponse.from_account(account) for account in accounts]


@customers_router.post("/{customer_id}/account", name=RouteName.NEW_ACCOUNT,
                       response_model=NewAccountResponse, status_code=status.HTTP_201_CREATED)
async def new_account(
    customer_id: str,
    request: NewAccountRequest,
    system: BankingSystem = Depends(get_banking_system)
):
    """Open an account for a customer"""
    account = system.accounts.open_account(customer_id, request.account_type, request.amount)
    return NewAccountResponse(account_id=account.id)


@customers_router.post("/{customer_id}/account/{account_id}", name=RouteName.NEW_TRANSACTION,
                       response_model=TransactionResponse, status_code=status.HTTP_201_CREATED)
async def new_transaction(
    customer_id: str,
    account_id: str,
    request: TransactionRequest,
    system: BankingSystem = Depends(get_banking_system)
):
    """Deposit into or withdraw from a customer's account"""
    transaction = system.accounts.make_transaction(
        customer_id, account_id, request.amount, request.transaction_type
    )
    return TransactionResponse.from_transaction(transaction)


@admin_router.get("/permissions", name=RouteName.GET_ROLE_PERMISSIONS, response_model=PermissionsResponse)
async def get_role_permissions(system: BankingSystem = Depends(get_banking_system)):
    """Every permission granted to any role"""
    return PermissionsResponse(
        permissions=system.policy.get_all_permissions(),
        roles=system.policy.as_dict(),
    )


def create_app(system: Optional[BankingSystem] = None) -> FastAPI:
    """Create and configure the main banking application"""
    system = system or BankingSystem()

    # No docs or schema routes: only PUBLIC_ROUTES bypass authorization
    app = FastAPI(
        title="Banking API",
        description="Customers, accounts and transactions behind token-based authorization",
        version=__version__,
        lifespan=system.lifespan,
        dependencies=[Depends(system.authorizer)],
        docs_url=None,
        redoc_url=None,
        openapi_url=None,
    )
    app.state.system = system
    register_error_handlers(app)

    async def authorize_then_reject(request: Request, exc: RequestValidationError) -> JSONResponse:
        # A body that fails to decode is rejected before dependencies run
        decision = getattr(request.state, "auth", None)
        if decision is None:
            decision = await system.authorizer.authorize(request)
        if not decision.allowed:
            return JSONResponse(status_code=decision.error.status_code, content=decision.error.as_message())
        return await request_validation_handler(request, exc)

    app.add_exception_handler(RequestValidationError, authorize_then_reject)

    app.include_router(auth_router, prefix="/auth", tags=["Auth"])
    app.include_router(customers_router, prefix="/customers", tags=["Customers"])
    app.include_router(admin_router, tags=["Admin"])

    @app.get("/health", name=RouteName.HEALTH_CHECK)
    async def health_check():
        """Health check endpoint"""
        return {
            "status": "healthy",
            "service": "banking_api",
            "version": __version__,
        }

    return app
