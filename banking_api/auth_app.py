"""
Auth Service Application Factory
"""

from fastapi import FastAPI, Request
from starlette.concurrency import run_in_threadpool

from . import __version__
from .auth_service import AuthService
from .errors import register_error_handlers
from .permissions import RouteName
from .schemas import LogoutRequest, TokenResponse, VerifyResponse


VERIFY_RESERVED_PARAMS = ("token", "routeName")


def create_auth_app(service: AuthService) -> FastAPI:
    """Create the auth service application around an AuthService"""
    app = FastAPI(
        title="Banking Auth Service",
        description="Login, token refresh and token verification for the banking API",
        version=__version__,
    )
    app.state.auth_service = service
    register_error_handlers(app)

    @app.post("/auth/login", name=RouteName.AUTH_LOGIN, response_model=TokenResponse,
              response_model_exclude_none=True)
    async def login(request: Request):
        """Exchange credentials for an access/refresh token pair"""
        body = await request.body()
        pair = await run_in_threadpool(service.login_from_body, body)
        return pair.to_dict()

    @app.get("/auth/verify", name=RouteName.VERIFY_TOKEN, response_model=VerifyResponse)
    async def verify(request: Request):
        """
        Verify an access token for a route.

        Answers 200 whenever verification ran, including when the caller is
        not authorized; a non-200 answer means the token itself was rejected.
        """
        query = request.query_params
        params = {key: value for key, value in query.items() if key not in VERIFY_RESERVED_PARAMS}
        verdict = service.verify(query.get("token", ""), query.get("routeName", ""), params)
        return verdict.to_dict()

    @app.get("/auth/refresh", name=RouteName.REFRESH_TOKEN, response_model=TokenResponse,
             response_model_exclude_none=True)
    async def refresh(token: str = ""):
        """Mint a new access token from a refresh token"""
        pair = await run_in_threadpool(service.refresh, token)
        return pair.to_dict()

    @app.post("/auth/logout", name=RouteName.LOGOUT)
    async def logout(request: LogoutRequest):
        """Revoke a refresh token"""
        await run_in_threadpool(service.logout, request.refresh_token)
        return {"message": "Logged out"}

    @app.get("/health", name=RouteName.HEALTH_CHECK)
    async def health_check():
        """Health check endpoint"""
        return {
            "status": "healthy",
            "service": "banking_auth_service",
            "version": __version__,
        }

    return app
