"""
Server Launcher

Runs the auth service, the main API, or both in one event loop. When both run
together the auth service starts first and the main API only starts once the
auth service answers its health check; on shutdown the main API stops first
so in-flight verifications can drain.
"""

import asyncio
import logging
from typing import Optional

import uvicorn

from .api import create_app
from .auth_app import create_auth_app
from .auth_client import AuthServiceClient
from .config import BankingConfig, get_config
from .logging_config import setup_logging
from .system import AuthSystem, BankingSystem


logger = logging.getLogger("banking_api.server")

TARGETS = ("auth", "main", "all")


def _auth_server(config: BankingConfig) -> uvicorn.Server:
    app = create_auth_app(AuthSystem(config).auth_service)
    return uvicorn.Server(uvicorn.Config(
        app,
        host=config.auth_host,
        port=config.auth_port,
        log_level=config.log_level.lower(),
        timeout_graceful_shutdown=config.shutdown_grace_seconds,
    ))


def _main_server(config: BankingConfig) -> uvicorn.Server:
    app = create_app(BankingSystem(config))
    return uvicorn.Server(uvicorn.Config(
        app,
        host=config.api_host,
        port=config.api_port,
        log_level=config.log_level.lower(),
        timeout_graceful_shutdown=config.shutdown_grace_seconds,
    ))


async def _wait_for_auth(config: BankingConfig, auth_task: asyncio.Task) -> None:
    client = AuthServiceClient(config.auth_service_url, timeout=config.auth_verify_timeout)
    try:
        wait = asyncio.create_task(client.wait_until_ready(timeout=config.auth_startup_timeout))
        done, _ = await asyncio.wait({wait, auth_task}, return_when=asyncio.FIRST_COMPLETED)
        if auth_task in done:
            wait.cancel()
            raise RuntimeError("Auth service stopped during startup")
        wait.result()
    finally:
        await client.aclose()


async def serve_all(config: BankingConfig) -> None:
    """Auth service first, barrier on its health check, then the main API"""
    auth_server = _auth_server(config)
    auth_task = asyncio.create_task(auth_server.serve())
    try:
        await _wait_for_auth(config, auth_task)
        logger.info(f"Auth service ready, starting main API on {config.api_host}:{config.api_port}")
        await _main_server(config).serve()
    finally:
        auth_server.should_exit = True
        await auth_task
        logger.info("Auth service stopped")


def serve(target: str = "all", config: Optional[BankingConfig] = None) -> None:
    """
    Run one or both services until interrupted.

    Args:
        target: "auth", "main" or "all"
        config: Configuration; the process-wide instance when omitted
    """
    if target not in TARGETS:
        raise ValueError(f"Unknown target {target!r}, expected one of {', '.join(TARGETS)}")

    config = config or get_config()
    setup_logging(config.log_level, fmt=config.log_format, log_file=config.log_file)
    logger.info(f"Starting {target} (auth mode {config.auth_mode})")

    try:
        if target == "auth":
            asyncio.run(_auth_server(config).serve())
        elif target == "main":
            asyncio.run(_main_server(config).serve())
        else:
            asyncio.run(serve_all(config))
    except KeyboardInterrupt:
        logger.info("Interrupted")
    logger.info(f"Stopped {target}")
