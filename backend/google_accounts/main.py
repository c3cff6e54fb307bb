"""
FastAPI application for the Google account service.

Run with:
    uvicorn --factory google_accounts.main:create_app
"""

import logging
from contextlib import asynccontextmanager
from typing import Optional

import httpx
from fastapi import FastAPI
from sqlalchemy.orm import sessionmaker

from google_accounts.api.routes import google_accounts, health
from google_accounts.config import GoogleAccountsConfig, load_config_from_env
from google_accounts.database.session import create_session_factory
from google_accounts.platform.errors import ErrorHandlerMiddleware
from google_accounts.platform.logging import configure_logging
from google_accounts.services import CredentialServices

logger = logging.getLogger(__name__)


def create_app(
    config: Optional[GoogleAccountsConfig] = None,
    session_factory: Optional[sessionmaker] = None,
    http_client: Optional[httpx.AsyncClient] = None,
) -> FastAPI:
    """
    Build the application.

    Configuration is validated here so a missing or malformed encryption
    key stops the process before it serves any request.
    """
    if config is None:
        config = load_config_from_env()
    else:
        config.validate()

    configure_logging(config.log_level)

    services = CredentialServices(config, http_client=http_client)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        yield
        await services.close()

    app = FastAPI(title="Google Account Service", lifespan=lifespan)
    app.state.config = config
    app.state.credential_services = services
    app.state.session_factory = session_factory or create_session_factory(config.database_url)

    app.add_middleware(ErrorHandlerMiddleware)
    app.include_router(health.router)
    app.include_router(google_accounts.router)

    logger.info(
        "Google account service configured",
        extra={"oauth_configured": config.oauth_configured},
    )
    return app

