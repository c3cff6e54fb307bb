"""FastAPI dependencies for the Google account routes."""

from fastapi import Depends, Request
from sqlalchemy.orm import Session

from google_accounts.credentials.errors import ConfigurationError
from google_accounts.credentials.lifecycle import CredentialLifecycleManager
from google_accounts.database.session import get_db_session
from google_accounts.services import CredentialServices


def get_credential_services(request: Request) -> CredentialServices:
    services = getattr(request.app.state, "credential_services", None)
    if services is None:
        raise ConfigurationError("Credential services not initialized")
    return services


def get_lifecycle_manager(
    services: CredentialServices = Depends(get_credential_services),
    db: Session = Depends(get_db_session),
) -> CredentialLifecycleManager:
    """Lifecycle manager bound to this request's database session."""
    return services.lifecycle_manager(db)
