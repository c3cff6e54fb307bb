"""
Logging setup for the service and its jobs.

Every handler on the root logger gets a CredentialLoggingFilter so that
token-shaped strings are redacted even if a caller logs one by mistake.
"""

import logging
from typing import Optional

from google_accounts.credentials.redaction import CredentialLoggingFilter

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


def configure_logging(level: Optional[str] = None) -> None:
    """Configure root logging with the standard format and redaction filter."""
    logging.basicConfig(
        level=getattr(logging, (level or "INFO").upper(), logging.INFO),
        format=LOG_FORMAT,
    )

    root = logging.getLogger()
    for handler in root.handlers:
        if not any(isinstance(f, CredentialLoggingFilter) for f in handler.filters):
            handler.addFilter(CredentialLoggingFilter())
