"""
Token refresh job - cron job that refreshes Google tokens before expiry.

Runs every few minutes. Selects ACTIVE credentials whose access token
expires within TOKEN_REFRESH_THRESHOLD_SECONDS and refreshes them with
bounded concurrency.

CONSTRAINTS:
- Operates across all stores
- One store's failure never stops the scan; it is recorded on that
  credential as status=error
- Exit code is non-zero only when the scan itself could not run

Run as a cron job:
    python -m google_accounts.workers.token_refresh_job
"""

import asyncio
import logging
import sys
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy.orm import Session

from google_accounts.config import load_config_from_env
from google_accounts.credentials.lifecycle import ScanReport
from google_accounts.database.session import create_session_factory
from google_accounts.platform.logging import configure_logging
from google_accounts.services import CredentialServices

logger = logging.getLogger(__name__)


@dataclass
class RefreshJobStats:
    """Statistics from a token refresh run."""

    started_at: datetime = field(
        default_factory=lambda: datetime.now(timezone.utc)
    )
    credentials_selected: int = 0
    credentials_refreshed: int = 0
    credentials_failed: int = 0
    credentials_skipped: int = 0
    failed_tenants: list = field(default_factory=list)
    completed_at: Optional[datetime] = None

    @classmethod
    def from_report(cls, report: ScanReport) -> "RefreshJobStats":
        return cls(
            started_at=report.started_at,
            credentials_selected=report.scanned,
            credentials_refreshed=len(report.succeeded),
            credentials_failed=len(report.failed),
            credentials_skipped=len(report.skipped),
            failed_tenants=[r.tenant_id for r in report.failed],
            completed_at=report.finished_at,
        )

    def to_dict(self) -> dict:
        duration = None
        if self.completed_at:
            duration = (self.completed_at - self.started_at).total_seconds()

        return {
            "started_at": self.started_at.isoformat(),
            "completed_at": (
                self.completed_at.isoformat() if self.completed_at else None
            ),
            "selected_count": self.credentials_selected,
            "refreshed_count": self.credentials_refreshed,
            "failed_count": self.credentials_failed,
            "skipped_count": self.credentials_skipped,
            "failed_tenants": self.failed_tenants,
            "duration_seconds": duration,
        }


async def run_refresh(services: CredentialServices, db_session: Session) -> RefreshJobStats:
    """
    Execute one refresh scan.

    Args:
        services: Process-wide credential components
        db_session: Database session (not tenant-scoped)

    Returns:
        RefreshJobStats with results
    """
    manager = services.lifecycle_manager(db_session)
    report = await manager.scan_and_refresh()
    stats = RefreshJobStats.from_report(report)

    if stats.credentials_failed:
        logger.warning(
            "Some credentials failed to refresh",
            extra={"failed_tenants": stats.failed_tenants},
        )
    return stats


async def _run() -> RefreshJobStats:
    config = load_config_from_env()
    configure_logging(config.log_level)

    session_factory = create_session_factory(config.database_url)
    services = CredentialServices(config)
    session = session_factory()
    try:
        return await run_refresh(services, session)
    finally:
        session.close()
        await services.close()


def main():
    """Entry point for token refresh job."""
    logger.info("Token Refresh Job starting")

    try:
        stats = asyncio.run(_run())
        logger.info("Token Refresh Job stats", extra=stats.to_dict())
    except Exception as exc:
        logger.error(
            "Token Refresh Job failed",
            extra={"error_type": type(exc).__name__},
            exc_info=True,
        )
        sys.exit(1)


if __name__ == "__main__":
    main()
