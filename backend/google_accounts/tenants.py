"""
Tenant registry used to confirm a store exists before authorization starts.
"""

import abc
import logging

from sqlalchemy import select
from sqlalchemy.orm import Session

from google_accounts.models.store import Store

logger = logging.getLogger(__name__)


class TenantRegistry(abc.ABC):
    """Read-only view of the stores that may link a Google account."""

    @abc.abstractmethod
    def tenant_exists(self, tenant_id: str) -> bool:
        """True if the store is known."""


class SqlAlchemyTenantRegistry(TenantRegistry):
    """Looks stores up in the ``stores`` table."""

    def __init__(self, db_session: Session):
        self.db = db_session

    def tenant_exists(self, tenant_id: str) -> bool:
        if not tenant_id:
            return False
        found = self.db.execute(
            select(Store.id).where(Store.id == tenant_id)
        ).scalar_one_or_none()
        return found is not None
