"""
Store model - the tenant that owns at most one linked Google account.

Stores are managed by the store administration service; this service only
reads them to confirm a store exists before starting authorization.
"""

from sqlalchemy import Column, String

from google_accounts.db_base import Base
from google_accounts.models.base import TimestampMixin


class Store(Base, TimestampMixin):
    """Minimal view of the store registry."""

    __tablename__ = "stores"

    id = Column(String(255), primary_key=True, comment="Store ID")
    store_name = Column(String(255), nullable=True, comment="Display name")

    def __repr__(self) -> str:
        return f"<Store(id={self.id}, store_name={self.store_name})>"
