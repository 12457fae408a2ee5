"""
AllowlistEntry model - IP allowlist for admin access.

Two scopes share one table:
- global: applies to every admin and overrides per-admin entries
- admin: applies to a single admin (admin_id set)

ip_address holds either a CIDR block ("10.0.0.0/24") or a literal IPv4
address ("203.0.113.7").
"""

import uuid
from datetime import datetime
from enum import Enum
from sqlalchemy import Column, String, DateTime, Boolean, ForeignKey, CheckConstraint
from sqlalchemy.dialects.postgresql import UUID

from app.core.database import Base


class AllowlistScope(str, Enum):
    GLOBAL = "global"
    ADMIN = "admin"


class AllowlistEntry(Base):
    """One allowlisted CIDR block or address."""

    __tablename__ = "ip_allowlist_entries"
    __table_args__ = (
        CheckConstraint(
            "(scope = 'global' AND admin_id IS NULL) OR (scope = 'admin' AND admin_id IS NOT NULL)",
            name="ck_ip_allowlist_entries_scope_admin",
        ),
    )

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    scope = Column(String, nullable=False, index=True)  # 'global' | 'admin'
    admin_id = Column(
        UUID(as_uuid=True),
        ForeignKey("admin_profiles.id", ondelete="CASCADE"),
        nullable=True,
        index=True,
    )
    ip_address = Column(String, nullable=False)
    description = Column(String, nullable=True)
    is_active = Column(Boolean, default=True, nullable=False)
    created_by = Column(UUID(as_uuid=True), nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)

    def __repr__(self):
        owner = "global" if self.is_global else f"admin={self.admin_id}"
        return f"<AllowlistEntry {self.ip_address} ({owner})>"

    @property
    def is_global(self) -> bool:
        return self.scope == AllowlistScope.GLOBAL.value
