"""
AdminProfile model - back-office administrators.

Admins authenticate with email + password and are authorized by a static
role-to-route table (see app.modules.auth.dependencies.require_roles).
"""

import uuid
from datetime import datetime
from enum import Enum
from sqlalchemy import Column, String, DateTime, Boolean
from sqlalchemy.dialects.postgresql import UUID

from app.core.database import Base


class AdminRole(str, Enum):
    """
    Back-office roles.

    - SUPER_ADMIN: passes every role check
    - FINANCE / SUPPORT / OPS: scoped consoles
    """
    SUPER_ADMIN = "super_admin"
    FINANCE = "finance"
    SUPPORT = "support"
    OPS = "ops"


class AdminProfile(Base):
    """Back-office administrator account."""

    __tablename__ = "admin_profiles"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    email = Column(String, unique=True, nullable=False, index=True)
    password_hash = Column(String, nullable=False)  # bcrypt, never returned by the API
    first_name = Column(String, nullable=True)
    last_name = Column(String, nullable=True)
    role = Column(String, default=AdminRole.SUPPORT.value, nullable=False)
    is_active = Column(Boolean, default=True, nullable=False)
    last_login_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)

    def __repr__(self):
        return f"<AdminProfile {self.email} ({self.role})>"

    @property
    def is_super_admin(self) -> bool:
        return self.role == AdminRole.SUPER_ADMIN.value
