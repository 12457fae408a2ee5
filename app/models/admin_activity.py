"""
AdminActivityLog model - append-only audit trail of admin actions.

Severity is derived from the action name (see app.modules.audit.logger).
"""

import uuid
from datetime import datetime
from enum import Enum
from sqlalchemy import Column, String, DateTime
from sqlalchemy.dialects.postgresql import UUID, JSONB

from app.core.database import Base


class ActivitySeverity(str, Enum):
    INFO = "info"
    WARNING = "warning"
    CRITICAL = "critical"


class AdminActivityLog(Base):
    """Immutable record of one mutating admin action."""

    __tablename__ = "admin_activity_log"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    admin_id = Column(UUID(as_uuid=True), nullable=True, index=True)
    action = Column(String, nullable=False, index=True)
    target_type = Column(String, nullable=True)
    target_id = Column(String, nullable=True)
    details = Column(JSONB, nullable=False, default=dict)
    ip_address = Column(String, nullable=True)
    severity = Column(String, default=ActivitySeverity.INFO.value, nullable=False, index=True)
    old_values = Column(JSONB, nullable=True)
    new_values = Column(JSONB, nullable=True)
    user_agent = Column(String, nullable=True)
    session_id = Column(String, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False, index=True)

    def __repr__(self):
        return f"<AdminActivityLog {self.action} ({self.severity}) by {self.admin_id}>"
