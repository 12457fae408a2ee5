"""
Abuse detection models.

- AbuseAlert: one open alert per (alert_type, entity_type, entity_id),
  enforced by a partial unique index
- FailedLoginAttempt: append-only, feeds the failed-login flood detector
- CallSpikeDetection: record of every detected call spike
"""

import uuid
from datetime import datetime
from enum import Enum
from sqlalchemy import Column, String, DateTime, Boolean, Integer, Float, Text, Index, text
from sqlalchemy.dialects.postgresql import UUID

from app.core.database import Base


class AlertStatus(str, Enum):
    OPEN = "open"
    RESOLVED = "resolved"
    DISMISSED = "dismissed"  # Resolved as a false positive


class AlertType(str, Enum):
    FAILED_LOGIN_FLOOD = "failed_login_flood"
    WEBHOOK_FLOOD = "webhook_flood"
    CALL_SPIKE = "call_spike"


class AbuseAlert(Base):
    """
    Threshold-crossing alert raised by the abuse detectors.

    Only explicit admin action closes an alert; detectors never auto-resolve.
    """

    __tablename__ = "abuse_detection_alerts"
    __table_args__ = (
        Index(
            "uq_abuse_detection_alerts_open_entity",
            "alert_type",
            "entity_type",
            "entity_id",
            unique=True,
            postgresql_where=text("status = 'open'"),
        ),
    )

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    alert_type = Column(String, nullable=False, index=True)
    severity = Column(String, nullable=False, index=True)  # 'low' | 'medium' | 'high' | 'critical'
    entity_type = Column(String, nullable=False)  # 'ip_address' | 'provider' | 'user' | 'agent'
    entity_id = Column(String, nullable=False)
    threshold_value = Column(Float, nullable=False)
    actual_value = Column(Float, nullable=False)
    time_window_minutes = Column(Integer, nullable=False)
    description = Column(Text, nullable=True)
    status = Column(String, default=AlertStatus.OPEN.value, nullable=False, index=True)
    resolved_by = Column(UUID(as_uuid=True), nullable=True)
    resolved_at = Column(DateTime, nullable=True)
    resolution_notes = Column(Text, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False, index=True)

    def __repr__(self):
        return f"<AbuseAlert {self.alert_type} {self.entity_type}={self.entity_id} ({self.status})>"

    @property
    def is_open(self) -> bool:
        return self.status == AlertStatus.OPEN.value


class FailedLoginAttempt(Base):
    """Append-only record of a failed login."""

    __tablename__ = "failed_login_attempts"
    __table_args__ = (
        Index("ix_failed_login_attempts_ip_created", "ip_address", "created_at"),
    )

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    email = Column(String, nullable=True, index=True)
    ip_address = Column(String, nullable=False)
    is_admin = Column(Boolean, default=False, nullable=False)
    failure_reason = Column(String, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False, index=True)

    def __repr__(self):
        return f"<FailedLoginAttempt {self.ip_address} at {self.created_at}>"


class CallSpikeDetection(Base):
    """One detected call-volume spike for a user (optionally one agent)."""

    __tablename__ = "call_spike_detection"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    user_id = Column(String, nullable=False, index=True)
    agent_id = Column(String, nullable=True)
    time_window_start = Column(DateTime, nullable=False)
    time_window_end = Column(DateTime, nullable=False)
    call_count = Column(Integer, nullable=False)
    threshold_count = Column(Integer, nullable=False)
    average_calls_per_hour = Column(Float, nullable=False)
    is_alerted = Column(Boolean, default=False, nullable=False)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)

    def __repr__(self):
        return f"<CallSpikeDetection user={self.user_id} agent={self.agent_id} calls={self.call_count}>"
