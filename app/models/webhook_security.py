"""
Webhook security models.

- WebhookSecuritySetting: per (provider, endpoint) signature configuration
- WebhookRequestLog: immutable record of every inbound webhook attempt,
  also the counting substrate for rate limiting and flood detection
"""

import uuid
from datetime import datetime
from enum import Enum
from sqlalchemy import (
    Column,
    String,
    DateTime,
    Boolean,
    Integer,
    Float,
    Text,
    ARRAY,
    Index,
    UniqueConstraint,
)
from sqlalchemy.dialects.postgresql import UUID, JSONB

from app.core.database import Base


class SignatureAlgorithm(str, Enum):
    """
    Supported webhook signature schemes.

    - HMAC_SHA256 / HMAC_SHA1: hex digest over the raw body
    - TWILIO: base64 HMAC-SHA1 over url + body
    """
    HMAC_SHA256 = "hmac_sha256"
    HMAC_SHA1 = "hmac_sha1"
    TWILIO = "twilio"


class WebhookSecuritySetting(Base):
    """Signature, IP and rate-limit configuration for one webhook endpoint."""

    __tablename__ = "webhook_security_settings"
    __table_args__ = (
        UniqueConstraint(
            "provider_name",
            "webhook_endpoint",
            name="uq_webhook_security_settings_provider_endpoint",
        ),
    )

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    provider_name = Column(String, nullable=False, index=True)
    webhook_endpoint = Column(String, nullable=False)
    secret_key = Column(Text, nullable=False)  # Fernet-encrypted
    signature_algorithm = Column(String, default=SignatureAlgorithm.HMAC_SHA256.value, nullable=False)
    is_enabled = Column(Boolean, default=True, nullable=False)
    require_signature = Column(Boolean, default=True, nullable=False)
    allowed_ips = Column(ARRAY(String), default=list, nullable=False)  # CIDR blocks or literal IPs
    rate_limit_per_minute = Column(Integer, default=60, nullable=False)
    last_validated_at = Column(DateTime, nullable=True)
    created_by = Column(UUID(as_uuid=True), nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

    def __repr__(self):
        return f"<WebhookSecuritySetting {self.provider_name} {self.webhook_endpoint} ({self.signature_algorithm})>"


class WebhookRequestLog(Base):
    """
    Append-only log of inbound webhook attempts.

    Rows are never updated. Authorization and cookie headers are redacted
    before insert; large bodies are replaced by a truncation marker.
    """

    __tablename__ = "webhook_request_logs"
    __table_args__ = (
        Index(
            "ix_webhook_request_logs_provider_endpoint_created",
            "provider_name",
            "webhook_endpoint",
            "created_at",
        ),
    )

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    provider_name = Column(String, nullable=False)
    webhook_endpoint = Column(String, nullable=False)
    request_method = Column(String, nullable=False)
    request_headers = Column(JSONB, nullable=True)
    request_body = Column(JSONB, nullable=True)
    request_ip = Column(String, nullable=True)
    signature_valid = Column(Boolean, nullable=False)
    signature_error = Column(String, nullable=True)
    processing_time_ms = Column(Float, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False, index=True)

    def __repr__(self):
        outcome = "valid" if self.signature_valid else f"rejected: {self.signature_error}"
        return f"<WebhookRequestLog {self.provider_name} {self.webhook_endpoint} {outcome}>"
