"""
Pydantic schemas for the security admin endpoints.

Webhook secrets are write-only: responses expose has_secret instead.
"""

from datetime import datetime
from typing import Annotated, Any, List, Optional
from uuid import UUID

from pydantic import AfterValidator, BaseModel, ConfigDict, Field, field_validator

from app.models.abuse import AlertStatus
from app.models.webhook_security import SignatureAlgorithm
from app.modules.security.ip_matching import is_valid_allowlist_value

MAX_PAGE_SIZE = 200
DEFAULT_PAGE_SIZE = 50


def _validate_allowed_ips(values: List[str]) -> List[str]:
    cleaned = [value.strip() for value in values if value and value.strip()]
    invalid = [value for value in cleaned if not is_valid_allowlist_value(value)]
    if invalid:
        raise ValueError(f"Invalid IP address or CIDR: {', '.join(invalid)}")
    return cleaned


AllowedIps = Annotated[List[str], AfterValidator(_validate_allowed_ips)]


# ============================================================================
# Webhook security settings
# ============================================================================

class WebhookSettingCreate(BaseModel):
    """New webhook setting. provider_name, webhook_endpoint and secret_key are required."""

    provider_name: Optional[str] = None
    webhook_endpoint: Optional[str] = None
    secret_key: Optional[str] = None
    signature_algorithm: SignatureAlgorithm = SignatureAlgorithm.HMAC_SHA256
    is_enabled: bool = True
    require_signature: bool = True
    allowed_ips: AllowedIps = Field(default_factory=list)
    rate_limit_per_minute: int = Field(60, ge=1)


class WebhookSettingUpdate(BaseModel):
    """Partial update; secrets are rotated through a dedicated endpoint."""

    model_config = ConfigDict(extra="ignore")

    provider_name: Optional[str] = None
    webhook_endpoint: Optional[str] = None
    signature_algorithm: Optional[SignatureAlgorithm] = None
    is_enabled: Optional[bool] = None
    require_signature: Optional[bool] = None
    allowed_ips: Optional[AllowedIps] = None
    rate_limit_per_minute: Optional[int] = Field(None, ge=1)


class WebhookSecretRotate(BaseModel):
    secret_key: str = Field(..., min_length=1)


class WebhookSettingOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    provider_name: str
    webhook_endpoint: str
    signature_algorithm: str
    is_enabled: bool
    require_signature: bool
    allowed_ips: List[str] = Field(default_factory=list)
    rate_limit_per_minute: int
    last_validated_at: Optional[datetime] = None
    created_by: Optional[UUID] = None
    created_at: datetime
    updated_at: datetime
    has_secret: bool = False

    @classmethod
    def from_setting(cls, setting) -> "WebhookSettingOut":
        out = cls.model_validate(setting)
        out.has_secret = bool(setting.secret_key)
        return out


class WebhookRequestLogOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    provider_name: str
    webhook_endpoint: str
    request_method: str
    request_headers: Optional[Any] = None
    request_body: Optional[Any] = None
    request_ip: Optional[str] = None
    signature_valid: bool
    signature_error: Optional[str] = None
    processing_time_ms: Optional[float] = None
    created_at: datetime


# ============================================================================
# IP allowlist
# ============================================================================

class AllowlistEntryCreate(BaseModel):
    ip_address: Optional[str] = None
    description: Optional[str] = None
    admin_id: Optional[UUID] = None
    is_global: bool = False


class AllowlistEntryOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    scope: str
    admin_id: Optional[UUID] = None
    ip_address: str
    description: Optional[str] = None
    is_active: bool
    created_by: Optional[UUID] = None
    created_at: datetime


# ============================================================================
# Abuse alerts and failed logins
# ============================================================================

class AbuseAlertOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    alert_type: str
    severity: str
    entity_type: str
    entity_id: str
    threshold_value: float
    actual_value: float
    time_window_minutes: int
    description: Optional[str] = None
    status: str
    resolved_by: Optional[UUID] = None
    resolved_at: Optional[datetime] = None
    resolution_notes: Optional[str] = None
    created_at: datetime


class AlertResolveRequest(BaseModel):
    status: AlertStatus = AlertStatus.RESOLVED
    resolution_notes: Optional[str] = None

    @field_validator("status")
    @classmethod
    def status_must_close(cls, value: AlertStatus) -> AlertStatus:
        if value == AlertStatus.OPEN:
            raise ValueError("status must be 'resolved' or 'dismissed'")
        return value


class FailedLoginOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    email: Optional[str] = None
    ip_address: str
    is_admin: bool
    failure_reason: Optional[str] = None
    created_at: datetime


class ActivityLogOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    admin_id: Optional[UUID] = None
    action: str
    target_type: Optional[str] = None
    target_id: Optional[str] = None
    details: Optional[Any] = None
    ip_address: Optional[str] = None
    severity: str
    old_values: Optional[Any] = None
    new_values: Optional[Any] = None
    user_agent: Optional[str] = None
    created_at: datetime


# ============================================================================
# Pagination
# ============================================================================

def page_meta(total: int, page: int, limit: int) -> dict:
    """Pagination fields shared by every list endpoint (page is 0-based)."""
    return {
        "total": total,
        "page": page,
        "limit": limit,
        "total_pages": (total + limit - 1) // limit if limit else 0,
    }
