"""
Security admin routes (super_admin and ops).

Endpoints:
- /api/security/webhook-settings - Webhook signature settings CRUD + secret rotation
- /api/security/webhook-logs - Inbound webhook request log
- /api/security/ip-allowlist - Global and per-admin IP allowlist
- /api/security/abuse-alerts - Abuse alerts and resolution
- /api/security/failed-logins - Failed login attempts

Every mutation is written to the admin activity log.
"""

import logging
from typing import Optional
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Query, Request
from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.database import get_db
from app.core.security import encrypt_secret
from app.models.abuse import AbuseAlert, AlertStatus, FailedLoginAttempt
from app.models.admin import AdminProfile, AdminRole
from app.models.ip_allowlist import AllowlistEntry, AllowlistScope
from app.models.webhook_security import WebhookRequestLog, WebhookSecuritySetting
from app.modules.abuse.detectors import resolve_alert
from app.modules.audit.logger import log_admin_activity
from app.modules.auth.dependencies import require_roles
from app.modules.security.allowlist import get_client_ip
from app.modules.security.ip_matching import is_valid_allowlist_value
from app.modules.security.schemas import (
    DEFAULT_PAGE_SIZE,
    MAX_PAGE_SIZE,
    AbuseAlertOut,
    AlertResolveRequest,
    AllowlistEntryCreate,
    AllowlistEntryOut,
    FailedLoginOut,
    WebhookRequestLogOut,
    WebhookSecretRotate,
    WebhookSettingCreate,
    WebhookSettingOut,
    WebhookSettingUpdate,
    page_meta,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/security", tags=["security"])

security_admin = require_roles(AdminRole.SUPER_ADMIN, AdminRole.OPS)


class Pagination:
    """0-based page / limit query parameters, limit capped at MAX_PAGE_SIZE."""

    def __init__(
        self,
        page: int = Query(0, ge=0),
        limit: int = Query(DEFAULT_PAGE_SIZE, ge=1),
    ):
        self.page = page
        self.limit = min(limit, MAX_PAGE_SIZE)

    @property
    def offset(self) -> int:
        return self.page * self.limit


async def paginate(db: AsyncSession, stmt, order_by, pagination: Pagination):
    """Run a filtered select with count; returns (rows, meta)."""
    total = (await db.execute(select(func.count()).select_from(stmt.subquery()))).scalar() or 0
    result = await db.execute(
        stmt.order_by(order_by).offset(pagination.offset).limit(pagination.limit)
    )
    return list(result.scalars().all()), page_meta(total, pagination.page, pagination.limit)


def _setting_snapshot(setting: WebhookSecuritySetting) -> dict:
    """Audit-safe view of a setting (never includes the secret)."""
    return WebhookSettingOut.from_setting(setting).model_dump(mode="json")


async def _get_setting_or_404(db: AsyncSession, setting_id: UUID) -> WebhookSecuritySetting:
    setting = await db.get(WebhookSecuritySetting, setting_id)
    if not setting:
        raise HTTPException(status_code=404, detail="Webhook setting not found")
    return setting


# ============================================================================
# Webhook security settings
# ============================================================================

@router.get("/webhook-settings")
async def list_webhook_settings(
    provider_name: Optional[str] = None,
    admin: AdminProfile = Depends(security_admin),
    db: AsyncSession = Depends(get_db),
):
    """List webhook settings. Secrets are never returned."""
    stmt = select(WebhookSecuritySetting).order_by(WebhookSecuritySetting.provider_name.asc())
    if provider_name:
        stmt = stmt.where(WebhookSecuritySetting.provider_name == provider_name)

    result = await db.execute(stmt)
    return {
        "settings": [WebhookSettingOut.from_setting(s) for s in result.scalars().all()]
    }


@router.post("/webhook-settings", status_code=201)
async def create_webhook_setting(
    payload: WebhookSettingCreate,
    request: Request,
    admin: AdminProfile = Depends(security_admin),
    db: AsyncSession = Depends(get_db),
):
    """Create a webhook setting. The secret is encrypted before storage."""
    if not payload.provider_name or not payload.webhook_endpoint or not payload.secret_key:
        raise HTTPException(
            status_code=400,
            detail="provider_name, webhook_endpoint, and secret_key are required",
        )

    setting = WebhookSecuritySetting(
        provider_name=payload.provider_name,
        webhook_endpoint=payload.webhook_endpoint,
        secret_key=encrypt_secret(payload.secret_key),
        signature_algorithm=payload.signature_algorithm.value,
        is_enabled=payload.is_enabled,
        require_signature=payload.require_signature,
        allowed_ips=payload.allowed_ips,
        rate_limit_per_minute=payload.rate_limit_per_minute,
        created_by=admin.id,
    )
    db.add(setting)
    try:
        await db.commit()
    except IntegrityError:
        raise HTTPException(
            status_code=400,
            detail="A webhook setting already exists for this provider and endpoint",
        )
    await db.refresh(setting)

    await log_admin_activity(
        admin.id,
        "webhook_security_setting_created",
        target_type="webhook_setting",
        target_id=setting.id,
        ip=get_client_ip(request),
        details={"provider_name": setting.provider_name, "webhook_endpoint": setting.webhook_endpoint},
    )

    return {"success": True, "setting": WebhookSettingOut.from_setting(setting)}


@router.put("/webhook-settings/{setting_id}")
async def update_webhook_setting(
    setting_id: UUID,
    payload: WebhookSettingUpdate,
    request: Request,
    admin: AdminProfile = Depends(security_admin),
    db: AsyncSession = Depends(get_db),
):
    """Update a webhook setting. Use PUT /webhook-settings/{id}/secret to rotate the secret."""
    setting = await _get_setting_or_404(db, setting_id)
    old_values = _setting_snapshot(setting)

    for field, value in payload.model_dump(exclude_unset=True, mode="json").items():
        if value is None:
            if field != "allowed_ips":
                continue
            value = []
        setattr(setting, field, value)

    try:
        await db.commit()
    except IntegrityError:
        raise HTTPException(
            status_code=400,
            detail="A webhook setting already exists for this provider and endpoint",
        )
    await db.refresh(setting)
    new_values = _setting_snapshot(setting)

    await log_admin_activity(
        admin.id,
        "webhook_security_setting_updated",
        target_type="webhook_setting",
        target_id=setting.id,
        ip=get_client_ip(request),
        old_values=old_values,
        new_values=new_values,
    )

    return {"success": True, "setting": WebhookSettingOut.from_setting(setting)}


@router.put("/webhook-settings/{setting_id}/secret")
async def rotate_webhook_secret(
    setting_id: UUID,
    payload: WebhookSecretRotate,
    request: Request,
    admin: AdminProfile = Depends(security_admin),
    db: AsyncSession = Depends(get_db),
):
    """Replace the shared secret of a webhook setting."""
    setting = await _get_setting_or_404(db, setting_id)
    setting.secret_key = encrypt_secret(payload.secret_key)
    await db.commit()
    await db.refresh(setting)

    await log_admin_activity(
        admin.id,
        "webhook_security_secret_rotated",
        target_type="webhook_setting",
        target_id=setting.id,
        ip=get_client_ip(request),
        details={"provider_name": setting.provider_name, "webhook_endpoint": setting.webhook_endpoint},
    )

    return {"success": True, "setting": WebhookSettingOut.from_setting(setting)}


@router.delete("/webhook-settings/{setting_id}")
async def delete_webhook_setting(
    setting_id: UUID,
    request: Request,
    admin: AdminProfile = Depends(security_admin),
    db: AsyncSession = Depends(get_db),
):
    setting = await _get_setting_or_404(db, setting_id)
    old_values = _setting_snapshot(setting)
    await db.delete(setting)
    await db.commit()

    await log_admin_activity(
        admin.id,
        "webhook_security_setting_deleted",
        target_type="webhook_setting",
        target_id=setting_id,
        ip=get_client_ip(request),
        old_values=old_values,
    )

    return {"success": True}


@router.get("/webhook-logs")
async def list_webhook_logs(
    provider_name: Optional[str] = None,
    webhook_endpoint: Optional[str] = None,
    pagination: Pagination = Depends(),
    admin: AdminProfile = Depends(security_admin),
    db: AsyncSession = Depends(get_db),
):
    """Inbound webhook attempts, newest first."""
    stmt = select(WebhookRequestLog)
    if provider_name:
        stmt = stmt.where(WebhookRequestLog.provider_name == provider_name)
    if webhook_endpoint:
        stmt = stmt.where(WebhookRequestLog.webhook_endpoint == webhook_endpoint)

    rows, meta = await paginate(db, stmt, WebhookRequestLog.created_at.desc(), pagination)
    return {"logs": [WebhookRequestLogOut.model_validate(r) for r in rows], **meta}


# ============================================================================
# IP allowlist
# ============================================================================

@router.get("/ip-allowlist")
async def list_ip_allowlist(
    admin_id: Optional[UUID] = None,
    type: str = Query("all", pattern="^(all|admin|global)$"),
    admin: AdminProfile = Depends(security_admin),
    db: AsyncSession = Depends(get_db),
):
    """
    Allowlist entries grouped by scope.

    Returns:
        {"admin_specific": [...], "global": [...]}
    """
    results = {"admin_specific": [], "global": []}

    if type in ("all", "admin"):
        stmt = (
            select(AllowlistEntry)
            .where(AllowlistEntry.scope == AllowlistScope.ADMIN.value)
            .order_by(AllowlistEntry.created_at.desc())
        )
        if admin_id:
            stmt = stmt.where(AllowlistEntry.admin_id == admin_id)
        rows = (await db.execute(stmt)).scalars().all()
        results["admin_specific"] = [AllowlistEntryOut.model_validate(r) for r in rows]

    if type in ("all", "global"):
        stmt = (
            select(AllowlistEntry)
            .where(AllowlistEntry.scope == AllowlistScope.GLOBAL.value)
            .order_by(AllowlistEntry.created_at.desc())
        )
        rows = (await db.execute(stmt)).scalars().all()
        results["global"] = [AllowlistEntryOut.model_validate(r) for r in rows]

    return results


@router.post("/ip-allowlist", status_code=201)
async def add_ip_to_allowlist(
    payload: AllowlistEntryCreate,
    request: Request,
    admin: AdminProfile = Depends(security_admin),
    db: AsyncSession = Depends(get_db),
):
    """Add a CIDR block or address to the global or a per-admin allowlist."""
    if not payload.ip_address:
        raise HTTPException(status_code=400, detail="ip_address is required")

    ip_address = payload.ip_address.strip()
    if not is_valid_allowlist_value(ip_address):
        raise HTTPException(status_code=400, detail="Invalid IP address or CIDR block")

    if payload.is_global:
        entry = AllowlistEntry(
            scope=AllowlistScope.GLOBAL.value,
            ip_address=ip_address,
            description=payload.description,
            created_by=admin.id,
        )
        action = "global_ip_allowlist_added"
    else:
        if not payload.admin_id:
            raise HTTPException(
                status_code=400,
                detail="admin_id is required for admin-specific allowlist",
            )
        if not await db.get(AdminProfile, payload.admin_id):
            raise HTTPException(status_code=404, detail="Admin not found")
        entry = AllowlistEntry(
            scope=AllowlistScope.ADMIN.value,
            admin_id=payload.admin_id,
            ip_address=ip_address,
            description=payload.description,
            created_by=admin.id,
        )
        action = "admin_ip_allowlist_added"

    db.add(entry)
    await db.commit()
    await db.refresh(entry)

    await log_admin_activity(
        admin.id,
        action,
        target_type="ip_allowlist",
        target_id=entry.id,
        ip=get_client_ip(request),
        details={
            "admin_id": str(payload.admin_id) if payload.admin_id else None,
            "ip_address": ip_address,
            "description": payload.description,
        },
    )

    return {"success": True, "entry": AllowlistEntryOut.model_validate(entry)}


@router.delete("/ip-allowlist/{entry_id}")
async def remove_ip_from_allowlist(
    entry_id: UUID,
    request: Request,
    admin: AdminProfile = Depends(security_admin),
    db: AsyncSession = Depends(get_db),
):
    entry = await db.get(AllowlistEntry, entry_id)
    if not entry:
        raise HTTPException(status_code=404, detail="Allowlist entry not found")

    action = "global_ip_allowlist_removed" if entry.is_global else "admin_ip_allowlist_removed"
    details = {"ip_address": entry.ip_address, "admin_id": str(entry.admin_id) if entry.admin_id else None}

    await db.delete(entry)
    await db.commit()

    await log_admin_activity(
        admin.id,
        action,
        target_type="ip_allowlist",
        target_id=entry_id,
        ip=get_client_ip(request),
        details=details,
    )

    return {"success": True}


# ============================================================================
# Abuse alerts
# ============================================================================

@router.get("/abuse-alerts")
async def list_abuse_alerts(
    alert_type: Optional[str] = None,
    severity: Optional[str] = None,
    status: Optional[str] = AlertStatus.OPEN.value,
    pagination: Pagination = Depends(),
    admin: AdminProfile = Depends(security_admin),
    db: AsyncSession = Depends(get_db),
):
    """Abuse alerts, newest first. Defaults to open alerts."""
    stmt = select(AbuseAlert)
    if alert_type:
        stmt = stmt.where(AbuseAlert.alert_type == alert_type)
    if severity:
        stmt = stmt.where(AbuseAlert.severity == severity)
    if status:
        stmt = stmt.where(AbuseAlert.status == status)

    rows, meta = await paginate(db, stmt, AbuseAlert.created_at.desc(), pagination)
    return {"alerts": [AbuseAlertOut.model_validate(r) for r in rows], **meta}


@router.put("/abuse-alerts/{alert_id}/resolve")
async def resolve_abuse_alert(
    alert_id: UUID,
    payload: AlertResolveRequest,
    request: Request,
    admin: AdminProfile = Depends(security_admin),
    db: AsyncSession = Depends(get_db),
):
    alert = await resolve_alert(
        db,
        alert_id,
        admin.id,
        status=payload.status.value,
        notes=payload.resolution_notes,
    )
    if not alert:
        raise HTTPException(status_code=404, detail="Abuse alert not found")
    await db.commit()

    await log_admin_activity(
        admin.id,
        "abuse_alert_resolved",
        target_type="abuse_alert",
        target_id=alert_id,
        ip=get_client_ip(request),
        details={"status": payload.status.value, "resolution_notes": payload.resolution_notes},
    )

    return {"success": True, "alert": AbuseAlertOut.model_validate(alert)}


# ============================================================================
# Failed logins
# ============================================================================

@router.get("/failed-logins")
async def list_failed_logins(
    email: Optional[str] = None,
    ip_address: Optional[str] = None,
    pagination: Pagination = Depends(),
    admin: AdminProfile = Depends(security_admin),
    db: AsyncSession = Depends(get_db),
):
    stmt = select(FailedLoginAttempt)
    if email:
        stmt = stmt.where(FailedLoginAttempt.email == email)
    if ip_address:
        stmt = stmt.where(FailedLoginAttempt.ip_address == ip_address)

    rows, meta = await paginate(db, stmt, FailedLoginAttempt.created_at.desc(), pagination)
    return {"attempts": [FailedLoginOut.model_validate(r) for r in rows], **meta}
