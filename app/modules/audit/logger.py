"""
Admin activity audit logging.

Every mutating admin action is appended to admin_activity_log with a
severity derived only from the action name:

- CRITICAL_ACTIONS -> "critical"
- WARNING_ACTIONS -> "warning"
- anything else -> "info"

Logging is best-effort: it uses its own session and never raises, so a
broken audit write cannot fail the admin's request.
"""

import logging
from typing import Any, Optional
from uuid import UUID

from fastapi.encoders import jsonable_encoder

from app.core.database import AsyncSessionLocal
from app.models.admin_activity import ActivitySeverity, AdminActivityLog

logger = logging.getLogger(__name__)

CRITICAL_ACTIONS = frozenset({
    "user_deleted",
    "admin_created",
    "admin_deleted",
    "admin_role_changed",
    "system_settings_changed",
    "webhook_security_setting_created",
    "webhook_security_setting_deleted",
    "webhook_security_secret_rotated",
    "data_retention_config_updated",
    "global_ip_allowlist_added",
    "global_ip_allowlist_removed",
})

WARNING_ACTIONS = frozenset({
    "user_suspended",
    "user_unsuspended",
    "admin_force_logout",
    "credits_adjusted",
    "invoice_created",
    "payment_refunded",
})


def classify_action_severity(action: str) -> str:
    """
    Severity for an action name. Details never influence it.

    Example:
        >>> classify_action_severity("admin_deleted")
        'critical'
        >>> classify_action_severity("webhook_logs_viewed")
        'info'
    """
    if action in CRITICAL_ACTIONS:
        return ActivitySeverity.CRITICAL.value
    if action in WARNING_ACTIONS:
        return ActivitySeverity.WARNING.value
    return ActivitySeverity.INFO.value


def build_activity_entry(
    admin_id: Optional[UUID],
    action: str,
    *,
    target_type: Optional[str] = None,
    target_id: Any = None,
    ip: Optional[str] = None,
    details: Optional[dict] = None,
    old_values: Optional[dict] = None,
    new_values: Optional[dict] = None,
    user_agent: Optional[str] = None,
    session_id: Optional[str] = None,
) -> AdminActivityLog:
    """Build (but don't persist) an audit row."""
    details = details or {}
    return AdminActivityLog(
        admin_id=admin_id,
        action=action,
        target_type=target_type,
        target_id=str(target_id) if target_id is not None else None,
        details=jsonable_encoder(details),
        ip_address=ip,
        severity=classify_action_severity(action),
        old_values=jsonable_encoder(old_values) if old_values is not None else None,
        new_values=jsonable_encoder(new_values) if new_values is not None else None,
        user_agent=user_agent or details.get("user_agent"),
        session_id=session_id,
    )


async def log_admin_activity(
    admin_id: Optional[UUID],
    action: str,
    *,
    target_type: Optional[str] = None,
    target_id: Any = None,
    ip: Optional[str] = None,
    details: Optional[dict] = None,
    old_values: Optional[dict] = None,
    new_values: Optional[dict] = None,
    user_agent: Optional[str] = None,
    session_id: Optional[str] = None,
) -> None:
    """
    Append one audit row. Never raises.

    The row is committed in its own session, independent of the caller's
    transaction. Callers recording a change commit that change first, so
    the audit trail never lists a mutation that was rolled back.

    Args:
        admin_id: Acting admin (None for anonymous actions like a blocked login)
        action: Action name, e.g. "global_ip_allowlist_added"
        target_type: Kind of object acted on, e.g. "webhook_security_setting"
        target_id: Id of the object acted on
        ip: Admin's IP address
        details: Free-form context; "user_agent" is used if user_agent is not given
        old_values: State before the change
        new_values: State after the change
        user_agent: Admin's User-Agent header
        session_id: Token id of the admin session

    Usage:
        await log_admin_activity(
            admin.id,
            "webhook_security_setting_created",
            target_type="webhook_security_setting",
            target_id=setting.id,
            ip=client_ip,
            details={"provider_name": "twilio"},
        )
    """
    try:
        entry = build_activity_entry(
            admin_id,
            action,
            target_type=target_type,
            target_id=target_id,
            ip=ip,
            details=details,
            old_values=old_values,
            new_values=new_values,
            user_agent=user_agent,
            session_id=session_id,
        )
        async with AsyncSessionLocal() as session:
            session.add(entry)
            await session.commit()

        if entry.severity == ActivitySeverity.CRITICAL.value:
            logger.warning(
                f"Critical admin action: {action}",
                extra={"admin_id": str(admin_id), "action": action, "target_id": entry.target_id},
            )
    except Exception as e:
        logger.error(
            f"Failed to log admin activity: {e}",
            extra={"admin_id": str(admin_id), "action": action},
        )
