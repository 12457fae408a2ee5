"""
Admin alerting for security events.

Abuse detectors call notify_abuse_alert() once per newly opened alert.
Delivery is log + Sentry message; alerts themselves are persisted in
abuse_detection_alerts by the detector, so delivery failures lose nothing.

Security notes:
- Alert payloads carry entity ids and counters, never secrets or passwords
- Sentry delivery failures are logged and swallowed
"""

import logging
from datetime import datetime
from typing import Optional

import sentry_sdk

from app.core.config import settings

logger = logging.getLogger(__name__)


def send_admin_alert(
    title: str,
    message: str,
    severity: str = "MEDIUM",
    extra_data: Optional[dict] = None,
) -> bool:
    """
    Send alert to admin via application logs and Sentry.

    Args:
        title: Alert title (e.g., "Failed login flood from 203.0.113.7")
        message: Alert message with details
        severity: "CRITICAL", "HIGH", "MEDIUM", "LOW"
        extra_data: Additional metadata to include (optional)

    Returns:
        True if the alert reached Sentry, False if only logged
    """
    # Note: Don't use 'message' key in extra - conflicts with logging.LogRecord
    alert = {
        "timestamp": datetime.utcnow().isoformat(),
        "severity": severity,
        "title": title,
        "alert_message": message,
        "environment": settings.ENVIRONMENT,
    }

    if extra_data:
        alert["extra_data"] = extra_data

    logger.warning(f"[{severity}] {title}", extra=alert)

    try:
        sentry_sdk.capture_message(
            f"[{severity}] {title}",
            level=_get_sentry_level(severity),
            extras=alert,
        )
    except Exception as e:
        logger.error(f"Failed to send admin alert to Sentry: {e}")
        return False

    return True


def notify_abuse_alert(
    alert_type: str,
    severity: str,
    entity_type: str,
    entity_id: str,
    threshold_value: float,
    actual_value: float,
    time_window_minutes: int,
    description: Optional[str] = None,
) -> bool:
    """
    Announce a newly opened abuse alert.

    Severity is the detector's lowercase severity ("high", "medium", ...).
    """
    return send_admin_alert(
        title=f"Abuse alert: {alert_type} ({entity_type}={entity_id})",
        message=description
        or f"{actual_value:g} events in {time_window_minutes} min (threshold {threshold_value:g})",
        severity=severity.upper(),
        extra_data={
            "alert_type": alert_type,
            "entity_type": entity_type,
            "entity_id": entity_id,
            "threshold_value": threshold_value,
            "actual_value": actual_value,
            "time_window_minutes": time_window_minutes,
        },
    )


def _get_sentry_level(severity: str) -> str:
    """
    Map alert severity to Sentry log level.

    Args:
        severity: Alert severity (CRITICAL, HIGH, MEDIUM, LOW)

    Returns:
        Sentry log level (error, warning, info)
    """
    mapping = {
        "CRITICAL": "error",
        "HIGH": "error",
        "MEDIUM": "warning",
        "LOW": "info",
    }
    return mapping.get(severity, "warning")
