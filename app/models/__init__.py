"""
Database models package.

Import all models here so Alembic can discover them for migrations.
"""

from app.models.admin import AdminProfile
from app.models.admin_activity import AdminActivityLog
from app.models.abuse import AbuseAlert, FailedLoginAttempt, CallSpikeDetection
from app.models.call_record import CallRecord
from app.models.ip_allowlist import AllowlistEntry
from app.models.webhook_security import WebhookSecuritySetting, WebhookRequestLog

__all__ = [
    "AdminProfile",
    "AdminActivityLog",
    "AbuseAlert",
    "FailedLoginAttempt",
    "CallSpikeDetection",
    "CallRecord",
    "AllowlistEntry",
    "WebhookSecuritySetting",
    "WebhookRequestLog",
]
