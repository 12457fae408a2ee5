"""
Sentry initialization and error monitoring configuration.

Captures:
- Python exceptions
- FastAPI errors
- Celery task failures (abuse detection sweep)
- Failure-policy fallbacks (allowlist fail-open, webhook fail-closed)

Context enrichment:
- Admin ID, provider, endpoint
- Environment (dev/staging/production)
- Release version
"""

import logging
import sentry_sdk
from sentry_sdk.integrations.fastapi import FastApiIntegration
from sentry_sdk.integrations.celery import CeleryIntegration
from sentry_sdk.integrations.logging import LoggingIntegration

from app import __version__
from app.core.config import settings

logger = logging.getLogger(__name__)

# Keys whose values must never leave the process
SENSITIVE_KEYS = [
    "secret",
    "secret_key",
    "password",
    "password_hash",
    "token",
    "access_token",
    "authorization",
    "cookie",
    "signature",
    "api_key",
    "encryption_key",
]

REDACTED = "[REDACTED]"


def init_sentry():
    """
    Initialize Sentry error monitoring.

    Only initializes if SENTRY_DSN is configured.
    Automatically captures FastAPI and Celery errors.
    """
    if not settings.SENTRY_DSN:
        logger.info("Sentry DSN not configured - error monitoring disabled")
        return

    sentry_sdk.init(
        dsn=settings.SENTRY_DSN,
        environment=settings.ENVIRONMENT,
        release=f"voice-agent-admin@{__version__}",

        # Integrations
        integrations=[
            FastApiIntegration(transaction_style="endpoint"),
            CeleryIntegration(),
            LoggingIntegration(
                level=logging.INFO,  # Capture info and above
                event_level=logging.ERROR,  # Send errors to Sentry
            ),
        ],

        # Performance Monitoring (sample rate)
        traces_sample_rate=0.1 if settings.is_production else 1.0,

        # Error Sampling
        sample_rate=1.0,

        # Privacy Settings
        send_default_pii=False,  # Don't send admin IPs, cookies, etc.
        max_breadcrumbs=50,

        # Filter sensitive data
        before_send=filter_sensitive_data,
    )

    logger.info(f"Sentry initialized - environment: {settings.ENVIRONMENT}")


def redact_sensitive(obj):
    """
    Recursively redact sensitive keys in dicts/lists (in place).

    Returns the same object for convenience.
    """
    if isinstance(obj, dict):
        for key in list(obj.keys()):
            if any(sensitive in str(key).lower() for sensitive in SENSITIVE_KEYS):
                obj[key] = REDACTED
            else:
                redact_sensitive(obj[key])
    elif isinstance(obj, list):
        for item in obj:
            redact_sensitive(item)
    return obj


def filter_sensitive_data(event, hint):
    """
    Filter sensitive data before sending to Sentry.

    Removes:
    - Webhook secrets and signatures
    - Admin passwords and access tokens
    - Authorization / cookie headers

    Args:
        event: Sentry event dict
        hint: Additional context

    Returns:
        Modified event or None to drop event
    """
    for section in ("extra", "contexts"):
        if event.get(section):
            redact_sensitive(event[section])

    request = event.get("request")
    if isinstance(request, dict):
        if isinstance(request.get("headers"), dict):
            redact_sensitive(request["headers"])
        # Webhook bodies are signed payloads from third parties
        if "data" in request:
            request["data"] = REDACTED

    return event


def capture_business_error(
    error: Exception,
    context: dict,
    level: str = "error"
):
    """
    Capture a business logic error with enriched context.

    Use this for expected errors that need tracking:
    - Allowlist lookups failing (request allowed anyway)
    - Webhook validation crashing (request rejected)
    - Abuse detection failing for one entity
    - Audit log writes failing

    Args:
        error: The exception that occurred
        context: Dict with business context (admin_id, provider, etc.)
        level: Sentry level (info, warning, error, fatal)

    Example:
        capture_business_error(
            error=e,
            context={
                "operation": "webhook_signature_validation",
                "provider": provider_name,
                "endpoint": webhook_endpoint,
            },
            level="error"
        )
    """
    safe_context = redact_sensitive(dict(context))

    sentry_sdk.capture_exception(
        error,
        level=level,
        extras=safe_context,
    )

    logger.error(
        f"Business error captured: {error}",
        extra=safe_context,
        exc_info=True
    )
