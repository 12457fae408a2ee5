"""
Inbound webhook guard.

verify_webhook_request is a FastAPI dependency run before every inbound
webhook handler. It is a linear pipeline with no retries:

    resolve setting -> signature present -> signature valid
        -> source IP allowed -> under rate limit -> accept

Endpoints without an enabled, signature-requiring setting pass through
unchecked. Any unexpected error rejects the request with 500 (fail closed).

Every checked request, accepted or not, is appended to webhook_request_logs.
Those rows are also what the rate limiter and the webhook flood detector
count, so log writes go through their own session and survive a rejection.
"""

import json
import logging
import time
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Optional

from fastapi import Depends, HTTPException, Request
from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.config import settings
from app.core.database import AsyncSessionLocal, get_db
from app.core.failure_policy import FAIL_CLOSED, evaluate_with_fallback
from app.core.security import decrypt_secret
from app.models.webhook_security import WebhookRequestLog, WebhookSecuritySetting
from app.modules.security.allowlist import get_client_ip
from app.modules.security.ip_matching import matches_any
from app.modules.webhooks.signature import extract_signature, verify_signature

logger = logging.getLogger(__name__)

WEBHOOK_FAILURE_POLICY = FAIL_CLOSED

RATE_LIMIT_WINDOW_SECONDS = 60

ERROR_SIGNATURE_REQUIRED = "Webhook signature is required"
ERROR_SIGNATURE_INVALID = "Invalid webhook signature"
ERROR_IP_NOT_ALLOWED = "IP address not in allowlist"
ERROR_RATE_LIMITED = "Rate limit exceeded"
ERROR_VALIDATION_FAILED = "Webhook validation failed"

# Header values never written to webhook_request_logs
REDACTED_HEADERS = {"authorization", "cookie", "x-api-key", "proxy-authorization"}


class WebhookRejected(HTTPException):
    """Rejection raised by the guard; rendered as {"error": detail}."""


@dataclass(frozen=True)
class WebhookVerdict:
    """
    Outcome of the guard pipeline.

    accepted=True with checked=False means no setting applies to the endpoint.
    """
    accepted: bool
    provider: str
    endpoint: str
    checked: bool = False
    status_code: int = 200
    error: Optional[str] = None


def resolve_provider(headers, body_json: Any) -> str:
    """X-Provider header, else the JSON body's "provider", else "unknown"."""
    provider = headers.get("x-provider")
    if provider:
        return provider
    if isinstance(body_json, dict) and body_json.get("provider"):
        return str(body_json["provider"])
    return "unknown"


def parse_json_body(raw_body: bytes) -> Any:
    """Decode a JSON body, or None if it isn't JSON."""
    if not raw_body:
        return None
    try:
        return json.loads(raw_body)
    except (ValueError, UnicodeDecodeError):
        return None


def build_logged_body(raw_body: bytes, body_json: Any) -> Any:
    """Body as stored in the request log; large bodies become a marker."""
    size = len(raw_body or b"")
    if size > settings.WEBHOOK_LOG_BODY_LIMIT:
        return {"truncated": True, "size": size}
    if body_json is not None:
        return body_json
    if not raw_body:
        return {}
    return {"raw": raw_body.decode("utf-8", errors="replace")}


def redact_headers(headers) -> dict:
    return {
        key: ("[REDACTED]" if key.lower() in REDACTED_HEADERS else value)
        for key, value in headers.items()
    }


async def load_webhook_setting(
    session: AsyncSession,
    provider: str,
    endpoint: str,
) -> Optional[WebhookSecuritySetting]:
    """Enabled, signature-requiring setting for the (provider, endpoint) pair."""
    result = await session.execute(
        select(WebhookSecuritySetting).where(
            WebhookSecuritySetting.provider_name == provider,
            WebhookSecuritySetting.webhook_endpoint == endpoint,
            WebhookSecuritySetting.is_enabled.is_(True),
            WebhookSecuritySetting.require_signature.is_(True),
        )
    )
    return result.scalar_one_or_none()


async def count_recent_requests(
    session: AsyncSession,
    provider: str,
    endpoint: str,
    now: Optional[datetime] = None,
    window_seconds: int = RATE_LIMIT_WINDOW_SECONDS,
) -> int:
    """Logged requests for the pair in the trailing window."""
    now = now or datetime.utcnow()
    since = now - timedelta(seconds=window_seconds)
    result = await session.execute(
        select(func.count(WebhookRequestLog.id)).where(
            WebhookRequestLog.provider_name == provider,
            WebhookRequestLog.webhook_endpoint == endpoint,
            WebhookRequestLog.created_at >= since,
        )
    )
    return result.scalar() or 0


async def log_webhook_request(
    provider: str,
    endpoint: str,
    method: str,
    headers: dict,
    body: Any,
    client_ip: Optional[str],
    signature_valid: bool,
    signature_error: Optional[str],
    processing_time_ms: Optional[float] = None,
) -> None:
    """
    Append one row to webhook_request_logs.

    Best-effort: a failed write is logged and never changes the verdict.
    """
    try:
        async with AsyncSessionLocal() as session:
            session.add(
                WebhookRequestLog(
                    provider_name=provider,
                    webhook_endpoint=endpoint,
                    request_method=method,
                    request_headers=headers,
                    request_body=body,
                    request_ip=client_ip,
                    signature_valid=signature_valid,
                    signature_error=signature_error,
                    processing_time_ms=processing_time_ms,
                )
            )
            await session.commit()
    except Exception as e:
        logger.error(
            f"Failed to log webhook request: {e}",
            extra={"provider": provider, "endpoint": endpoint},
        )


async def evaluate_webhook_request(
    session: AsyncSession,
    request: Request,
    raw_body: bytes,
) -> WebhookVerdict:
    """
    Run the guard pipeline for one request.

    Raises on storage or decryption errors; callers apply the failure policy.
    """
    started = time.monotonic()
    body_json = parse_json_body(raw_body)
    provider = resolve_provider(request.headers, body_json)
    endpoint = request.url.path

    setting = await load_webhook_setting(session, provider, endpoint)
    if setting is None:
        return WebhookVerdict(accepted=True, provider=provider, endpoint=endpoint)

    client_ip = get_client_ip(request)

    async def record(valid: bool, error: Optional[str]) -> None:
        await log_webhook_request(
            provider=provider,
            endpoint=endpoint,
            method=request.method,
            headers=redact_headers(request.headers),
            body=build_logged_body(raw_body, body_json),
            client_ip=client_ip,
            signature_valid=valid,
            signature_error=error,
            processing_time_ms=round((time.monotonic() - started) * 1000, 2),
        )

    def reject(status_code: int, error: str) -> WebhookVerdict:
        logger.warning(
            f"Webhook rejected: {error}",
            extra={
                "provider": provider,
                "endpoint": endpoint,
                "client_ip": client_ip,
                "status_code": status_code,
            },
        )
        return WebhookVerdict(
            accepted=False,
            provider=provider,
            endpoint=endpoint,
            checked=True,
            status_code=status_code,
            error=error,
        )

    signature = extract_signature(request.headers)
    if not signature:
        await record(False, "Missing signature")
        return reject(401, ERROR_SIGNATURE_REQUIRED)

    secret = decrypt_secret(setting.secret_key)
    if not verify_signature(
        raw_body,
        signature,
        secret,
        setting.signature_algorithm,
        request.headers,
    ):
        await record(False, "Invalid signature")
        return reject(401, ERROR_SIGNATURE_INVALID)

    if setting.allowed_ips and not matches_any(client_ip, setting.allowed_ips):
        await record(False, "IP not in allowlist")
        return reject(403, ERROR_IP_NOT_ALLOWED)

    recent = await count_recent_requests(session, provider, endpoint)
    if recent >= setting.rate_limit_per_minute:
        await record(False, "Rate limit exceeded")
        return reject(429, ERROR_RATE_LIMITED)

    await record(True, None)
    await session.execute(
        update(WebhookSecuritySetting)
        .where(WebhookSecuritySetting.id == setting.id)
        .values(last_validated_at=datetime.utcnow())
    )

    return WebhookVerdict(accepted=True, provider=provider, endpoint=endpoint, checked=True)


async def verify_webhook_request(
    request: Request,
    db: AsyncSession = Depends(get_db),
) -> WebhookVerdict:
    """
    FastAPI dependency guarding inbound webhook routes.

    Usage:
        @router.post("/{path:path}")
        async def receive(verdict: WebhookVerdict = Depends(verify_webhook_request)):
            ...

    Raises:
        WebhookRejected: 401 / 403 / 429, or 500 when validation itself failed
    """
    raw_body = await request.body()

    verdict = await evaluate_with_fallback(
        lambda: evaluate_webhook_request(db, request, raw_body),
        policy=WEBHOOK_FAILURE_POLICY,
        deny=WebhookVerdict(
            accepted=False,
            provider=request.headers.get("x-provider") or "unknown",
            endpoint=request.url.path,
            checked=True,
            status_code=500,
            error=ERROR_VALIDATION_FAILED,
        ),
        operation="webhook_signature_validation",
        context={"endpoint": request.url.path},
    )

    if not verdict.accepted:
        raise WebhookRejected(status_code=verdict.status_code, detail=verdict.error)

    return verdict
