"""
Abuse and flood detection.

Every detector follows the same pattern: count events of one kind for one
entity in a trailing window, and if the count reaches the threshold make
sure exactly one open AbuseAlert exists for (alert_type, entity_type,
entity_id).

Detectors:
- Failed-login flood: 5 failed logins from one IP in 15 minutes
- Webhook flood: 100 requests to one provider:endpoint in 5 minutes
- Call spike: calls in the last hour >= 3x the same-hour average of the
  previous 7 days (baseline 10/hour when there is no history)

"Exactly one open alert" is enforced by the partial unique index
uq_abuse_detection_alerts_open_entity; ensure_open_alert inserts with
ON CONFLICT DO NOTHING so concurrent breaches cannot race.

Detectors never resolve alerts. resolve_alert() is the admin action.

run_once() is the sweep entry point called by the Celery beat task.
"""

import logging
import math
import uuid
from collections import Counter
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Iterable, Optional
from uuid import UUID

from sqlalchemy import func, select, text
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.alerting import notify_abuse_alert
from app.core.config import settings
from app.core.database import AsyncSessionLocal
from app.core.failure_policy import FAIL_OPEN, evaluate_with_fallback
from app.models.abuse import (
    AbuseAlert,
    AlertStatus,
    AlertType,
    CallSpikeDetection,
    FailedLoginAttempt,
)
from app.models.call_record import CallRecord
from app.models.webhook_security import WebhookRequestLog

logger = logging.getLogger(__name__)

LOGIN_DETECTION_FAILURE_POLICY = FAIL_OPEN

SEVERITY_HIGH = "high"
SEVERITY_MEDIUM = "medium"

RESOLVABLE_STATUSES = {AlertStatus.RESOLVED.value, AlertStatus.DISMISSED.value}


@dataclass(frozen=True)
class DetectionResult:
    """Outcome of one detector run for one entity."""
    breached: bool
    count: int
    threshold: float
    alert_id: Optional[UUID] = None  # Set only when this run opened the alert

    @property
    def alert_opened(self) -> bool:
        return self.alert_id is not None


@dataclass
class SweepReport:
    """Summary of one run_once() sweep."""
    started_at: datetime
    entities_checked: int = 0
    breaches: int = 0
    alerts_opened: int = 0
    errors: int = 0
    opened_alert_ids: list = field(default_factory=list)

    def add(self, result: DetectionResult) -> None:
        self.entities_checked += 1
        if result.breached:
            self.breaches += 1
        if result.alert_opened:
            self.alerts_opened += 1
            self.opened_alert_ids.append(result.alert_id)

    def to_dict(self) -> dict:
        return {
            "started_at": self.started_at.isoformat(),
            "entities_checked": self.entities_checked,
            "breaches": self.breaches,
            "alerts_opened": self.alerts_opened,
            "errors": self.errors,
        }


async def ensure_open_alert(
    session: AsyncSession,
    alert_type: str,
    severity: str,
    entity_type: str,
    entity_id: str,
    threshold_value: float,
    actual_value: float,
    time_window_minutes: int,
    description: str,
) -> Optional[UUID]:
    """
    Open an alert unless one is already open for the same entity.

    Returns:
        id of the newly opened alert, or None if one was already open
    """
    stmt = (
        pg_insert(AbuseAlert)
        .values(
            id=uuid.uuid4(),
            alert_type=alert_type,
            severity=severity,
            entity_type=entity_type,
            entity_id=entity_id,
            threshold_value=threshold_value,
            actual_value=actual_value,
            time_window_minutes=time_window_minutes,
            description=description,
            status=AlertStatus.OPEN.value,
            created_at=datetime.utcnow(),
        )
        .on_conflict_do_nothing(
            index_elements=["alert_type", "entity_type", "entity_id"],
            index_where=text("status = 'open'"),
        )
        .returning(AbuseAlert.id)
    )
    result = await session.execute(stmt)
    alert_id = result.scalar_one_or_none()

    if alert_id is None:
        logger.debug(
            f"Alert already open for {alert_type} {entity_type}={entity_id}",
            extra={"alert_type": alert_type, "entity_id": entity_id},
        )
        return None

    logger.warning(
        f"Abuse alert opened: {alert_type} {entity_type}={entity_id}",
        extra={
            "alert_id": str(alert_id),
            "alert_type": alert_type,
            "severity": severity,
            "entity_type": entity_type,
            "entity_id": entity_id,
            "actual_value": actual_value,
            "threshold_value": threshold_value,
        },
    )
    notify_abuse_alert(
        alert_type=alert_type,
        severity=severity,
        entity_type=entity_type,
        entity_id=entity_id,
        threshold_value=threshold_value,
        actual_value=actual_value,
        time_window_minutes=time_window_minutes,
        description=description,
    )
    return alert_id


# ============================================================================
# Failed-login flood
# ============================================================================

async def detect_failed_login_flood(
    session: AsyncSession,
    email: Optional[str],
    ip_address: str,
    is_admin: bool = False,
    record_attempt: bool = True,
    failure_reason: str = "Invalid credentials",
    now: Optional[datetime] = None,
) -> DetectionResult:
    """
    Record a failed login and check the source IP for a flood.

    Args:
        session: Database session (caller commits)
        email: Email used in the attempt (None from the sweep)
        ip_address: Source IP, the alert entity
        is_admin: Attempt was against the admin console
        record_attempt: False when re-checking from the sweep
        failure_reason: Stored on the attempt row
        now: Evaluation time (defaults to utcnow)
    """
    now = now or datetime.utcnow()
    window_minutes = settings.FAILED_LOGIN_WINDOW_MINUTES
    threshold = settings.FAILED_LOGIN_THRESHOLD

    if record_attempt:
        session.add(
            FailedLoginAttempt(
                email=email,
                ip_address=ip_address,
                is_admin=is_admin,
                failure_reason=failure_reason,
                created_at=now,
            )
        )
        await session.flush()

    result = await session.execute(
        select(func.count(FailedLoginAttempt.id)).where(
            FailedLoginAttempt.ip_address == ip_address,
            FailedLoginAttempt.created_at >= now - timedelta(minutes=window_minutes),
        )
    )
    count = result.scalar() or 0

    if count < threshold:
        return DetectionResult(breached=False, count=count, threshold=threshold)

    alert_id = await ensure_open_alert(
        session,
        alert_type=AlertType.FAILED_LOGIN_FLOOD.value,
        severity=SEVERITY_HIGH,
        entity_type="ip_address",
        entity_id=ip_address,
        threshold_value=threshold,
        actual_value=count,
        time_window_minutes=window_minutes,
        description=(
            f"Multiple failed login attempts from IP {ip_address} "
            f"({count} attempts in {window_minutes} minutes)"
        ),
    )
    return DetectionResult(breached=True, count=count, threshold=threshold, alert_id=alert_id)


async def record_failed_login(
    email: Optional[str],
    ip_address: Optional[str],
    is_admin: bool = False,
    failure_reason: str = "Invalid credentials",
) -> bool:
    """
    Login-path entry point: record the attempt and run flood detection.

    Runs in its own session so the attempt is kept even though the login
    request itself ends in an error response. Never raises.

    Returns:
        True if the IP is currently over the flood threshold
    """
    if not ip_address:
        return False

    async def _detect() -> bool:
        async with AsyncSessionLocal() as session:
            result = await detect_failed_login_flood(
                session,
                email,
                ip_address,
                is_admin=is_admin,
                failure_reason=failure_reason,
            )
            await session.commit()
            return result.breached

    return await evaluate_with_fallback(
        _detect,
        policy=LOGIN_DETECTION_FAILURE_POLICY,
        allow=False,
        deny=False,
        operation="failed_login_flood_detection",
        context={"ip_address": ip_address},
    )


# ============================================================================
# Webhook flood
# ============================================================================

async def detect_webhook_flood(
    session: AsyncSession,
    provider_name: str,
    webhook_endpoint: str,
    now: Optional[datetime] = None,
) -> DetectionResult:
    """Check one provider:endpoint pair for a webhook flood."""
    now = now or datetime.utcnow()
    window_minutes = settings.WEBHOOK_FLOOD_WINDOW_MINUTES
    threshold = settings.WEBHOOK_FLOOD_THRESHOLD

    result = await session.execute(
        select(func.count(WebhookRequestLog.id)).where(
            WebhookRequestLog.provider_name == provider_name,
            WebhookRequestLog.webhook_endpoint == webhook_endpoint,
            WebhookRequestLog.created_at >= now - timedelta(minutes=window_minutes),
        )
    )
    count = result.scalar() or 0

    if count < threshold:
        return DetectionResult(breached=False, count=count, threshold=threshold)

    alert_id = await ensure_open_alert(
        session,
        alert_type=AlertType.WEBHOOK_FLOOD.value,
        severity=SEVERITY_MEDIUM,
        entity_type="provider",
        entity_id=f"{provider_name}:{webhook_endpoint}",
        threshold_value=threshold,
        actual_value=count,
        time_window_minutes=window_minutes,
        description=(
            f"Webhook flood detected from {provider_name} to {webhook_endpoint} "
            f"({count} requests in {window_minutes} minutes)"
        ),
    )
    return DetectionResult(breached=True, count=count, threshold=threshold, alert_id=alert_id)


# ============================================================================
# Call spike
# ============================================================================

def hourly_baseline(
    call_times: Iterable[datetime],
    hour: int,
    default: Optional[float] = None,
) -> float:
    """
    Average calls per day during one hour-of-day.

    Only days that had at least one call in that hour count toward the
    average. With no such day the default baseline is returned.

    Example:
        >>> hourly_baseline([datetime(2024, 1, 1, 14, 5), datetime(2024, 1, 1, 14, 40),
        ...                  datetime(2024, 1, 2, 14, 10)], hour=14)
        1.5
    """
    if default is None:
        default = settings.CALL_SPIKE_DEFAULT_BASELINE

    per_day = Counter(t.date() for t in call_times if t.hour == hour)
    if not per_day:
        return float(default)
    return sum(per_day.values()) / len(per_day)


async def detect_call_spike(
    session: AsyncSession,
    user_id: str,
    agent_id: Optional[str] = None,
    now: Optional[datetime] = None,
) -> DetectionResult:
    """
    Check a user (or one of the user's agents) for a call-volume spike.

    Hours are UTC. The baseline covers the previous seven days up to the
    start of the current window; calls inside the window are not counted
    toward it. A burst therefore cannot raise its own baseline, which makes
    the check stricter than averaging over everything since seven days ago.
    With no history at all the default baseline (10 per hour) applies.
    """
    now = now or datetime.utcnow()
    window = timedelta(hours=settings.CALL_SPIKE_WINDOW_HOURS)
    window_start = now - window
    history_start = now - timedelta(days=settings.CALL_SPIKE_HISTORY_DAYS)

    filters = [CallRecord.user_id == user_id]
    if agent_id:
        filters.append(CallRecord.agent_id == agent_id)

    recent_result = await session.execute(
        select(func.count(CallRecord.id)).where(
            *filters,
            CallRecord.call_start_time >= window_start,
        )
    )
    recent_count = recent_result.scalar() or 0

    history_result = await session.execute(
        select(CallRecord.call_start_time).where(
            *filters,
            CallRecord.call_start_time >= history_start,
            CallRecord.call_start_time < window_start,
        )
    )
    baseline = hourly_baseline(history_result.scalars().all(), hour=now.hour)
    threshold = baseline * settings.CALL_SPIKE_MULTIPLIER

    if recent_count < threshold:
        return DetectionResult(breached=False, count=recent_count, threshold=threshold)

    threshold_count = math.ceil(threshold)
    entity_type = "agent" if agent_id else "user"
    entity_id = f"{user_id}:{agent_id}" if agent_id else str(user_id)
    window_hours = settings.CALL_SPIKE_WINDOW_HOURS

    alert_id = await ensure_open_alert(
        session,
        alert_type=AlertType.CALL_SPIKE.value,
        severity=SEVERITY_MEDIUM,
        entity_type=entity_type,
        entity_id=entity_id,
        threshold_value=threshold_count,
        actual_value=recent_count,
        time_window_minutes=window_hours * 60,
        description=(
            f"Call spike detected: {recent_count} calls in {window_hours} hour(s) "
            f"(threshold: {threshold_count}, avg: {baseline:.2f})"
        ),
    )

    session.add(
        CallSpikeDetection(
            user_id=str(user_id),
            agent_id=agent_id,
            time_window_start=window_start,
            time_window_end=now,
            call_count=recent_count,
            threshold_count=threshold_count,
            average_calls_per_hour=baseline,
            is_alerted=alert_id is not None,
        )
    )
    await session.flush()

    return DetectionResult(
        breached=True,
        count=recent_count,
        threshold=threshold,
        alert_id=alert_id,
    )


# ============================================================================
# Resolution
# ============================================================================

async def resolve_alert(
    session: AsyncSession,
    alert_id: UUID,
    admin_id: Optional[UUID],
    status: str = AlertStatus.RESOLVED.value,
    notes: Optional[str] = None,
) -> Optional[AbuseAlert]:
    """
    Close an alert on behalf of an admin.

    Returns:
        The updated alert, or None if it doesn't exist

    Raises:
        ValueError: status is not "resolved" or "dismissed"
    """
    if status not in RESOLVABLE_STATUSES:
        raise ValueError(f"Invalid resolution status: {status}")

    alert = await session.get(AbuseAlert, alert_id)
    if alert is None:
        return None

    alert.status = status
    alert.resolved_by = admin_id
    alert.resolved_at = datetime.utcnow()
    alert.resolution_notes = notes
    await session.flush()

    logger.info(
        f"Abuse alert {alert_id} marked {status}",
        extra={"alert_id": str(alert_id), "admin_id": str(admin_id), "status": status},
    )
    return alert


# ============================================================================
# Sweep
# ============================================================================

async def _recent_failed_login_ips(session: AsyncSession, now: datetime) -> list:
    since = now - timedelta(minutes=settings.FAILED_LOGIN_WINDOW_MINUTES)
    result = await session.execute(
        select(FailedLoginAttempt.ip_address)
        .where(FailedLoginAttempt.created_at >= since)
        .group_by(FailedLoginAttempt.ip_address)
    )
    return list(result.scalars().all())


async def _recent_webhook_pairs(session: AsyncSession, now: datetime) -> list:
    since = now - timedelta(minutes=settings.WEBHOOK_FLOOD_WINDOW_MINUTES)
    result = await session.execute(
        select(WebhookRequestLog.provider_name, WebhookRequestLog.webhook_endpoint)
        .where(WebhookRequestLog.created_at >= since)
        .group_by(WebhookRequestLog.provider_name, WebhookRequestLog.webhook_endpoint)
    )
    return [(row[0], row[1]) for row in result.all()]


async def _recent_call_pairs(session: AsyncSession, now: datetime) -> list:
    since = now - timedelta(hours=settings.CALL_SPIKE_WINDOW_HOURS)
    result = await session.execute(
        select(CallRecord.user_id, CallRecord.agent_id)
        .where(CallRecord.call_start_time >= since)
        .group_by(CallRecord.user_id, CallRecord.agent_id)
    )
    return [(row[0], row[1]) for row in result.all()]


async def run_once(session: AsyncSession, now: Optional[datetime] = None) -> SweepReport:
    """
    Evaluate every recently active entity against every detector.

    Each entity is committed on its own; a failure is rolled back, logged,
    and the sweep moves on.

    Usage:
        async with AsyncSessionLocal() as session:
            report = await run_once(session)
    """
    now = now or datetime.utcnow()
    report = SweepReport(started_at=now)

    ips = await _recent_failed_login_ips(session, now)
    webhook_pairs = await _recent_webhook_pairs(session, now)
    call_pairs = await _recent_call_pairs(session, now)

    checks = (
        [
            (f"failed_login ip={ip}",
             lambda ip=ip: detect_failed_login_flood(session, None, ip, record_attempt=False, now=now))
            for ip in ips
        ]
        + [
            (f"webhook {provider}:{endpoint}",
             lambda provider=provider, endpoint=endpoint: detect_webhook_flood(session, provider, endpoint, now=now))
            for provider, endpoint in webhook_pairs
        ]
        + [
            (f"call_spike user={user_id} agent={agent_id}",
             lambda user_id=user_id, agent_id=agent_id: detect_call_spike(session, user_id, agent_id, now=now))
            for user_id, agent_id in call_pairs
        ]
    )

    for label, check in checks:
        try:
            result = await check()
            await session.commit()
            report.add(result)
        except Exception as e:
            await session.rollback()
            report.errors += 1
            logger.error(f"Abuse detection failed for {label}: {e}", exc_info=True)

    logger.info(
        f"Abuse detection sweep complete: {report.alerts_opened} alerts opened",
        extra=report.to_dict(),
    )
    return report
