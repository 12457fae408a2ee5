"""
Health check utilities for monitoring application components.

Checks:
- Database connectivity
- Redis connectivity (Celery broker, HTTP rate limit storage)
- Webhook activity (last logged request, recent rejections)
- Open abuse alerts
"""

import logging
from datetime import datetime, timedelta
from typing import Dict, Any

from sqlalchemy import func, select, text
from sqlalchemy.exc import OperationalError
import redis

from app.core.config import settings
from app.core.database import AsyncSessionLocal
from app.models.abuse import AbuseAlert, AlertStatus
from app.models.webhook_security import WebhookRequestLog

logger = logging.getLogger(__name__)


async def check_database() -> Dict[str, Any]:
    """
    Check PostgreSQL database connectivity.

    Returns:
        Dict with status, latency, and error (if any)
    """
    start_time = datetime.utcnow()

    try:
        async with AsyncSessionLocal() as session:
            result = await session.execute(text("SELECT 1"))
            result.scalar()

        latency_ms = (datetime.utcnow() - start_time).total_seconds() * 1000

        return {
            "status": "healthy",
            "latency_ms": round(latency_ms, 2),
        }
    except OperationalError as e:
        logger.error(f"Database health check failed: {e}")
        return {
            "status": "unhealthy",
            "error": str(e),
        }
    except Exception as e:
        logger.error(f"Unexpected database error: {e}")
        return {
            "status": "unhealthy",
            "error": str(e),
        }


async def check_redis() -> Dict[str, Any]:
    """
    Check Redis connectivity (Celery broker).

    Returns:
        Dict with status, latency, and error (if any)
    """
    start_time = datetime.utcnow()

    try:
        redis_client = redis.from_url(settings.CELERY_BROKER_URL, socket_connect_timeout=2)
        redis_client.ping()

        latency_ms = (datetime.utcnow() - start_time).total_seconds() * 1000

        redis_client.close()

        return {
            "status": "healthy",
            "latency_ms": round(latency_ms, 2),
        }
    except redis.ConnectionError as e:
        logger.error(f"Redis health check failed: {e}")
        return {
            "status": "unhealthy",
            "error": str(e),
        }
    except Exception as e:
        logger.error(f"Unexpected Redis error: {e}")
        return {
            "status": "unhealthy",
            "error": str(e),
        }


async def check_webhook_activity() -> Dict[str, Any]:
    """
    Summarize inbound webhook traffic over the last hour.

    A high share of rejected requests usually means a provider rotated
    its secret or a misconfigured endpoint is being probed.

    Returns:
        Dict with status, request counts and seconds since the last request
    """
    since = datetime.utcnow() - timedelta(hours=1)

    try:
        async with AsyncSessionLocal() as session:
            result = await session.execute(
                select(
                    func.count(WebhookRequestLog.id),
                    func.count(WebhookRequestLog.id).filter(
                        WebhookRequestLog.signature_valid.is_(False)
                    ),
                    func.max(WebhookRequestLog.created_at),
                ).where(WebhookRequestLog.created_at >= since)
            )
            total, rejected, last_seen = result.one()

        if not total:
            return {
                "status": "unknown",
                "message": "No webhook requests in the last hour",
            }

        rejected_percentage = (rejected / total) * 100
        status = "warning" if rejected_percentage > 50 else "healthy"

        return {
            "status": status,
            "requests_1h": total,
            "rejected_1h": rejected,
            "rejected_percentage": round(rejected_percentage, 1),
            "seconds_since_last": round((datetime.utcnow() - last_seen).total_seconds(), 0),
        }
    except Exception as e:
        logger.error(f"Webhook activity check failed: {e}")
        return {
            "status": "unknown",
            "error": str(e),
        }


async def check_open_alerts() -> Dict[str, Any]:
    """
    Count open abuse alerts by severity.

    Returns:
        Dict with status and open alert counts
    """
    try:
        async with AsyncSessionLocal() as session:
            result = await session.execute(
                select(AbuseAlert.severity, func.count(AbuseAlert.id))
                .where(AbuseAlert.status == AlertStatus.OPEN.value)
                .group_by(AbuseAlert.severity)
            )
            by_severity = {severity: count for severity, count in result.all()}

        open_total = sum(by_severity.values())

        return {
            "status": "warning" if by_severity.get("high") else "healthy",
            "open_alerts": open_total,
            "by_severity": by_severity,
        }
    except Exception as e:
        logger.error(f"Open alert check failed: {e}")
        return {
            "status": "unknown",
            "error": str(e),
        }


async def get_health_metrics() -> Dict[str, Any]:
    """
    Get comprehensive health metrics for all components.

    Returns:
        Dict with overall status and component-specific metrics
    """
    metrics = {
        "database": await check_database(),
        "redis": await check_redis(),
        "webhook_activity": await check_webhook_activity(),
        "abuse_alerts": await check_open_alerts(),
    }

    unhealthy_components = [
        component for component, status in metrics.items()
        if status.get("status") == "unhealthy"
    ]

    if unhealthy_components:
        overall_status = "unhealthy"
    elif any(status.get("status") == "warning" for status in metrics.values()):
        overall_status = "degraded"
    else:
        overall_status = "healthy"

    return {
        "status": overall_status,
        "timestamp": datetime.utcnow().isoformat(),
        "components": metrics,
    }
