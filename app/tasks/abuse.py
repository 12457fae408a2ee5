"""
Celery task for the periodic abuse detection sweep.

Scheduled by Celery beat (see app.core.celery_app). All detection logic is
in app.modules.abuse.detectors.run_once().
"""

import logging

from app.core.celery_app import celery_app
from app.core.celery_utils import run_async_task

logger = logging.getLogger(__name__)


async def _sweep() -> dict:
    from app.core.database import AsyncSessionLocal
    from app.modules.abuse.detectors import run_once

    async with AsyncSessionLocal() as session:
        report = await run_once(session)

    return report.to_dict()


@celery_app.task(name="app.tasks.abuse.run_abuse_detection_sweep")
def run_abuse_detection_sweep():
    """
    Evaluate recently active IPs, webhook endpoints and callers for abuse.

    No retries: the next beat tick re-evaluates the same windows.

    Returns:
        SweepReport as a dict
    """
    logger.info("Starting abuse detection sweep")

    try:
        result = run_async_task(_sweep())
    except Exception as e:
        logger.error(f"Abuse detection sweep failed: {e}", exc_info=True)
        raise

    logger.info("Abuse detection sweep finished", extra=result)
    return result
