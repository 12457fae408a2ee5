"""
Celery tasks package.

Tasks:
- app.tasks.abuse.run_abuse_detection_sweep - periodic abuse detection
"""

import logging

from app.core.celery_app import celery_app

logger = logging.getLogger(__name__)


@celery_app.task(name="test_celery_connection")
def test_celery_connection():
    """
    Verify the worker is connected to the broker and executing tasks.

    Usage:
        celery -A app.core.celery_app call test_celery_connection
    """
    logger.info("Celery connection test task executed")

    return {
        "status": "success",
        "task_name": "test_celery_connection",
    }
