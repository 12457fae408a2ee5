"""
Celery application configuration for background task processing.

The only scheduled job is the abuse detection sweep, triggered by Celery
beat every ABUSE_SWEEP_INTERVAL_MINUTES. The sweep itself lives in
app.modules.abuse.detectors.run_once(); the task is a thin wrapper.
"""

from celery import Celery
from celery.schedules import crontab
from kombu import Queue

from app.core.config import settings


# Initialize Celery app
celery_app = Celery(
    "voice_agent_admin",
    broker=settings.CELERY_BROKER_URL,
    backend=settings.CELERY_RESULT_BACKEND,
    include=[
        "app.tasks",
        "app.tasks.abuse",
    ]
)


# Celery Configuration
celery_app.conf.update(
    # Serialization (JSON only for security)
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",
    timezone="UTC",
    enable_utc=True,

    # Task execution settings
    task_acks_late=True,  # Acknowledge after task completes (reliability)
    task_reject_on_worker_lost=True,  # Requeue if worker crashes
    task_track_started=True,

    # Task timeout settings (prevent stuck tasks)
    task_time_limit=60,
    task_soft_time_limit=50,

    task_annotations={
        "app.tasks.abuse.run_abuse_detection_sweep": {
            "time_limit": 240,  # Must finish before the next beat tick
            "soft_time_limit": 220,
        },
    },

    # Result backend settings
    result_expires=3600,

    # Worker settings
    worker_prefetch_multiplier=1,
    worker_max_tasks_per_child=1000,  # Restart worker after 1000 tasks (prevent memory leaks)

    # Queue settings
    task_queues=(
        Queue("default", routing_key="task.#"),
        Queue("security", routing_key="security.#"),
    ),
    task_default_queue="default",
    task_default_exchange="tasks",
    task_default_exchange_type="topic",
    task_default_routing_key="task.default",
)


# Celery Beat Schedule (periodic tasks)
celery_app.conf.beat_schedule = {
    # Abuse detection sweep (failed logins, webhook floods, call spikes)
    "abuse-detection-sweep": {
        "task": "app.tasks.abuse.run_abuse_detection_sweep",
        "schedule": crontab(minute=f"*/{settings.ABUSE_SWEEP_INTERVAL_MINUTES}"),
        "options": {"queue": "security", "expires": settings.ABUSE_SWEEP_INTERVAL_MINUTES * 60},
    },
}


celery_app.conf.task_routes = {
    "app.tasks.abuse.run_abuse_detection_sweep": {"queue": "security"},
}


# Logging configuration
celery_app.conf.worker_hijack_root_logger = False  # Don't override logging config
celery_app.conf.worker_log_format = "[%(asctime)s: %(levelname)s/%(processName)s] %(message)s"
celery_app.conf.worker_task_log_format = (
    "[%(asctime)s: %(levelname)s/%(processName)s] "
    "[%(task_name)s(%(task_id)s)] %(message)s"
)


if __name__ == "__main__":
    celery_app.start()
