"""Celery worker entry point for the print-shop notification tasks.

Workers pick up delayed and bulk sends from ``notifications.tasks`` on the
``notifications`` queue, and beat checks the SMTP relay once an hour so a
broken credential shows up in the logs before customers miss their emails.
"""
from __future__ import annotations

import os
from celery import Celery
from celery.schedules import crontab

DEFAULT_BROKER_URL = os.getenv("CELERY_BROKER_URL", os.getenv("REDIS_URL", "redis://localhost:6379/0"))
DEFAULT_BACKEND_URL = os.getenv("CELERY_RESULT_BACKEND", DEFAULT_BROKER_URL)
NOTIFICATION_QUEUE = os.getenv("NOTIFY_TASK_QUEUE", "notifications")


def create_celery_app() -> Celery:
    """Create the Celery app that runs notification sends and the relay check."""
    celery_app = Celery(
        "printshop_notifications",
        broker=DEFAULT_BROKER_URL,
        backend=DEFAULT_BACKEND_URL,
        include=["notifications.tasks"],
    )

    celery_app.conf.update(
        # payloads are NotificationRequest.to_dict(); attachments travel as base64
        task_serializer="json",
        result_serializer="json",
        accept_content=["json"],
        timezone=os.getenv("CELERY_TIMEZONE", "Europe/Madrid"),
        enable_utc=True,
        task_default_queue=NOTIFICATION_QUEUE,
        task_routes={"notifications.tasks.*": {"queue": NOTIFICATION_QUEUE}},
        beat_schedule={
            "verify-smtp-transport": {
                "task": "notifications.tasks.verify_transport",
                "schedule": crontab(minute=int(os.getenv("NOTIFY_VERIFY_MINUTE", "0"))),
            },
        },
    )

    return celery_app


celery_app = create_celery_app()
