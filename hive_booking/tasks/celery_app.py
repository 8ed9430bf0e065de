from datetime import timedelta
import os

from celery import Celery

from hive_booking.core.config import settings

broker_url = os.getenv("CELERY_BROKER_URL", "redis://redis:6379/0")
result_backend = os.getenv("CELERY_RESULT_BACKEND", "redis://redis:6379/1")

celery_app = Celery(
    "hive_booking",
    broker=broker_url,
    backend=result_backend,
    include=["hive_booking.tasks.lifecycle", "hive_booking.tasks.reminders"],
)

celery_app.conf.update(
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",
    timezone="UTC",
    enable_utc=True,
    beat_schedule={
        "complete-finished-appointments": {
            "task": "appointments.complete_finished",
            "schedule": timedelta(minutes=settings.celery_completion_interval_minutes),
        },
        "release-unpaid-appointments": {
            "task": "appointments.release_unpaid",
            "schedule": timedelta(minutes=settings.celery_release_interval_minutes),
        },
        "remind-upcoming-appointments": {
            "task": "appointments.remind_upcoming",
            "schedule": timedelta(minutes=settings.celery_reminder_interval_minutes),
        },
    },
)
