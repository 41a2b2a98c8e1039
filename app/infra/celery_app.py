"""Celery application used for the periodic event-ledger drain."""

from celery import Celery

from app.config import get_settings

settings = get_settings()

celery_app = Celery(
    "mensajero",
    broker=settings.celery_broker_url or settings.redis_url,
    include=["app.tasks.process_agent_events_task"],
)

celery_app.conf.update(
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",
    timezone="UTC",
    enable_utc=True,
    task_ignore_result=True,
    beat_schedule={
        "process-agent-events": {
            "task": "app.tasks.process_agent_events_task.process_agent_events_task",
            "schedule": 60.0,
            "kwargs": {"limit": 10},
        },
    },
)
