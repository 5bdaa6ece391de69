from celery import Celery
from celery.schedules import crontab

from kilofly.core.config import settings

celery = Celery(
    "kilofly-worker",
    broker=settings.rabbitmq_url,
    backend=settings.redis_url,
    include=["worker.tasks", "worker.tasks_publish"],
)

celery.conf.update(
    task_acks_late=True,
    worker_prefetch_multiplier=1,
    task_default_queue="default",
    task_routes={
        "worker.tasks.process_outbox_event": {"queue": "outbox"},
        "worker.tasks.refresh_exchange_rates": {"queue": "default"},
        "worker.tasks.publish_push_delivery": {"queue": "publish"},
    },
    beat_schedule={
        "refresh-exchange-rates": {
            "task": "worker.tasks.refresh_exchange_rates",
            "schedule": crontab(minute=0, hour="*/6"),
        },
    },
)
