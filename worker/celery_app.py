from celery import Celery
from celery.schedules import crontab

from ticketshare.core.config import settings

celery = Celery(
    "ticketshare-worker",
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
        "worker.tasks.publish_delivery": {"queue": "publish"},
        "worker.tasks.auto_review_sweep": {"queue": "default"},
    },
    beat_schedule={
        "auto-review-sweep": {
            "task": "worker.tasks.auto_review_sweep",
            "schedule": crontab(minute=0, hour="*/6"),
        },
    },
)
