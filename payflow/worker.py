from celery import Celery
from celery.signals import setup_logging as celery_setup_logging

from payflow.core.config import settings
from payflow.core.logging import setup_logging

# Initialize Celery
celery_app = Celery("worker", broker=settings.REDIS_URL, backend=settings.REDIS_URL)

# Tell Celery where to find our tasks
celery_app.conf.imports = ("payflow.tasks",)

celery_app.conf.beat_schedule = {
    "requeue-due-webhook-retries": {
        "task": "payflow.tasks.requeue_due_webhook_retries",
        "schedule": float(settings.WEBHOOK_RETRY_SWEEP_INTERVAL_SECONDS),
    },
}


@celery_setup_logging.connect
def configure_worker_logging(**kwargs):
    setup_logging()
