from celery import Celery
from celery.schedules import crontab
from celery.signals import setup_logging as celery_setup_logging
from labwatch.core.config import settings
import sys

# Create Celery app
celery_app = Celery(
    "labwatch_backend",
    broker=settings.CELERY_BROKER_URL,
    backend=settings.CELERY_RESULT_BACKEND,
    include=[
        "labwatch.workers.celery_tasks.breakdown_tasks",
    ]
)

# Configure Celery
celery_app.conf.update(
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",
    timezone="UTC",
    enable_utc=True,
    result_expires=3600,
)

# Windows-specific configuration
if sys.platform == 'win32':
    celery_app.conf.update(
        worker_pool='threads',
        worker_concurrency=4
    )

celery_app.conf.beat_schedule = {
    'inactivity-sweep-daily': {
        'task': 'labwatch.workers.celery_tasks.breakdown_tasks.run_inactivity_sweep_task',
        'schedule': crontab(hour=settings.SWEEP_HOUR, minute=settings.SWEEP_MINUTE),
    },
}


@celery_setup_logging.connect
def configure_worker_logging(**kwargs):
    """Use the application's logging setup instead of celery's"""
    from labwatch.core.logging_config import setup_logging
    setup_logging()
