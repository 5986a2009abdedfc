import logging

from celery import Celery
from celery.signals import worker_process_init
from kombu import Queue

from newsingest.shared.config import get_settings
from newsingest.shared.log_config import configure_logging

logger = logging.getLogger(__name__)

settings = get_settings()


@worker_process_init.connect
def init_worker_process(**kwargs):
    """Route worker logs through the same structlog pipeline as the API."""
    configure_logging(settings)
    logger.info("Celery worker process initialized")


celery_app = Celery(
    "newsingest",
    broker=settings.CELERY_BROKER_URL,
    backend=settings.CELERY_RESULT_BACKEND,
    include=[
        "newsingest.core.scheduler.tasks"
    ]
)

celery_app.conf.update(
    # Serialization settings
    task_serializer=settings.CELERY_TASK_SERIALIZER,
    accept_content=settings.CELERY_ACCEPT_CONTENT,
    result_serializer=settings.CELERY_RESULT_SERIALIZER,

    # Time and timezone settings
    timezone=settings.CELERY_TIMEZONE,
    enable_utc=settings.CELERY_ENABLE_UTC,

    # Task tracking settings
    task_track_started=settings.CELERY_TASK_TRACK_STARTED,
    task_reject_on_worker_lost=False,

    # One scraping job at a time per worker process
    worker_prefetch_multiplier=settings.CELERY_WORKER_PREFETCH_MULTIPLIER,
    worker_max_tasks_per_child=100,

    task_routes={
        "newsingest.core.scheduler.tasks.run_scrape_job_task": {"queue": "scrape_queue"},
    },
    task_default_queue="default",
    task_queues=(
        Queue("default", routing_key="default"),
        Queue("scrape_queue", routing_key="scrape_queue"),
    ),

    result_expires=3600,

    task_soft_time_limit=settings.JOB_EXECUTION_TIMEOUT - 60,
    task_time_limit=settings.JOB_EXECUTION_TIMEOUT,
    # A redelivered job would run twice; re-runs are new jobs instead
    task_acks_late=False,

    broker_connection_retry_on_startup=True,
    broker_connection_max_retries=10,

    worker_send_task_events=True,
    task_send_sent_event=True,
)
