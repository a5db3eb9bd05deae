"""
Celery application configuration for background tasks
"""
from celery import Celery
from celery.signals import worker_process_init, worker_process_shutdown
import structlog

from packages.common.config import get_settings

logger = structlog.get_logger()
settings = get_settings()

# Create Celery app
app = Celery(
    "expense_terminal_worker",
    broker=settings.celery_broker_url,
    backend=settings.celery_result_backend,
)

# Celery configuration
app.conf.update(
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",
    timezone="UTC",
    enable_utc=True,

    # Task execution settings
    task_acks_late=True,
    task_reject_on_worker_lost=True,
    task_time_limit=900,  # 15 minutes hard limit
    task_soft_time_limit=840,

    # Result backend settings
    result_expires=3600,
    result_extended=True,

    # Worker settings
    worker_prefetch_multiplier=1,
    worker_max_tasks_per_child=50,

    task_routes={
        "services.worker.tasks.classify_pending.*": {"queue": "classification"},
    },

    # Sweep rows whose classification failed (service down, bad response)
    beat_schedule={
        "classify-unclassified": {
            "task": "services.worker.tasks.classify_pending.classify_unclassified_task",
            "schedule": 3600.0,
            "kwargs": {"owner_id": None, "limit": 500},
            "options": {"queue": "classification"},
        },
    },
)

# Import tasks explicitly to register them
from services.worker.tasks import classify_pending  # noqa: E402,F401


@worker_process_init.connect
def init_worker(**kwargs):
    """Database init is lazy: each task run opens it inside its own event loop"""
    logger.info("celery_worker_starting",
                concurrency=kwargs.get("concurrency", "unknown"))


@worker_process_shutdown.connect
def shutdown_worker(**kwargs):
    logger.info("celery_worker_shutting_down")


if __name__ == "__main__":
    app.start()
