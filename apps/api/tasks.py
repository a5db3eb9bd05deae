"""Task queue wrappers - API sends task names, never imports worker code."""
from typing import Optional

from celery import Celery
from packages.common.config import get_settings

settings = get_settings()

celery_app = Celery('expense_terminal')
celery_app.conf.broker_url = settings.celery_broker_url
celery_app.conf.result_backend = settings.celery_result_backend


def queue_classification_retry(owner_id: Optional[str] = None, limit: int = 100) -> str:
    """Queue a classification pass over rows whose category is still null."""
    task = celery_app.send_task(
        'services.worker.tasks.classify_pending.classify_unclassified_task',
        kwargs={"owner_id": owner_id, "limit": limit},
    )
    return task.id
