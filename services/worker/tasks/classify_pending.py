"""
Background classification retry

Rows whose classification failed (reasoning service down, unparseable
response) stay pending with a null category. This task sweeps them,
either for one owner (queued from the API) or for everyone (beat).
"""
import asyncio
from typing import Any, Dict, Optional
from uuid import UUID

import structlog
from celery import Task

from packages.common.config import get_settings
from packages.common.database import sessionmanager
from packages.domain.categorization.schemas import DoneEvent, ErrorEvent
from packages.domain.pipeline import build_pipeline
from services.worker.celery_app import app

logger = structlog.get_logger()


class ClassificationTask(Task):
    """Base task with retry on infrastructure failures"""
    autoretry_for = (ConnectionError, OSError)
    retry_kwargs = {"max_retries": 3}
    retry_backoff = True


async def _classify_unclassified(owner_id: Optional[str], limit: int) -> Dict[str, Any]:
    settings = get_settings()
    # The engine is bound to this run's event loop
    if not settings.use_mock_data:
        await sessionmanager.init(settings.database_url)
    try:
        pipeline = build_pipeline(settings, sessions=sessionmanager)
        events = await pipeline.classify_unclassified(
            owner_id=UUID(owner_id) if owner_id else None,
            limit=limit,
        )
    finally:
        await sessionmanager.close()

    done = next((e for e in events if isinstance(e, DoneEvent)), None)
    return {
        "total": done.total if done else 0,
        "successful": done.successful if done else 0,
        "cached": done.cached_count if done else 0,
        "errors": sum(1 for e in events if isinstance(e, ErrorEvent)),
    }


@app.task(base=ClassificationTask, name="services.worker.tasks.classify_pending.classify_unclassified_task")
def classify_unclassified_task(owner_id: Optional[str] = None, limit: int = 100) -> Dict[str, Any]:
    """
    Classify pending transactions that still have no category.

    Args:
        owner_id: Restrict to one owner (None sweeps every owner)
        limit: Maximum rows per run, oldest first

    Returns:
        Counts from the final done event plus the number of error events
    """
    logger.info("classification_retry_task_started", owner_id=owner_id, limit=limit)
    result = asyncio.run(_classify_unclassified(owner_id, limit))
    logger.info("classification_retry_task_complete", owner_id=owner_id, **result)
    return result
