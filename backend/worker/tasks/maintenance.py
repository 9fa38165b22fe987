"""Celery tasks for maintenance and cleanup.

Runs daily at 3 AM (configured in beat_schedule) and purges finished
executions older than EXECUTION_RETENTION_DAYS. Sync ledger rows are
kept; they are the audit trail of what reached external systems.
"""

import logging
from typing import Optional

from worker.celery_app import celery_app
from worker.tasks.executions import run_with_service

logger = logging.getLogger(__name__)


@celery_app.task(
    name="worker.tasks.maintenance.cleanup_old_executions",
    queue="default",
)
def cleanup_old_executions(retention_days: Optional[int] = None) -> dict:
    """Delete completed, failed and cancelled executions past retention."""
    logger.info("Running daily cleanup")

    async def _cleanup(service):
        return await service.cleanup_old_executions(retention_days)

    deleted = run_with_service(_cleanup)
    logger.info(f"Daily cleanup completed: {deleted} executions deleted")
    return {"executions_deleted": deleted}
