import logging

from servicehub.celery_app import celery_app
from servicehub.db import SessionLocal

logger = logging.getLogger(__name__)


@celery_app.task(name="servicehub.tasks.progress.sweep_overdue_work")
def sweep_overdue_work():
    """Notify once about tasks and milestones that passed their due date."""
    from servicehub.container import container

    session = SessionLocal()
    try:
        return container.overdue_notices().sweep(session)
    except Exception:
        session.rollback()
        logger.exception("overdue_sweep_task_failed")
        raise
    finally:
        session.close()
