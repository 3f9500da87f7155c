"""
Celery tasks for store maintenance.
"""

import logging
from celery import shared_task

logger = logging.getLogger(__name__)


@shared_task(name="cleanup_expired_auth_rows")
def cleanup_expired_auth_rows_task():
    """
    Periodic task deleting expired auth rows.

    Scheduled hourly by Celery beat (see authcore.core.celery_app). Expiry is
    enforced at read time regardless; this only reclaims space.
    """
    from authcore.core.database import SessionLocal
    from authcore.core.maintenance import cleanup_expired_rows

    db = SessionLocal()
    try:
        deleted = cleanup_expired_rows(db)
        return {"status": "success", "deleted": deleted}
    except Exception as e:
        logger.error(f"Error cleaning up expired auth rows: {str(e)}")
        raise
    finally:
        db.close()
