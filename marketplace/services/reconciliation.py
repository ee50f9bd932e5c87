"""
Reconciliation sweeps run outside request handling.

- payment releases that came due (release_queue.process_due_release_tasks)
- storage objects queued for deletion: superseded revision videos and
  uploads whose request never committed

`run_sweeps` is shared by the in-process loop started from main.py and by
scripts/reconcile.py.
"""
import asyncio
import logging
from datetime import datetime, timedelta
from typing import Optional
from sqlalchemy.orm import Session, sessionmaker

from marketplace.config import Settings
from marketplace.errors import UpstreamServiceError
from marketplace.models import CleanupStatus, StorageCleanup, Submission, utcnow
from marketplace.services.notifications import NotificationService
from marketplace.services.payments import PaymentBridge, StripeGateway
from marketplace.services.release_queue import process_due_release_tasks
from marketplace.services.storage import S3Storage

logger = logging.getLogger(__name__)


def sweep_storage_cleanups(
    session_factory: sessionmaker,
    storage: S3Storage,
    settings: Settings,
    now: Optional[datetime] = None,
) -> dict:
    """
    Try each pending cleanup older than STORAGE_CLEANUP_GRACE_SECONDS once.
    An object a submission still points at is never deleted; its row is closed.
    Returns {"deleted", "still_pending", "kept"}.
    """
    now = now or utcnow()
    cutoff = now - timedelta(seconds=settings.STORAGE_CLEANUP_GRACE_SECONDS)
    counts = {"deleted": 0, "still_pending": 0, "kept": 0}
    db = session_factory()
    try:
        pending = db.query(StorageCleanup).filter(
            StorageCleanup.status == CleanupStatus.PENDING,
            StorageCleanup.created_at <= cutoff,
        ).order_by(StorageCleanup.created_at.asc()).all()

        for cleanup in pending:
            in_use = db.query(Submission.id).filter(
                Submission.storage_path == cleanup.storage_path
            ).first()
            if in_use is not None:
                cleanup.status = CleanupStatus.DONE
                cleanup.resolved_at = now
                counts["kept"] += 1
                logger.warning(f"Skipped cleanup of {cleanup.storage_path}: still referenced by submission {in_use.id}")
                continue

            cleanup.attempts += 1
            try:
                storage.delete(cleanup.storage_path)
            except UpstreamServiceError as e:
                cleanup.last_error = str(e)
                counts["still_pending"] += 1
                logger.warning(f"Cleanup of {cleanup.storage_path} failed: {e}")
                continue
            cleanup.status = CleanupStatus.DONE
            cleanup.resolved_at = now
            counts["deleted"] += 1
        db.commit()
    except Exception:
        db.rollback()
        raise
    finally:
        db.close()

    if any(counts.values()):
        logger.info(f"Storage cleanup sweep: {counts}")
    return counts


def make_release_fn(gateway: StripeGateway, settings: Settings):
    """Bind the gateway into the (db, order_id) callable the release queue expects."""
    def release(db: Session, order_id: str):
        bridge = PaymentBridge(db, gateway, NotificationService(db), settings)
        return bridge.release_order_payment(order_id)
    return release


def run_sweeps(
    session_factory: sessionmaker,
    gateway: StripeGateway,
    storage: S3Storage,
    settings: Settings,
    now: Optional[datetime] = None,
) -> dict:
    return {
        "releases": process_due_release_tasks(
            session_factory, make_release_fn(gateway, settings), settings, now=now
        ),
        "cleanups": sweep_storage_cleanups(session_factory, storage, settings, now=now),
    }


async def sweep_forever(session_factory: sessionmaker, gateway: StripeGateway, storage: S3Storage, settings: Settings):
    """Background loop owned by the app lifespan. Sweeps run in a worker thread."""
    logger.info(f"Reconciliation loop started (every {settings.WORKER_POLL_INTERVAL_SECONDS}s)")
    while True:
        try:
            await asyncio.to_thread(run_sweeps, session_factory, gateway, storage, settings)
        except Exception as e:
            logger.error(f"Reconciliation sweep crashed: {e}", exc_info=True)
        await asyncio.sleep(settings.WORKER_POLL_INTERVAL_SECONDS)
