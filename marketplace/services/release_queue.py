"""
Durable payment-release queue.

Completing an order writes a PaymentReleaseTask due PAYMENT_RELEASE_DELAY_SECONDS
later, inside the same transaction as the completion. A sweep
(`process_due_release_tasks`) then attempts each due task once:

- success            -> SUCCEEDED, completed_at set
- failure, tries left -> attempts += 1, last_error, run_after = now + retry * attempts
- failure, exhausted  -> FAILED (visible on the order, never retried again)

Each task runs in its own session so one bad order cannot roll back another.
"""
import logging
from datetime import datetime, timedelta
from typing import Callable, Optional
from sqlalchemy.orm import Session, sessionmaker

from marketplace.config import Settings
from marketplace.models import Order, PaymentReleaseTask, ReleaseTaskStatus, utcnow

logger = logging.getLogger(__name__)

# release(db, order_id) -> raises on failure
ReleaseFn = Callable[[Session, str], object]


class PaymentReleaseQueue:
    def __init__(self, db: Session, settings: Settings, clock: Callable[[], datetime] = utcnow):
        self.db = db
        self.settings = settings
        self.clock = clock

    def enqueue(self, order: Order) -> PaymentReleaseTask:
        """Schedule the release of `order`'s payment. One task per order."""
        run_after = self.clock() + timedelta(seconds=self.settings.PAYMENT_RELEASE_DELAY_SECONDS)
        task = self.db.query(PaymentReleaseTask).filter(
            PaymentReleaseTask.order_id == order.id
        ).first()
        if task is None:
            task = PaymentReleaseTask(order_id=order.id)
            self.db.add(task)
        task.status = ReleaseTaskStatus.PENDING
        task.attempts = 0
        task.max_attempts = self.settings.PAYMENT_RELEASE_MAX_ATTEMPTS
        task.run_after = run_after
        task.last_error = None
        self.db.flush()
        logger.info(f"Payment release for order {order.id} scheduled at {run_after.isoformat()}")
        return task


def process_due_release_tasks(
    session_factory: sessionmaker,
    release: ReleaseFn,
    settings: Settings,
    now: Optional[datetime] = None,
) -> dict:
    """
    Run every PENDING task whose run_after <= now exactly once.
    Returns counts: {"attempted", "succeeded", "rescheduled", "failed", "skipped"}.
    A task that vanished or was settled elsewhere after listing is skipped.
    """
    now = now or utcnow()
    counts = {"attempted": 0, "succeeded": 0, "rescheduled": 0, "failed": 0, "skipped": 0}

    db = session_factory()
    try:
        due_ids = [
            task_id for (task_id,) in db.query(PaymentReleaseTask.id).filter(
                PaymentReleaseTask.status == ReleaseTaskStatus.PENDING,
                PaymentReleaseTask.run_after <= now,
            ).order_by(PaymentReleaseTask.run_after.asc()).all()
        ]
    finally:
        db.close()

    for task_id in due_ids:
        counts["attempted"] += 1
        outcome = _run_one(session_factory, release, settings, task_id, now)
        counts[outcome] += 1

    if due_ids:
        logger.info(f"Release sweep: {counts}")
    return counts


def _run_one(session_factory: sessionmaker, release: ReleaseFn, settings: Settings, task_id: str, now: datetime) -> str:
    db = session_factory()
    try:
        task = db.get(PaymentReleaseTask, task_id)
        if task is None or task.status != ReleaseTaskStatus.PENDING:
            logger.info(f"Payment release task {task_id} no longer pending, skipped")
            return "skipped"
        order_id = task.order_id
        release(db, order_id)
        task.status = ReleaseTaskStatus.SUCCEEDED
        task.attempts += 1
        task.completed_at = now
        task.last_error = None
        db.commit()
        logger.info(f"Payment released for order {order_id}")
        return "succeeded"
    except Exception as e:
        db.rollback()
        logger.error(f"Payment release task {task_id} failed: {e}", exc_info=True)
        return _record_failure(session_factory, settings, task_id, str(e), now)
    finally:
        db.close()


def _record_failure(session_factory: sessionmaker, settings: Settings, task_id: str, error: str, now: datetime) -> str:
    db = session_factory()
    try:
        task = db.get(PaymentReleaseTask, task_id)
        if task is None:
            return "skipped"
        task.attempts += 1
        task.last_error = error[:2000]
        if task.attempts >= task.max_attempts:
            task.status = ReleaseTaskStatus.FAILED
            task.completed_at = now
            outcome = "failed"
            logger.error(f"Payment release for order {task.order_id} gave up after {task.attempts} attempts")
        else:
            task.run_after = now + timedelta(seconds=settings.PAYMENT_RELEASE_RETRY_SECONDS * task.attempts)
            outcome = "rescheduled"
        db.commit()
        return outcome
    except Exception:
        db.rollback()
        raise
    finally:
        db.close()
