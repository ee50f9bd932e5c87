"""
Order workflow: pending -> in_progress -> completed, or pending -> rejected.

Approval writes an order_approved milestone and notifies the brand.
Completion records who completed it and enqueues the payment release on the
durable queue (see release_queue.py) instead of firing it in-process.
"""
import logging
from typing import Optional
from sqlalchemy.orm import Session

from marketplace.auth import Principal
from marketplace.errors import NotFoundError, PermissionDeniedError
from marketplace.models import (
    ORDER_TRANSITIONS,
    Order,
    OrderMilestone,
    OrderStatus,
    ReleaseTaskStatus,
    utcnow,
)
from marketplace.services.notifications import NotificationService
from marketplace.services.payments import PaymentBridge
from marketplace.services.release_queue import PaymentReleaseQueue
from marketplace.services.transitions import ensure_transition

logger = logging.getLogger(__name__)


class OrderWorkflow:
    def __init__(
        self,
        db: Session,
        notifications: NotificationService,
        release_queue: PaymentReleaseQueue,
        payments: PaymentBridge,
    ):
        self.db = db
        self.notifications = notifications
        self.release_queue = release_queue
        self.payments = payments

    def _load(self, order_id: str) -> Order:
        order = self.db.get(Order, order_id)
        if order is None:
            raise NotFoundError("Order not found")
        return order

    def get(self, order_id: str, actor: Principal) -> Order:
        order = self._load(order_id)
        if actor.user_id not in (order.user_id, order.creator_id) and not actor.is_admin:
            raise PermissionDeniedError("Unauthorized access to order")
        return order

    def _add_milestone(self, order: Order, milestone_type: str, description: str) -> OrderMilestone:
        now = utcnow()
        milestone = OrderMilestone(
            order_id=order.id,
            milestone_type=milestone_type,
            status="completed",
            description=description,
            completed_at=now,
            created_at=now,
        )
        self.db.add(milestone)
        return milestone

    def approve(self, order_id: str, actor: Principal) -> Order:
        """Creator accepts the order: pending -> in_progress."""
        order = self._load(order_id)
        if order.creator_id != actor.user_id and not actor.is_admin:
            raise PermissionDeniedError("Only the order's creator can approve it")
        ensure_transition("order", ORDER_TRANSITIONS, order.status, OrderStatus.IN_PROGRESS)

        order.status = OrderStatus.IN_PROGRESS
        self._add_milestone(order, "order_approved", "Order approved by creator")
        self.notifications.create(
            user_id=order.user_id,
            type="order_approved",
            message=f"Great news! Your order #{order.id} has been approved and work will begin soon.",
            related_id=order.id,
            related_to="order",
        )
        self.db.flush()
        logger.info(f"Order {order.id} approved")
        return order

    def complete(self, order_id: str, actor: Principal, completed_by: str, notes: Optional[str] = None) -> Order:
        """
        Mark the order completed and queue the payment release.
        The release runs later; its failures never undo the completion.
        """
        order = self._load(order_id)
        if order.user_id != actor.user_id and not actor.is_admin:
            raise PermissionDeniedError("Not authorized to complete this order")
        ensure_transition("order", ORDER_TRANSITIONS, order.status, OrderStatus.COMPLETED)

        order.status = OrderStatus.COMPLETED
        order.completed_at = self.release_queue.clock()
        order.completed_by = completed_by
        order.completion_notes = notes
        self._add_milestone(order, "order_completed", notes or "Order completed")
        self.notifications.create(
            user_id=order.creator_id,
            type="order_completed",
            message=f"Order #{order.id} has been marked as completed. Your payment is being released.",
            related_id=order.id,
            related_to="order",
        )
        self.release_queue.enqueue(order)
        self.db.flush()
        logger.info(f"Order {order.id} completed by {completed_by}")
        return order

    def reject(self, order_id: str, actor: Principal, reason: Optional[str] = None) -> Order:
        """Creator declines: pending -> rejected, held payment voided."""
        order = self._load(order_id)
        if order.creator_id != actor.user_id and not actor.is_admin:
            raise PermissionDeniedError("Only the order's creator can reject it")
        ensure_transition("order", ORDER_TRANSITIONS, order.status, OrderStatus.REJECTED)

        reason = reason or "Order rejected by creator"
        refunded = self.payments.cancel_held_order_payment(order, reason)

        order.status = OrderStatus.REJECTED
        order.rejection_reason = reason
        if refunded is not None:
            order.payment_status = "refunded"
        self._add_milestone(order, "order_rejected", reason)
        self.notifications.create(
            user_id=order.user_id,
            type="order_rejected",
            message=f"Your order #{order.id} was declined by the creator."
                    + (" Your payment has been refunded." if refunded is not None else ""),
            related_id=order.id,
            related_to="order",
        )
        self.db.flush()
        logger.info(f"Order {order.id} rejected")
        return order

    def release_payment(self, order_id: str, actor: Principal) -> dict:
        """Manual release by the brand or an admin (the queue does the same automatically)."""
        order = self._load(order_id)
        if order.user_id != actor.user_id and not actor.is_admin:
            raise PermissionDeniedError("Not authorized to release payment for this order")
        result = self.payments.release_order_payment(order_id)

        task = order.release_task
        if task is not None and task.status == ReleaseTaskStatus.PENDING:
            task.status = ReleaseTaskStatus.SUCCEEDED
            task.completed_at = utcnow()
            self.db.flush()
        return result
