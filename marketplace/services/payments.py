"""
Payment bridge: thin facade over Stripe plus the local mirror documents.

The gateway is authoritative. Every operation calls the gateway first and
then updates the PaymentRecord mirror (and the linked contest/order). If the
local write fails after the gateway call succeeded there is no compensation;
the mirror is simply stale until the next gateway-driven update.
"""
import logging
from typing import Optional

import stripe
from sqlalchemy.orm import Session

from marketplace.auth import Principal
from marketplace.config import Settings
from marketplace.errors import (
    ConflictError,
    NotFoundError,
    PermissionDeniedError,
    UpstreamServiceError,
    ValidationError,
)
from marketplace.models import (
    Contest,
    Order,
    OrderStatus,
    PaymentRecord,
    PaymentStatus,
    utcnow,
)
from marketplace.services.notifications import NotificationService

logger = logging.getLogger(__name__)


def release_idempotency_key(order_id: str) -> str:
    # one payout per order, whichever path (sweep retry or manual release) gets there
    return f"order-release-{order_id}"


class StripeGateway:
    """
    The only module that talks to Stripe. Returns plain dicts so the
    workflow layer never depends on Stripe object types.
    """

    def __init__(self, api_key: str, currency: str = "usd"):
        self.api_key = api_key
        self.currency = currency

    def _call(self, description: str, fn, *args, **kwargs):
        try:
            return fn(*args, api_key=self.api_key, **kwargs)
        except stripe.StripeError as e:
            logger.error(f"Stripe {description} failed: {e}", exc_info=True)
            raise UpstreamServiceError(f"Payment gateway error during {description}") from e

    def capture(self, payment_intent_id: str) -> dict:
        intent = self._call("capture", stripe.PaymentIntent.capture, payment_intent_id)
        return {"id": intent["id"], "status": intent["status"]}

    def cancel(self, payment_intent_id: str) -> dict:
        intent = self._call("cancel", stripe.PaymentIntent.cancel, payment_intent_id)
        return {"id": intent["id"], "status": intent["status"]}

    def create_checkout_session(
        self,
        amount: int,
        description: str,
        success_url: str,
        cancel_url: str,
        metadata: dict,
    ) -> dict:
        """Card checkout with manual capture so funds stay held until captured or released."""
        session = self._call(
            "checkout session creation",
            stripe.checkout.Session.create,
            mode="payment",
            line_items=[{
                "price_data": {
                    "currency": self.currency,
                    "product_data": {"name": description},
                    "unit_amount": amount,
                },
                "quantity": 1,
            }],
            payment_intent_data={"capture_method": "manual", "metadata": metadata},
            success_url=success_url,
            cancel_url=cancel_url,
            metadata=metadata,
        )
        return {"id": session["id"], "url": session["url"]}

    def transfer(self, amount: int, destination: str, metadata: dict, idempotency_key: str) -> dict:
        """Stripe replays the first result for a repeated idempotency_key instead of paying twice."""
        transfer = self._call(
            "transfer",
            stripe.Transfer.create,
            amount=amount,
            currency=self.currency,
            destination=destination,
            metadata=metadata,
            idempotency_key=idempotency_key,
        )
        return {"id": transfer["id"]}


class PaymentBridge:
    def __init__(
        self,
        db: Session,
        gateway: StripeGateway,
        notifications: NotificationService,
        settings: Settings,
    ):
        self.db = db
        self.gateway = gateway
        self.notifications = notifications
        self.settings = settings

    def _find_record(self, payment_id: Optional[str], payment_intent_id: Optional[str]) -> PaymentRecord:
        if not payment_id and not payment_intent_id:
            raise ValidationError("Payment ID or payment intent ID is required")

        if payment_id:
            record = self.db.get(PaymentRecord, payment_id)
        else:
            record = self.db.query(PaymentRecord).filter(
                PaymentRecord.stripe_payment_intent_id == payment_intent_id
            ).first()
        if record is None:
            raise NotFoundError("Payment record not found")

        if payment_intent_id and record.stripe_payment_intent_id and record.stripe_payment_intent_id != payment_intent_id:
            raise ValidationError("Payment intent does not match payment record")
        if not record.stripe_payment_intent_id:
            if not payment_intent_id:
                raise ValidationError("No payment intent ID found for this payment")
            record.stripe_payment_intent_id = payment_intent_id
        return record

    def _sync_mirror(self, record: PaymentRecord, new_status: PaymentStatus, intent: dict, actor: Principal) -> None:
        now = utcnow()
        record.status = new_status
        record.stripe_payment_status = intent["status"]
        record.processed_at = now
        record.processed_by = actor.user_id

        if record.contest_id:
            contest = self.db.get(Contest, record.contest_id)
            if contest is not None:
                contest.payment_status = new_status.value
                contest.status = "active" if new_status == PaymentStatus.COMPLETED else "canceled"
        self.db.flush()

    def capture(self, payment_id: Optional[str], payment_intent_id: Optional[str], actor: Principal) -> dict:
        record = self._find_record(payment_id, payment_intent_id)
        intent = self.gateway.capture(record.stripe_payment_intent_id)
        self._sync_mirror(record, PaymentStatus.COMPLETED, intent, actor)
        logger.info(f"Payment {record.id} captured ({intent['status']})")
        return intent

    def cancel(self, payment_id: Optional[str], payment_intent_id: Optional[str], actor: Principal) -> dict:
        record = self._find_record(payment_id, payment_intent_id)
        intent = self.gateway.cancel(record.stripe_payment_intent_id)
        self._sync_mirror(record, PaymentStatus.CANCELED, intent, actor)
        logger.info(f"Payment {record.id} canceled ({intent['status']})")
        return intent

    def create_checkout_session(
        self,
        actor: Principal,
        amount: int,
        contest_id: Optional[str] = None,
        order_id: Optional[str] = None,
    ) -> dict:
        """Open a gateway checkout for funding a contest or paying an order."""
        if amount <= 0:
            raise ValidationError("Amount must be positive")
        if bool(contest_id) == bool(order_id):
            raise ValidationError("Exactly one of contestId or orderId is required")

        creator_id = None
        if contest_id:
            contest = self.db.get(Contest, contest_id)
            if contest is None:
                raise NotFoundError("Contest not found")
            payer_id = contest.owner_id
            description = f"Contest funding: {contest.title}"
        else:
            order = self.db.get(Order, order_id)
            if order is None:
                raise NotFoundError("Order not found")
            payer_id = order.user_id
            creator_id = order.creator_id
            description = f"Order {order_id}"
        if payer_id != actor.user_id:
            raise PermissionDeniedError("Not authorized to pay for this item")

        record = PaymentRecord(
            status=PaymentStatus.PENDING,
            amount=amount,
            currency=self.settings.STRIPE_CURRENCY,
            payer_id=actor.user_id,
            creator_id=creator_id,
            contest_id=contest_id,
            order_id=order_id,
        )
        self.db.add(record)
        self.db.flush()

        session = self.gateway.create_checkout_session(
            amount=amount,
            description=description,
            success_url=self.settings.CHECKOUT_SUCCESS_URL,
            cancel_url=self.settings.CHECKOUT_CANCEL_URL,
            metadata={"paymentId": record.id, "contestId": contest_id or "", "orderId": order_id or ""},
        )
        record.checkout_session_id = session["id"]
        self.db.flush()
        logger.info(f"Checkout session {session['id']} opened for payment {record.id}")
        return {"paymentId": record.id, "sessionId": session["id"], "url": session["url"]}

    def release_order_payment(self, order_id: str) -> dict:
        """
        Transfer an order's escrowed payment to the creator's connected account.

        Preconditions: order completed, not already released, a held_in_escrow
        mirror record exists, creator has a connected account. The order's
        payment_status doubles as the guard against a second transfer.
        """
        order = self.db.get(Order, order_id)
        if order is None:
            raise NotFoundError("Order not found")
        if order.status != OrderStatus.COMPLETED:
            raise ValidationError("Order must be completed before releasing payment")
        if order.payment_status == "released":
            raise ConflictError("Payment already released for this order")

        record = self.db.query(PaymentRecord).filter(
            PaymentRecord.order_id == order_id,
            PaymentRecord.status == PaymentStatus.HELD_IN_ESCROW,
        ).first()
        if record is None:
            raise NotFoundError("No escrow payment found for this order")
        if not order.creator_connect_account_id:
            raise ValidationError("Creator payout account not found")

        transfer = self.gateway.transfer(
            amount=record.amount,
            destination=order.creator_connect_account_id,
            metadata={"orderId": order.id, "paymentId": record.id},
            idempotency_key=release_idempotency_key(order.id),
        )

        now = utcnow()
        record.status = PaymentStatus.RELEASED_TO_CREATOR
        record.transfer_id = transfer["id"]
        record.processed_at = now
        order.payment_status = "released"
        order.payment_released_at = now
        self.db.flush()

        self.notifications.create(
            user_id=order.creator_id,
            type="payment_released",
            message=f"Payment of ${record.amount / 100:.2f} has been released to your account!",
            related_id=order.id,
            related_to="order",
        )
        logger.info(f"Released payment {record.id} for order {order.id} (transfer {transfer['id']})")
        return {"transferId": transfer["id"], "amount": record.amount}

    def cancel_held_order_payment(self, order: Order, reason: str) -> Optional[PaymentRecord]:
        """Void the authorization held for a rejected order, if there is one."""
        record = self.db.query(PaymentRecord).filter(
            PaymentRecord.order_id == order.id,
            PaymentRecord.status.in_([PaymentStatus.PENDING, PaymentStatus.HELD_IN_ESCROW]),
        ).first()
        if record is None or not record.stripe_payment_intent_id:
            return None

        intent = self.gateway.cancel(record.stripe_payment_intent_id)
        record.status = PaymentStatus.REJECTED
        record.stripe_payment_status = intent["status"]
        record.processed_at = utcnow()
        self.db.flush()
        logger.info(f"Held payment {record.id} for order {order.id} voided: {reason}")
        return record
