"""
Payments router: thin surface over the payment bridge.
Capture and cancel are admin actions; checkout is opened by the payer.
"""
from fastapi import APIRouter, status
from marketplace.dependencies import AdminUser, CurrentUser, Payments
from marketplace.schemas import CheckoutSessionRequest, PaymentActionRequest

router = APIRouter()


@router.post(
    "/payments/capture",
    summary="Capture a held payment",
    responses={
        400: {"description": "No payment id / intent id, or they disagree"},
        404: {"description": "Payment record not found"},
        500: {"description": "Gateway failure"},
    }
)
async def capture_payment(body: PaymentActionRequest, admin: AdminUser, payments: Payments):
    intent = payments.capture(body.payment_id, body.payment_intent_id, admin)
    return {"success": True, "paymentIntent": intent}


@router.post("/payments/cancel", summary="Cancel a held payment")
async def cancel_payment(body: PaymentActionRequest, admin: AdminUser, payments: Payments):
    intent = payments.cancel(body.payment_id, body.payment_intent_id, admin)
    return {"success": True, "paymentIntent": intent}


@router.post(
    "/payments/checkout-session",
    status_code=status.HTTP_201_CREATED,
    summary="Open a checkout session for a contest or order",
)
async def create_checkout_session(body: CheckoutSessionRequest, current_user: CurrentUser, payments: Payments):
    return payments.create_checkout_session(
        current_user,
        body.amount,
        contest_id=body.contest_id,
        order_id=body.order_id,
    )
