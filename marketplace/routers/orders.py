"""
Orders router: direct creator-service purchases.
Business rules:
1. The creator approves (pending -> in_progress) or rejects an order
2. The brand completes it; completion queues the payment release
3. Release failures never undo a completion; their state shows as paymentRelease
"""
from typing import Optional
from fastapi import APIRouter
from marketplace.dependencies import CurrentUser, Orders
from marketplace.schemas import (
    OrderCompleteRequest,
    OrderRejectRequest,
    OrderResponse,
    PaymentReleaseResponse,
)

router = APIRouter()


def order_response(order) -> OrderResponse:
    response = OrderResponse.model_validate(order)
    if order.release_task is not None:
        response.payment_release = PaymentReleaseResponse.model_validate(order.release_task)
    return response


@router.get("/orders/{order_id}", response_model=OrderResponse)
async def get_order(order_id: str, current_user: CurrentUser, orders: Orders):
    return order_response(orders.get(order_id, current_user))


@router.post(
    "/orders/{order_id}/approve",
    summary="Creator accepts an order",
    responses={
        403: {"description": "Not the order's creator"},
        409: {"description": "Order is not pending"},
    }
)
async def approve_order(order_id: str, current_user: CurrentUser, orders: Orders):
    order = orders.approve(order_id, current_user)
    return {
        "success": True,
        "message": "Order approved successfully",
        "orderId": order.id,
        "status": order.status.value,
    }


@router.post(
    "/orders/{order_id}/complete",
    summary="Brand marks an order completed",
    responses={
        403: {"description": "Not the order's brand"},
        409: {"description": "Order already completed or rejected"},
    }
)
async def complete_order(
    order_id: str,
    body: OrderCompleteRequest,
    current_user: CurrentUser,
    orders: Orders,
):
    """
    The response does not wait for the payment release; it is picked up by
    the release sweep once PAYMENT_RELEASE_DELAY_SECONDS have passed.
    """
    orders.complete(order_id, current_user, body.completed_by, body.completion_notes)
    return {
        "success": True,
        "message": "Order marked as completed successfully",
    }


@router.post("/orders/{order_id}/reject", summary="Creator declines an order")
async def reject_order(
    order_id: str,
    current_user: CurrentUser,
    orders: Orders,
    body: Optional[OrderRejectRequest] = None,
):
    order = orders.reject(order_id, current_user, body.reason if body else None)
    return {
        "success": True,
        "message": "Order rejected",
        "orderId": order.id,
        "status": order.status.value,
    }


@router.post(
    "/orders/{order_id}/release-payment",
    summary="Release the escrowed payment now",
    responses={
        400: {"description": "Order not completed or creator has no payout account"},
        404: {"description": "No escrow payment for this order"},
        409: {"description": "Payment already released"},
    }
)
async def release_order_payment(order_id: str, current_user: CurrentUser, orders: Orders):
    result = orders.release_payment(order_id, current_user)
    return {"success": True, **result}
