from marketplace.models import (
    Notification,
    Order,
    OrderMilestone,
    OrderStatus,
    PaymentRecord,
    PaymentReleaseTask,
    PaymentStatus,
    ReleaseTaskStatus,
)


def test_approve_missing_order_writes_nothing(client, db, auth_headers):
    response = client.post("/orders/missing/approve", headers=auth_headers("creator-1"))

    assert response.status_code == 404
    assert db.query(OrderMilestone).count() == 0
    assert db.query(Notification).count() == 0


def test_creator_approves_order(client, seed, db, auth_headers):
    order = seed.order()

    response = client.post(f"/orders/{order.id}/approve", headers=auth_headers("creator-1"))

    assert response.status_code == 200
    assert response.json() == {
        "success": True,
        "message": "Order approved successfully",
        "orderId": order.id,
        "status": "in_progress",
    }
    db.expire_all()
    assert db.query(OrderMilestone).filter_by(order_id=order.id, milestone_type="order_approved").count() == 1
    note = db.query(Notification).filter_by(user_id="brand-1", type="order_approved").one()
    assert note.message == f"Great news! Your order #{order.id} has been approved and work will begin soon."


def test_brand_cannot_approve_own_order(client, seed, auth_headers):
    order = seed.order()
    response = client.post(f"/orders/{order.id}/approve", headers=auth_headers("brand-1"))
    assert response.status_code == 403


def test_approve_twice_is_conflict(client, seed, auth_headers):
    order = seed.order()
    assert client.post(f"/orders/{order.id}/approve", headers=auth_headers("creator-1")).status_code == 200
    assert client.post(f"/orders/{order.id}/approve", headers=auth_headers("creator-1")).status_code == 409


def test_complete_records_completion_and_queues_release(client, seed, db, auth_headers):
    order = seed.order()

    response = client.post(
        f"/orders/{order.id}/complete",
        json={"completedBy": "admin", "completionNotes": "done"},
        headers=auth_headers("brand-1"),
    )

    assert response.status_code == 200
    assert response.json() == {"success": True, "message": "Order marked as completed successfully"}

    db.expire_all()
    stored = db.get(Order, order.id)
    assert stored.status == OrderStatus.COMPLETED
    assert stored.completed_by == "admin"
    assert stored.completion_notes == "done"
    task = db.query(PaymentReleaseTask).filter_by(order_id=order.id).one()
    assert task.status == ReleaseTaskStatus.PENDING
    assert task.attempts == 0


def test_complete_twice_is_conflict(client, seed, auth_headers):
    order = seed.order(status=OrderStatus.IN_PROGRESS)
    payload = {"completedBy": "brand-1"}
    assert client.post(f"/orders/{order.id}/complete", json=payload, headers=auth_headers("brand-1")).status_code == 200
    assert client.post(f"/orders/{order.id}/complete", json=payload, headers=auth_headers("brand-1")).status_code == 409


def test_complete_requires_completed_by(client, seed, auth_headers):
    order = seed.order()
    response = client.post(f"/orders/{order.id}/complete", json={}, headers=auth_headers("brand-1"))
    assert response.status_code == 400


def test_get_order_shows_milestones_and_release(client, seed, auth_headers):
    order = seed.order()
    client.post(f"/orders/{order.id}/complete", json={"completedBy": "brand-1"}, headers=auth_headers("brand-1"))

    response = client.get(f"/orders/{order.id}", headers=auth_headers("creator-1"))

    assert response.status_code == 200
    body = response.json()
    assert body["status"] == "completed"
    assert [m["milestoneType"] for m in body["milestones"]] == ["order_completed"]
    assert body["paymentRelease"]["status"] == "pending"

    assert client.get(f"/orders/{order.id}", headers=auth_headers("stranger")).status_code == 403


def test_reject_voids_held_payment(client, seed, db, gateway, auth_headers):
    order = seed.order()
    seed.payment(order_id=order.id, status=PaymentStatus.HELD_IN_ESCROW, stripe_payment_intent_id="pi_hold")

    response = client.post(
        f"/orders/{order.id}/reject",
        json={"reason": "Schedule is full"},
        headers=auth_headers("creator-1"),
    )

    assert response.status_code == 200
    assert response.json()["status"] == "rejected"
    assert gateway.names() == ["cancel"]
    db.expire_all()
    stored = db.get(Order, order.id)
    assert stored.rejection_reason == "Schedule is full"
    assert stored.payment_status == "refunded"
    assert db.query(PaymentRecord).one().status == PaymentStatus.REJECTED


def test_reject_without_payment_or_body(client, seed, gateway, auth_headers):
    order = seed.order()
    response = client.post(f"/orders/{order.id}/reject", headers=auth_headers("creator-1"))
    assert response.status_code == 200
    assert gateway.calls == []


def test_manual_release_transfers_once(client, seed, db, gateway, auth_headers):
    order = seed.order(status=OrderStatus.COMPLETED)
    seed.payment(order_id=order.id, amount=5000)

    first = client.post(f"/orders/{order.id}/release-payment", headers=auth_headers("brand-1"))
    second = client.post(f"/orders/{order.id}/release-payment", headers=auth_headers("brand-1"))

    assert first.status_code == 200
    assert first.json()["amount"] == 5000
    assert first.json()["transferId"].startswith("tr_")
    assert second.status_code == 409
    assert gateway.names() == ["transfer"]

    db.expire_all()
    assert db.get(Order, order.id).payment_status == "released"
    record = db.query(PaymentRecord).one()
    assert record.status == PaymentStatus.RELEASED_TO_CREATOR
    assert db.query(Notification).filter_by(user_id="creator-1", type="payment_released").count() == 1


def test_release_before_completion_is_400(client, seed, auth_headers):
    order = seed.order(status=OrderStatus.IN_PROGRESS)
    seed.payment(order_id=order.id)
    response = client.post(f"/orders/{order.id}/release-payment", headers=auth_headers("brand-1"))
    assert response.status_code == 400
