"""
Payment release queue: delay, single attempt per sweep, retry and give-up.
Sweeps are driven with explicit `now` values instead of sleeping.
"""
from datetime import timedelta

from marketplace.config import get_settings
from marketplace.database import SessionLocal
from marketplace.models import (
    Order,
    OrderStatus,
    PaymentRecord,
    PaymentReleaseTask,
    ReleaseTaskStatus,
    utcnow,
)
from marketplace.services.reconciliation import make_release_fn, run_sweeps
from marketplace.services.release_queue import process_due_release_tasks


class LostFirstCommit:
    """Session factory whose first commit fails after the work inside it already ran."""

    def __init__(self):
        self.failed = False

    def __call__(self):
        session = SessionLocal()
        commit = session.commit

        def flaky_commit():
            if not self.failed:
                self.failed = True
                raise RuntimeError("connection lost during commit")
            commit()

        session.commit = flaky_commit
        return session


def complete(client, order, auth_headers):
    response = client.post(
        f"/orders/{order.id}/complete",
        json={"completedBy": "admin", "completionNotes": "done"},
        headers=auth_headers("brand-1"),
    )
    assert response.status_code == 200


def test_release_attempted_once_after_delay(client, seed, db, gateway, auth_headers):
    order = seed.order()
    seed.payment(order_id=order.id)
    complete(client, order, auth_headers)
    settings = get_settings()
    release = make_release_fn(gateway, settings)
    start = utcnow()

    early = process_due_release_tasks(SessionLocal, release, settings, now=start)
    assert early["attempted"] == 0
    assert gateway.calls == []

    due = process_due_release_tasks(SessionLocal, release, settings, now=start + timedelta(seconds=6))
    assert due == {"attempted": 1, "succeeded": 1, "rescheduled": 0, "failed": 0, "skipped": 0}
    assert gateway.names() == ["transfer"]

    later = process_due_release_tasks(SessionLocal, release, settings, now=start + timedelta(minutes=10))
    assert later["attempted"] == 0
    assert gateway.names() == ["transfer"]

    db.expire_all()
    task = db.query(PaymentReleaseTask).filter_by(order_id=order.id).one()
    assert task.status == ReleaseTaskStatus.SUCCEEDED
    assert task.attempts == 1
    assert db.get(Order, order.id).payment_status == "released"


def test_failed_release_is_retried_then_marked_failed(client, seed, db, gateway, auth_headers):
    order = seed.order()
    seed.payment(order_id=order.id)
    complete(client, order, auth_headers)
    settings = get_settings()
    release = make_release_fn(gateway, settings)
    gateway.fail = True
    start = utcnow()

    first = process_due_release_tasks(SessionLocal, release, settings, now=start + timedelta(seconds=10))
    assert first["rescheduled"] == 1

    db.expire_all()
    task = db.query(PaymentReleaseTask).filter_by(order_id=order.id).one()
    assert task.status == ReleaseTaskStatus.PENDING
    assert task.attempts == 1
    assert "Payment gateway error" in task.last_error

    # backoff: the retry is not due one second later
    not_yet = process_due_release_tasks(SessionLocal, release, settings, now=start + timedelta(seconds=11))
    assert not_yet["attempted"] == 0

    second = process_due_release_tasks(SessionLocal, release, settings, now=start + timedelta(hours=1))
    third = process_due_release_tasks(SessionLocal, release, settings, now=start + timedelta(hours=2))
    assert second["rescheduled"] == 1
    assert third["failed"] == 1

    after = process_due_release_tasks(SessionLocal, release, settings, now=start + timedelta(days=1))
    assert after["attempted"] == 0
    assert gateway.names() == ["transfer", "transfer", "transfer"]
    assert {kw["idempotency_key"] for _, kw in gateway.calls} == {f"order-release-{order.id}"}

    db.expire_all()
    task = db.query(PaymentReleaseTask).filter_by(order_id=order.id).one()
    assert task.status == ReleaseTaskStatus.FAILED
    assert task.attempts == 3
    # completion is never undone by release failures
    assert db.get(Order, order.id).status == OrderStatus.COMPLETED


def test_failed_task_visible_on_order(client, seed, gateway, auth_headers):
    order = seed.order()
    complete(client, order, auth_headers)
    settings = get_settings()

    # no escrow payment exists, so every attempt fails
    run_sweeps(SessionLocal, gateway, client.app.state.storage, settings, now=utcnow() + timedelta(seconds=10))

    body = client.get(f"/orders/{order.id}", headers=auth_headers("brand-1")).json()
    assert body["paymentRelease"]["status"] == "pending"
    assert body["paymentRelease"]["attempts"] == 1
    assert body["paymentRelease"]["lastError"] == "No escrow payment found for this order"


def test_manual_release_settles_pending_task(client, seed, db, gateway, auth_headers):
    order = seed.order()
    seed.payment(order_id=order.id)
    complete(client, order, auth_headers)

    response = client.post(f"/orders/{order.id}/release-payment", headers=auth_headers("brand-1"))
    assert response.status_code == 200

    settings = get_settings()
    counts = process_due_release_tasks(
        SessionLocal, make_release_fn(gateway, settings), settings, now=utcnow() + timedelta(minutes=1)
    )
    assert counts["attempted"] == 0
    assert gateway.names() == ["transfer"]
    db.expire_all()
    assert db.query(PaymentReleaseTask).one().status == ReleaseTaskStatus.SUCCEEDED


def test_retry_after_lost_commit_does_not_pay_twice(client, seed, db, gateway, auth_headers):
    order = seed.order()
    seed.payment(order_id=order.id)
    complete(client, order, auth_headers)
    settings = get_settings()
    release = make_release_fn(gateway, settings)
    factory = LostFirstCommit()
    start = utcnow()

    # the transfer went out but the local commit was lost
    first = process_due_release_tasks(factory, release, settings, now=start + timedelta(seconds=10))
    assert first["rescheduled"] == 1

    second = process_due_release_tasks(factory, release, settings, now=start + timedelta(hours=1))
    assert second["succeeded"] == 1

    assert gateway.names() == ["transfer", "transfer"]
    assert {kw["idempotency_key"] for _, kw in gateway.calls} == {f"order-release-{order.id}"}
    assert len(gateway.transfers) == 1

    db.expire_all()
    record = db.query(PaymentRecord).filter_by(order_id=order.id).one()
    assert record.transfer_id == gateway.transfers[f"order-release-{order.id}"]["id"]


def test_task_removed_mid_sweep_is_skipped(client, seed, db, gateway, auth_headers):
    first = seed.order()
    second = seed.order()
    first_id, second_id = first.id, second.id
    seed.payment(order_id=first_id, stripe_payment_intent_id="pi_first")
    seed.payment(order_id=second_id, stripe_payment_intent_id="pi_second")
    complete(client, first, auth_headers)
    complete(client, second, auth_headers)
    settings = get_settings()
    real_release = make_release_fn(gateway, settings)

    def release(session, order_id):
        if order_id == first_id:
            with SessionLocal() as side:
                side.query(PaymentReleaseTask).filter_by(order_id=second_id).delete()
                side.commit()
        return real_release(session, order_id)

    counts = process_due_release_tasks(SessionLocal, release, settings, now=utcnow() + timedelta(minutes=1))

    assert counts == {"attempted": 2, "succeeded": 1, "rescheduled": 0, "failed": 0, "skipped": 1}
    assert [kw["metadata"]["orderId"] for _, kw in gateway.calls] == [first_id]
