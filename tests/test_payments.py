from marketplace.models import Contest, PaymentRecord, PaymentStatus


def test_capture_updates_mirror_and_contest(client, seed, db, gateway, auth_headers):
    contest = seed.contest(owner_id="brand-1")
    payment = seed.payment(
        status=PaymentStatus.PENDING, contest_id=contest.id, stripe_payment_intent_id="pi_contest"
    )

    response = client.post(
        "/payments/capture",
        json={"paymentId": payment.id, "paymentIntentId": "pi_contest"},
        headers=auth_headers("ops", is_admin=True),
    )

    assert response.status_code == 200
    assert response.json() == {"success": True, "paymentIntent": {"id": "pi_contest", "status": "succeeded"}}
    db.expire_all()
    record = db.get(PaymentRecord, payment.id)
    assert record.status == PaymentStatus.COMPLETED
    assert record.processed_by == "ops"
    stored_contest = db.get(Contest, contest.id)
    assert stored_contest.status == "active"
    assert stored_contest.payment_status == "completed"


def test_cancel_marks_contest_canceled(client, seed, db, auth_headers):
    contest = seed.contest()
    payment = seed.payment(status=PaymentStatus.PENDING, contest_id=contest.id, stripe_payment_intent_id="pi_c")

    response = client.post(
        "/payments/cancel",
        json={"paymentIntentId": "pi_c"},
        headers=auth_headers("ops", is_admin=True),
    )

    assert response.status_code == 200
    assert response.json()["paymentIntent"]["status"] == "canceled"
    db.expire_all()
    assert db.get(PaymentRecord, payment.id).status == PaymentStatus.CANCELED
    assert db.get(Contest, contest.id).status == "canceled"


def test_capture_requires_some_identifier(client, auth_headers):
    response = client.post("/payments/capture", json={}, headers=auth_headers("ops", is_admin=True))
    assert response.status_code == 400


def test_capture_with_mismatched_intent_is_400(client, seed, auth_headers):
    payment = seed.payment(stripe_payment_intent_id="pi_real")
    response = client.post(
        "/payments/capture",
        json={"paymentId": payment.id, "paymentIntentId": "pi_other"},
        headers=auth_headers("ops", is_admin=True),
    )
    assert response.status_code == 400


def test_capture_is_admin_only(client, seed, gateway, auth_headers):
    payment = seed.payment()
    response = client.post("/payments/capture", json={"paymentId": payment.id}, headers=auth_headers("brand-1"))
    assert response.status_code == 403
    assert gateway.calls == []


def test_gateway_failure_is_500_and_mirror_untouched(client, seed, db, gateway, auth_headers):
    payment = seed.payment(status=PaymentStatus.PENDING)
    gateway.fail = True

    response = client.post("/payments/capture", json={"paymentId": payment.id}, headers=auth_headers("ops", is_admin=True))

    assert response.status_code == 500
    assert response.json() == {"error": "Payment gateway error during capture"}
    db.expire_all()
    assert db.get(PaymentRecord, payment.id).status == PaymentStatus.PENDING


def test_checkout_session_for_contest(client, seed, db, gateway, auth_headers):
    contest = seed.contest(owner_id="brand-1")

    response = client.post(
        "/payments/checkout-session",
        json={"amount": 25000, "contestId": contest.id},
        headers=auth_headers("brand-1"),
    )

    assert response.status_code == 201
    body = response.json()
    assert body["url"].startswith("https://checkout.test/")
    db.expire_all()
    record = db.get(PaymentRecord, body["paymentId"])
    assert record.status == PaymentStatus.PENDING
    assert record.checkout_session_id == body["sessionId"]
    assert record.amount == 25000
    assert gateway.calls[0][1]["metadata"]["contestId"] == contest.id


def test_checkout_session_by_non_owner_is_403(client, seed, auth_headers):
    contest = seed.contest(owner_id="brand-1")
    response = client.post(
        "/payments/checkout-session",
        json={"amount": 100, "contestId": contest.id},
        headers=auth_headers("brand-2"),
    )
    assert response.status_code == 403


def test_checkout_session_rejects_non_positive_amount(client, seed, auth_headers):
    contest = seed.contest(owner_id="brand-1")
    response = client.post(
        "/payments/checkout-session",
        json={"amount": 0, "contestId": contest.id},
        headers=auth_headers("brand-1"),
    )
    assert response.status_code == 400
