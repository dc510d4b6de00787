"""Subscription status endpoint and operator ledger view."""

from datetime import timedelta


def auth(token):
    return {"Authorization": f"Bearer {token}"}


def test_status_free_without_ledger_rows(billing_client):
    resp = billing_client.get("/subscriptions/status", headers=auth("token-alice"))

    assert resp.status_code == 200
    assert resp.json() == {"isSubscribed": False, "status": "free", "state": "free", "transactionKey": None}


def test_status_subscribed_inside_paid_window(billing_client, seed_paid, clock):
    seed_paid("pay-1", "user-alice", start_at=clock.now - timedelta(days=3))

    body = billing_client.get("/subscriptions/status", headers=auth("token-alice")).json()

    assert body == {"isSubscribed": True, "status": "subscribed", "state": "active", "transactionKey": "pay-1"}


def test_status_during_grace_period(billing_client, seed_paid, clock):
    seed_paid("pay-1", "user-alice", start_at=clock.now - timedelta(days=30, hours=6))

    body = billing_client.get("/subscriptions/status", headers=auth("token-alice")).json()

    assert body["isSubscribed"] is True
    assert body["state"] == "grace"


def test_status_expires_after_grace(billing_client, seed_paid, clock):
    seed_paid("pay-1", "user-alice", start_at=clock.now - timedelta(days=31, seconds=1))

    assert billing_client.get("/subscriptions/status", headers=auth("token-alice")).json()["status"] == "free"


def test_status_only_reads_callers_rows(billing_client, seed_paid):
    seed_paid("pay-1", "user-alice")

    assert billing_client.get("/subscriptions/status", headers=auth("token-bob")).json()["status"] == "free"


def test_status_follows_webhook_transitions(billing_client, gateway, clock):
    gateway.add_payment("pay-1")
    billing_client.post("/webhooks/portone", json={"payment_id": "pay-1", "status": "Paid"})
    assert billing_client.get("/subscriptions/status", headers=auth("token-alice")).json()["isSubscribed"] is True

    clock.advance(minutes=5)
    billing_client.post("/webhooks/portone", json={"payment_id": "pay-1", "status": "Cancelled"})
    assert billing_client.get("/subscriptions/status", headers=auth("token-alice")).json()["isSubscribed"] is False


def test_status_filtered_by_transaction_key(billing_client, seed_paid):
    seed_paid("pay-1", "user-alice")

    hit = billing_client.get(
        "/subscriptions/status", params={"transaction_key": ["pay-1"]}, headers=auth("token-alice")
    ).json()
    miss = billing_client.get(
        "/subscriptions/status", params={"transaction_key": ["pay-2"]}, headers=auth("token-alice")
    ).json()

    assert hit["transactionKey"] == "pay-1"
    assert miss["status"] == "free"


def test_status_requires_bearer(billing_client):
    assert billing_client.get("/subscriptions/status").status_code == 401


def test_status_rejects_other_user_id(billing_client):
    resp = billing_client.get("/subscriptions/status", params={"user_id": "user-bob"}, headers=auth("token-alice"))

    assert resp.status_code == 403


def test_status_by_user_id_when_auth_disabled(make_billing_client, seed_paid):
    seed_paid("pay-1", "user-alice")
    client = make_billing_client(require_auth=False)

    assert client.get("/subscriptions/status", params={"user_id": "user-alice"}).json()["isSubscribed"] is True
    assert client.get("/subscriptions/status").status_code == 400


def test_ledger_view_requires_admin_key(billing_client, seed_paid):
    seed_paid("pay-1", "user-alice")

    assert billing_client.get("/ledger/pay-1").status_code == 401
    assert billing_client.get("/ledger/pay-1", headers={"x-api-key": "wrong"}).status_code == 401


def test_ledger_view_disabled_without_configured_key(make_billing_client, seed_paid):
    seed_paid("pay-1", "user-alice")
    client = make_billing_client(admin_api_key="")

    assert client.get("/ledger/pay-1", headers={"x-api-key": ""}).status_code == 401


def test_ledger_view_reports_history(billing_client, gateway, clock):
    gateway.add_payment("pay-1")
    billing_client.post("/webhooks/portone", json={"payment_id": "pay-1", "status": "Paid"})
    clock.advance(minutes=5)
    billing_client.post("/webhooks/portone", json={"payment_id": "pay-1", "status": "Cancelled"})

    resp = billing_client.get("/ledger/pay-1", headers={"x-api-key": "admin-key"})

    assert resp.status_code == 200
    body = resp.json()
    assert body["transactionKey"] == "pay-1"
    assert body["currentStatus"] == "Cancel"
    assert body["state"] == "free"
    assert body["netAmount"] == 0
    assert [row["status"] for row in body["rows"]] == ["Paid", "Cancel"]
    assert body["rows"][0]["endAt"] == body["rows"][1]["endAt"]


def test_ledger_view_unknown_key_is_404(billing_client):
    assert billing_client.get("/ledger/pay-unknown", headers={"x-api-key": "admin-key"}).status_code == 404


def test_health_and_metrics(billing_client):
    assert billing_client.get("/health").json() == {"ok": True}
    metrics = billing_client.get("/metrics")
    assert metrics.status_code == 200
    assert b"http_requests_total" in metrics.content
