import pytest
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm import Session

from conftest import ADMIN, MANAGER, MEMBER, OTHER_MANAGER, OTHER_MEMBER, auth, intent_event, sign_payload


def record_payment(client, intent_id, manager=MANAGER, **fields):
    body = {"userEmail": MEMBER, "amount": 40, "externalIntentId": intent_id, **fields}
    return client.post("/payments", json=body, headers=auth(manager))


def payment_for(client, intent_id):
    payments = client.get("/payments", headers=auth(ADMIN)).json()
    return next(p for p in payments if p["externalIntentId"] == intent_id)


@pytest.fixture()
def paid_club(make_club):
    return make_club("Sailing", fee=40)


def test_record_payment(client, paid_club):
    resp = record_payment(client, "pi_1", type="membership", clubId=paid_club)
    assert resp.status_code == 201
    assert resp.json()["paymentId"]

    duplicate = record_payment(client, "pi_1", type="membership", clubId=paid_club)
    assert duplicate.status_code == 409

    mine = client.get(f"/payments/user/{MEMBER}", headers=auth(MEMBER)).json()
    assert len(mine) == 1
    assert mine[0]["clubName"] == "Sailing"
    assert mine[0]["userName"] == "member"
    assert mine[0]["status"] == "pending"


def test_payment_validation(client, paid_club, make_event):
    event_id = make_event(paid_club, isPaid=True, eventFee=15)

    assert record_payment(client, "pi_a", type="membership", clubId=paid_club, eventId=event_id).status_code == 400
    assert record_payment(client, "pi_b", type="event", clubId=paid_club).status_code == 400
    assert record_payment(client, "pi_c", type="event", eventId=event_id, amount=0).status_code == 400
    assert record_payment(client, "pi_d", type="donation", clubId=paid_club).status_code == 400
    assert record_payment(client, "pi_e", type="membership", clubId="missing").status_code == 404
    assert record_payment(client, "pi_f", type="event", eventId="missing").status_code == 404
    assert record_payment(client, "pi_g", manager=MEMBER, type="membership", clubId=paid_club).status_code == 403

    legacy = client.post(
        "/payments",
        json={"userEmail": MEMBER, "amount": 15, "type": "event", "eventId": event_id, "stripePaymentIntentId": "pi_h"},
        headers=auth(MANAGER),
    )
    assert legacy.status_code == 201


def test_payment_listings_and_status(client, paid_club):
    payment_id = record_payment(client, "pi_1", type="membership", clubId=paid_club).json()["paymentId"]

    assert client.get("/payments", headers=auth(MANAGER)).status_code == 403
    assert client.get(f"/payments/user/{MEMBER}", headers=auth(OTHER_MEMBER)).status_code == 403
    assert len(client.get(f"/payments/club/{paid_club}", headers=auth(MANAGER)).json()) == 1
    assert client.get(f"/payments/club/{paid_club}", headers=auth(OTHER_MANAGER)).status_code == 403

    assert client.patch(f"/payments/{payment_id}/status", json={"status": "refunded"}, headers=auth(MANAGER)).status_code == 403
    resp = client.patch(f"/payments/{payment_id}/status", json={"status": "refunded"}, headers=auth(ADMIN))
    assert resp.status_code == 200
    assert payment_for(client, "pi_1")["status"] == "refunded"


def test_create_intents(client, gateway, paid_club, make_event):
    resp = client.post(
        "/stripe/create-membership-payment-intent",
        json={"clubId": paid_club, "userEmail": MEMBER, "amount": 40},
        headers=auth(MANAGER),
    )
    assert resp.status_code == 200
    body = resp.json()
    assert body["clientSecret"].startswith(body["paymentIntentId"])
    intent = gateway.intents[body["paymentIntentId"]]
    assert intent["amount"] == 4000
    assert intent["metadata"] == {"clubId": paid_club, "userEmail": MEMBER, "type": "membership"}

    event_id = make_event(paid_club, isPaid=True, eventFee=12.5)
    resp = client.post(
        "/stripe/create-event-payment-intent",
        json={"eventId": event_id, "userEmail": MEMBER, "amount": 12.5},
        headers=auth(MANAGER),
    )
    assert gateway.intents[resp.json()["paymentIntentId"]]["amount"] == 1250

    fetched = client.get(f"/stripe/payment-intent/{body['paymentIntentId']}", headers=auth(MEMBER))
    assert fetched.status_code == 200
    assert fetched.json()["metadata"]["type"] == "membership"
    assert client.get("/stripe/payment-intent/pi_unknown", headers=auth(MEMBER)).status_code == 404

    # no payment row is written when an intent is created
    assert client.get("/payments", headers=auth(ADMIN)).json() == []


def test_intent_for_missing_target_never_reaches_processor(client, gateway, users):
    resp = client.post(
        "/stripe/create-event-payment-intent",
        json={"eventId": "missing", "userEmail": MEMBER, "amount": 10},
        headers=auth(MANAGER),
    )
    assert resp.status_code == 404
    assert gateway.intents == {}

    by_member = client.post(
        "/stripe/create-membership-payment-intent",
        json={"clubId": "missing", "userEmail": MEMBER, "amount": 10},
        headers=auth(MEMBER),
    )
    assert by_member.status_code == 403


def test_webhook_rejects_bad_signature_without_writing(client, paid_club, send_webhook):
    record_payment(client, "pi_1", type="membership", clubId=paid_club)
    metadata = {"type": "membership", "clubId": paid_club, "userEmail": MEMBER}

    forged = send_webhook("payment_intent.succeeded", "pi_1", metadata, secret="whsec_wrong")
    assert forged.status_code == 400
    assert "error" in forged.json()

    payload = intent_event("payment_intent.succeeded", "pi_1", metadata)
    unsigned = client.post("/webhook", content=payload)
    assert unsigned.status_code == 400

    stale = client.post(
        "/webhook", content=payload, headers={"Stripe-Signature": sign_payload(payload, timestamp=1_000_000)}
    )
    assert stale.status_code == 400

    assert payment_for(client, "pi_1")["status"] == "pending"
    assert client.get(f"/memberships/user/{MEMBER}", headers=auth(MEMBER)).json() == []


def test_membership_payment_succeeded_is_idempotent(client, paid_club, send_webhook):
    payment_id = record_payment(client, "pi_1", type="membership", clubId=paid_club).json()["paymentId"]
    metadata = {"type": "membership", "clubId": paid_club, "userEmail": MEMBER}

    for _ in range(2):
        resp = send_webhook("payment_intent.succeeded", "pi_1", metadata)
        assert resp.status_code == 200
        assert resp.json() == {"received": True}

    assert payment_for(client, "pi_1")["status"] == "completed"
    memberships = client.get(f"/memberships/user/{MEMBER}", headers=auth(MEMBER)).json()
    assert len(memberships) == 1
    assert memberships[0]["status"] == "active"
    assert memberships[0]["paymentId"] == payment_id


def test_pending_membership_is_activated(client, paid_club, send_webhook):
    joined = client.post("/memberships", json={"clubId": paid_club}, headers=auth(MEMBER))
    assert joined.json()["status"] == "pendingPayment"
    record_payment(client, "pi_1", type="membership", clubId=paid_club)

    send_webhook("payment_intent.succeeded", "pi_1", {"type": "membership", "clubId": paid_club, "userEmail": MEMBER})

    memberships = client.get(f"/memberships/user/{MEMBER}", headers=auth(MEMBER)).json()
    assert [(m["id"], m["status"]) for m in memberships] == [(joined.json()["membershipId"], "active")]


def test_event_payment_succeeded_registers_once(client, paid_club, make_event, send_webhook):
    event_id = make_event(paid_club, isPaid=True, eventFee=15)
    record_payment(client, "pi_2", type="event", eventId=event_id, amount=15)
    metadata = {"type": "event", "eventId": event_id, "userEmail": MEMBER}

    send_webhook("payment_intent.succeeded", "pi_2", metadata)
    send_webhook("payment_intent.succeeded", "pi_2", metadata)

    registrations = client.get(f"/event-registrations/user/{MEMBER}", headers=auth(MEMBER)).json()
    assert len(registrations) == 1
    assert registrations[0]["clubId"] == paid_club
    assert registrations[0]["status"] == "registered"
    assert payment_for(client, "pi_2")["status"] == "completed"


def test_payment_failed_marks_row(client, paid_club, send_webhook):
    record_payment(client, "pi_1", type="membership", clubId=paid_club)
    metadata = {"type": "membership", "clubId": paid_club, "userEmail": MEMBER}

    resp = send_webhook("payment_intent.payment_failed", "pi_1", metadata)
    assert resp.status_code == 200
    assert payment_for(client, "pi_1")["status"] == "failed"
    assert client.get(f"/memberships/user/{MEMBER}", headers=auth(MEMBER)).json() == []


def test_unknown_events_are_acknowledged(client, paid_club, send_webhook):
    record_payment(client, "pi_1", type="membership", clubId=paid_club)

    resp = send_webhook("charge.refunded", "pi_1", {"type": "membership", "clubId": paid_club, "userEmail": MEMBER})
    assert resp.status_code == 200
    assert resp.json() == {"received": True}
    assert payment_for(client, "pi_1")["status"] == "pending"


def test_failed_reconciliation_rolls_back(client, paid_club, send_webhook):
    record_payment(client, "pi_1", type="membership", clubId=paid_club)

    resp = send_webhook("payment_intent.succeeded", "pi_1", {"type": "membership", "clubId": "gone", "userEmail": MEMBER})
    assert resp.status_code == 200
    assert payment_for(client, "pi_1")["status"] == "pending"


def test_intent_without_user_email_changes_nothing(client, paid_club, send_webhook):
    record_payment(client, "pi_1", type="membership", clubId=paid_club)

    resp = send_webhook("payment_intent.succeeded", "pi_1", {"type": "membership", "clubId": paid_club})
    assert resp.status_code == 200
    assert payment_for(client, "pi_1")["status"] == "pending"
    assert client.get(f"/memberships/club/{paid_club}", headers=auth(MANAGER)).json() == []


def test_commit_failure_still_acknowledges_webhook(client, paid_club, send_webhook, monkeypatch):
    record_payment(client, "pi_1", type="membership", clubId=paid_club)

    def locked(self):
        raise OperationalError("COMMIT", {}, Exception("database is locked"))

    monkeypatch.setattr(Session, "commit", locked)
    resp = send_webhook("payment_intent.succeeded", "pi_1", {"type": "membership", "clubId": paid_club, "userEmail": MEMBER})
    monkeypatch.undo()

    assert resp.status_code == 200
    assert resp.json() == {"received": True}
    assert payment_for(client, "pi_1")["status"] == "pending"
