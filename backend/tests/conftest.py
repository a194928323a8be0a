import hashlib
import hmac
import json
import time

import jwt
import pytest
from fastapi.testclient import TestClient

from clubify.config import Settings
from clubify.errors import NotFound
from clubify.main import create_app
from clubify.models import User
from clubify.payments import PaymentGateway, PaymentIntent, to_cents

JWT_SECRET = "clubify-test-signing-secret-0123456789abcdef"
WEBHOOK_SECRET = "whsec_clubify_test"

ADMIN = "admin@clubify.test"
MANAGER = "manager@clubify.test"
OTHER_MANAGER = "other.manager@clubify.test"
MEMBER = "member@clubify.test"
OTHER_MEMBER = "other.member@clubify.test"


class FakeGateway(PaymentGateway):
    """Keeps real webhook verification; intents live in memory."""

    def __init__(self):
        super().__init__(api_key="sk_test_fake", webhook_secret=WEBHOOK_SECRET)
        self.intents: dict[str, dict] = {}

    def create_intent(self, amount, metadata):
        intent_id = f"pi_test_{len(self.intents) + 1}"
        self.intents[intent_id] = {
            "id": intent_id,
            "status": "requires_payment_method",
            "amount": to_cents(amount),
            "currency": self.currency,
            "metadata": dict(metadata),
        }
        return PaymentIntent(intent_id=intent_id, client_secret=f"{intent_id}_secret_abc")

    def retrieve_intent(self, intent_id):
        if intent_id not in self.intents:
            raise NotFound("Payment intent not found")
        return self.intents[intent_id]


def token_for(email: str, secret: str = JWT_SECRET, **claims) -> str:
    return jwt.encode({"email": email, **claims}, secret, algorithm="HS256")


def auth(email: str) -> dict[str, str]:
    return {"Authorization": f"Bearer {token_for(email)}"}


def sign_payload(payload: str, secret: str = WEBHOOK_SECRET, timestamp=None) -> str:
    timestamp = int(time.time()) if timestamp is None else timestamp
    signature = hmac.new(
        secret.encode("utf-8"), f"{timestamp}.{payload}".encode("utf-8"), hashlib.sha256
    ).hexdigest()
    return f"t={timestamp},v1={signature}"


def intent_event(event_type: str, intent_id: str, metadata: dict) -> str:
    return json.dumps(
        {
            "id": f"evt_{intent_id}",
            "type": event_type,
            "data": {"object": {"id": intent_id, "object": "payment_intent", "metadata": metadata}},
        }
    )


@pytest.fixture()
def settings(tmp_path):
    return Settings(
        database_url=f"sqlite:///{tmp_path / 'clubify.db'}",
        auth_mode="token",
        jwt_secret=JWT_SECRET,
        stripe_secret_key="sk_test_fake",
        stripe_webhook_secret=WEBHOOK_SECRET,
        log_level="WARNING",
    )


@pytest.fixture()
def gateway():
    return FakeGateway()


@pytest.fixture()
def app(settings, gateway):
    return create_app(settings=settings, gateway=gateway)


@pytest.fixture()
def client(app):
    with TestClient(app) as c:
        yield c


@pytest.fixture()
def store(app):
    return app.state.store


@pytest.fixture()
def make_user(client, store):
    def _make(email: str, role: str = "member", is_active: bool = True) -> str:
        with store.session() as db:
            user = User(email=email, name=email.split("@")[0], role=role, is_active=is_active)
            db.add(user)
            db.flush()
            return user.id

    return _make


@pytest.fixture()
def users(make_user):
    return {
        ADMIN: make_user(ADMIN, "admin"),
        MANAGER: make_user(MANAGER, "clubManager"),
        OTHER_MANAGER: make_user(OTHER_MANAGER, "clubManager"),
        MEMBER: make_user(MEMBER),
        OTHER_MEMBER: make_user(OTHER_MEMBER),
    }


@pytest.fixture()
def make_club(client, users):
    def _make(
        name: str = "Chess Circle",
        manager: str = MANAGER,
        fee: float = 0,
        approve: bool = True,
        **fields,
    ) -> str:
        body = {"clubName": name, "membershipFee": fee, **fields}
        resp = client.post("/clubs", json=body, headers=auth(manager))
        assert resp.status_code == 201, resp.text
        club_id = resp.json()["clubId"]
        if approve:
            resp = client.patch(
                f"/clubs/{club_id}/status", json={"status": "approved"}, headers=auth(ADMIN)
            )
            assert resp.status_code == 200, resp.text
        return club_id

    return _make


@pytest.fixture()
def make_event(client):
    def _make(club_id: str, manager: str = MANAGER, **fields) -> str:
        body = {
            "clubId": club_id,
            "title": "Open Night",
            "eventDate": "2030-05-01T18:00:00Z",
            "location": "Hall A",
            **fields,
        }
        resp = client.post("/events", json=body, headers=auth(manager))
        assert resp.status_code == 201, resp.text
        return resp.json()["eventId"]

    return _make


@pytest.fixture()
def send_webhook(client):
    def _send(event_type: str, intent_id: str, metadata: dict, secret: str = WEBHOOK_SECRET):
        payload = intent_event(event_type, intent_id, metadata)
        return client.post(
            "/webhook",
            content=payload,
            headers={"Stripe-Signature": sign_payload(payload, secret), "Content-Type": "application/json"},
        )

    return _send
