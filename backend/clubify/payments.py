"""Stripe payment intents and webhook reconciliation.

Intent creation writes nothing locally. Payment rows are recorded by the
client through ``POST /payments`` and settled here when Stripe reports the
outcome of the intent.
"""

import json
from dataclasses import dataclass
from typing import Any, Callable, Optional

import stripe
from loguru import logger
from sqlalchemy.orm import Session

from .errors import InvalidSignature, NotFound, Unavailable, ValidationFailed
from .models import Club, Event, Membership, Payment
from .services import create_membership, register_for_event
from .store import (
    find_membership,
    find_payment_by_intent,
    find_registration_for_payment,
    get_or_404,
    set_payment_status_by_intent,
    update_fields,
)


@dataclass
class PaymentIntent:
    intent_id: str
    client_secret: str


def to_cents(amount: float) -> int:
    return int(round(amount * 100))


def _plain(obj: Any) -> dict:
    to_dict = getattr(obj, "to_dict", None)
    if callable(to_dict):
        return to_dict()
    return dict(obj or {})


class PaymentGateway:
    def __init__(self, api_key: str, webhook_secret: str, currency: str = "usd", tolerance: int = 300):
        self.api_key = api_key
        self.webhook_secret = webhook_secret
        self.currency = currency
        self.tolerance = tolerance

    def create_intent(self, amount: float, metadata: dict[str, str]) -> PaymentIntent:
        try:
            intent = stripe.PaymentIntent.create(
                amount=to_cents(amount),
                currency=self.currency,
                metadata=metadata,
                api_key=self.api_key,
            )
        except stripe.StripeError as exc:
            logger.exception(f"Creating payment intent failed for {metadata}")
            raise Unavailable("Payment processor unavailable") from exc
        return PaymentIntent(intent_id=intent.id, client_secret=intent.client_secret)

    def retrieve_intent(self, intent_id: str) -> dict[str, Any]:
        try:
            intent = stripe.PaymentIntent.retrieve(intent_id, api_key=self.api_key)
        except stripe.InvalidRequestError as exc:
            raise NotFound("Payment intent not found") from exc
        except stripe.StripeError as exc:
            logger.exception(f"Retrieving payment intent {intent_id} failed")
            raise Unavailable("Payment processor unavailable") from exc
        return {
            "id": intent.id,
            "status": intent.status,
            "amount": intent.amount,
            "currency": intent.currency,
            "metadata": _plain(intent.metadata),
        }

    def verify_event(self, payload: bytes, signature: Optional[str]) -> dict[str, Any]:
        """Check the ``Stripe-Signature`` header and decode the event body."""
        if not self.webhook_secret:
            logger.error("Webhook received but no webhook secret is configured")
            raise InvalidSignature("Webhook Error: signing secret not configured")
        if not signature:
            raise InvalidSignature("Webhook Error: missing Stripe-Signature header")
        try:
            stripe.WebhookSignature.verify_header(
                payload.decode("utf-8"), signature, self.webhook_secret, self.tolerance
            )
        except (stripe.SignatureVerificationError, UnicodeDecodeError) as exc:
            logger.warning(f"Webhook signature verification failed: {exc}")
            raise InvalidSignature(f"Webhook Error: {exc}") from exc
        try:
            event = json.loads(payload)
        except ValueError as exc:
            raise InvalidSignature("Webhook Error: payload is not valid JSON") from exc
        if not isinstance(event, dict):
            raise InvalidSignature("Webhook Error: payload is not an event object")
        return event


@dataclass
class ReconcileResult:
    outcome: str
    event_type: str
    intent_id: Optional[str] = None
    payment_rows: int = 0
    created_id: Optional[str] = None
    detail: Optional[str] = None


def _settle_payment(db: Session, intent_id: str, status: str) -> tuple[int, Optional[Payment]]:
    payment = find_payment_by_intent(db, intent_id)
    rows = set_payment_status_by_intent(db, intent_id, status)
    if not rows:
        logger.warning(f"No payment row recorded for intent {intent_id}")
    return rows, payment


def _payment_succeeded(db: Session, intent: dict[str, Any]) -> ReconcileResult:
    intent_id = intent["id"]
    rows, payment = _settle_payment(db, intent_id, "completed")
    payment_ref = payment.id if payment else intent_id

    metadata = intent.get("metadata") or {}
    kind = metadata.get("type")
    user_email = str(metadata.get("userEmail") or "").strip().lower()
    created_id = None
    if kind in ("membership", "event") and not user_email:
        raise ValidationFailed(f"Intent {intent_id} metadata has no userEmail")

    if kind == "membership":
        club = get_or_404(db, Club, metadata.get("clubId"), "Club")
        membership = find_membership(db, user_email, club.id)
        if membership is None:
            created_id = create_membership(db, club, user_email, status="active", payment_id=payment_ref).id
        elif membership.status == "pendingPayment":
            update_fields(db, Membership, membership.id, {"status": "active", "payment_id": payment_ref}, "Membership")
    elif kind == "event":
        event = get_or_404(db, Event, metadata.get("eventId"), "Event")
        if find_registration_for_payment(db, event.id, user_email, payment_ref) is None:
            created_id = register_for_event(db, event, user_email, payment_id=payment_ref).id
    else:
        logger.warning(f"Intent {intent_id} succeeded without a known metadata type: {kind!r}")

    return ReconcileResult(
        outcome="completed",
        event_type="payment_intent.succeeded",
        intent_id=intent_id,
        payment_rows=rows,
        created_id=created_id,
    )


def _payment_failed(db: Session, intent: dict[str, Any]) -> ReconcileResult:
    rows, _ = _settle_payment(db, intent["id"], "failed")
    return ReconcileResult(
        outcome="failed",
        event_type="payment_intent.payment_failed",
        intent_id=intent["id"],
        payment_rows=rows,
    )


_HANDLERS: dict[str, Callable[[Session, dict[str, Any]], ReconcileResult]] = {
    "payment_intent.succeeded": _payment_succeeded,
    "payment_intent.payment_failed": _payment_failed,
}


def reconcile(db: Session, event: dict[str, Any]) -> ReconcileResult:
    """Apply one verified webhook event. Never raises."""
    event_type = str(event.get("type") or "")
    intent = (event.get("data") or {}).get("object") or {}
    intent_id = intent.get("id") if isinstance(intent, dict) else None

    handler = _HANDLERS.get(event_type)
    if handler is None:
        logger.info(f"Unhandled event type {event_type}")
        return ReconcileResult(outcome="ignored", event_type=event_type, intent_id=intent_id)
    if not intent_id:
        logger.error(f"{event_type} event without a payment intent id")
        return ReconcileResult(outcome="error", event_type=event_type, detail="missing intent id")

    try:
        with db.begin_nested():
            result = handler(db, intent)
    except Exception as exc:  # noqa: BLE001
        logger.exception(f"Reconciling {event_type} for intent {intent_id} failed")
        return ReconcileResult(outcome="error", event_type=event_type, intent_id=intent_id, detail=str(exc))

    logger.info(
        f"Reconciled {event_type} for intent {intent_id}: "
        f"{result.payment_rows} payment row(s), created={result.created_id}"
    )
    return result
