from typing import Any, Optional

from fastapi import APIRouter, Depends, Header, Request
from fastapi.concurrency import run_in_threadpool
from loguru import logger
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from ..db import Store, get_db
from ..guard import Caller, require_manager, require_member
from ..models import Club, Event
from ..payments import PaymentGateway, ReconcileResult, reconcile
from ..schemas import EventIntentRequest, IntentOut, MembershipIntentRequest
from ..store import get_or_404

router = APIRouter(tags=["stripe"])


def get_gateway(request: Request) -> PaymentGateway:
    return request.app.state.gateway


@router.post("/stripe/create-event-payment-intent", response_model=IntentOut)
def create_event_payment_intent(
    payload: EventIntentRequest,
    db: Session = Depends(get_db),
    caller: Caller = Depends(require_manager),
    gateway: PaymentGateway = Depends(get_gateway),
):
    get_or_404(db, Event, payload.event_id, "Event")
    intent = gateway.create_intent(
        payload.amount,
        {"eventId": payload.event_id, "userEmail": payload.user_email, "type": "event"},
    )
    return IntentOut(client_secret=intent.client_secret, payment_intent_id=intent.intent_id)


@router.post("/stripe/create-membership-payment-intent", response_model=IntentOut)
def create_membership_payment_intent(
    payload: MembershipIntentRequest,
    db: Session = Depends(get_db),
    caller: Caller = Depends(require_manager),
    gateway: PaymentGateway = Depends(get_gateway),
):
    get_or_404(db, Club, payload.club_id, "Club")
    intent = gateway.create_intent(
        payload.amount,
        {"clubId": payload.club_id, "userEmail": payload.user_email, "type": "membership"},
    )
    return IntentOut(client_secret=intent.client_secret, payment_intent_id=intent.intent_id)


@router.get("/stripe/payment-intent/{intent_id}")
def get_payment_intent(
    intent_id: str,
    caller: Caller = Depends(require_member),
    gateway: PaymentGateway = Depends(get_gateway),
):
    return gateway.retrieve_intent(intent_id)


def _reconcile_and_commit(store: Store, event: dict[str, Any]) -> Optional[ReconcileResult]:
    try:
        with store.session() as db:
            result = reconcile(db, event)
    except SQLAlchemyError:
        logger.exception(f"Committing webhook {event.get('type')} failed")
        return None
    logger.debug(f"Webhook {result.event_type} handled: {result.outcome}")
    return result


@router.post("/webhook")
async def stripe_webhook(
    request: Request,
    stripe_signature: Optional[str] = Header(default=None),
    gateway: PaymentGateway = Depends(get_gateway),
):
    payload = await request.body()
    event = gateway.verify_event(payload, stripe_signature)
    await run_in_threadpool(_reconcile_and_commit, request.app.state.store, event)
    return {"received": True}
