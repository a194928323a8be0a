from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session

from ..db import get_db
from ..errors import ValidationFailed
from ..guard import (
    Caller,
    ensure_club_manager,
    ensure_self_or_manager,
    require_admin,
    require_manager,
    require_member,
)
from ..models import Club, Event, Payment
from ..schemas import PaymentCreate, PaymentStatusUpdate, PaymentWithNames, normalize_email
from ..store import get_or_404, insert, payments_with_names, update_fields

router = APIRouter(prefix="/payments", tags=["payments"])


@router.post("")
def record_payment(
    payload: PaymentCreate,
    db: Session = Depends(get_db),
    caller: Caller = Depends(require_manager),
):
    if payload.type == "membership":
        get_or_404(db, Club, payload.club_id, "Club")
    else:
        get_or_404(db, Event, payload.event_id, "Event")
    payment = insert(
        db,
        Payment(**payload.model_dump()),
        "A payment for this intent is already recorded",
    )
    return JSONResponse(
        status_code=201,
        content={"message": "Payment record created successfully", "paymentId": payment.id},
    )


@router.get("", response_model=list[PaymentWithNames])
def all_payments(
    db: Session = Depends(get_db),
    caller: Caller = Depends(require_admin),
):
    return payments_with_names(db)


@router.get("/user/{email}", response_model=list[PaymentWithNames])
def user_payments(
    email: str,
    db: Session = Depends(get_db),
    caller: Caller = Depends(require_member),
):
    try:
        email = normalize_email(email)
    except ValueError:
        raise ValidationFailed("Invalid email")
    ensure_self_or_manager(caller, email)
    return payments_with_names(db, user_email=email)


@router.get("/club/{club_id}", response_model=list[PaymentWithNames])
def club_payments(
    club_id: str,
    db: Session = Depends(get_db),
    caller: Caller = Depends(require_manager),
):
    ensure_club_manager(caller, get_or_404(db, Club, club_id, "Club"))
    return payments_with_names(db, club_id=club_id)


@router.patch("/{payment_id}/status")
def update_payment_status(
    payment_id: str,
    payload: PaymentStatusUpdate,
    db: Session = Depends(get_db),
    caller: Caller = Depends(require_admin),
):
    update_fields(db, Payment, payment_id, {"status": payload.status}, "Payment")
    return {"message": f"Payment status updated to {payload.status}"}
