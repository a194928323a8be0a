from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session

from ..db import get_db
from ..errors import ValidationFailed
from ..guard import (
    Caller,
    ensure_club_manager,
    ensure_event_manager,
    ensure_manages_club_id,
    ensure_self_or_manager,
    require_manager,
    require_member,
)
from ..models import Club, Event, EventRegistration
from ..schemas import (
    RegistrationCreate,
    RegistrationStatusUpdate,
    RegistrationWithEvent,
    RegistrationWithEventAndUser,
    RegistrationWithUser,
    normalize_email,
)
from ..services import ensure_capacity, register_for_event
from ..store import (
    delete_by_id,
    get_or_404,
    registrations_for_club,
    registrations_for_event,
    registrations_for_user,
    update_fields,
)

router = APIRouter(prefix="/event-registrations", tags=["event-registrations"])


@router.post("")
def register(
    payload: RegistrationCreate,
    db: Session = Depends(get_db),
    caller: Caller = Depends(require_member),
):
    user_email = payload.user_email or caller.email
    event = get_or_404(db, Event, payload.event_id, "Event")
    if user_email != caller.email:
        ensure_event_manager(db, caller, event)
    registration = register_for_event(db, event, user_email, payment_id=payload.payment_id)
    return JSONResponse(
        status_code=201,
        content={
            "message": "Event registration created successfully",
            "registrationId": registration.id,
        },
    )


@router.get("/user/{email}", response_model=list[RegistrationWithEvent])
def user_registrations(
    email: str,
    db: Session = Depends(get_db),
    caller: Caller = Depends(require_member),
):
    try:
        email = normalize_email(email)
    except ValueError:
        raise ValidationFailed("Invalid email")
    ensure_self_or_manager(caller, email)
    return registrations_for_user(db, email)


@router.get("/event/{event_id}", response_model=list[RegistrationWithUser])
def event_registrations(
    event_id: str,
    db: Session = Depends(get_db),
    caller: Caller = Depends(require_manager),
):
    event = db.get(Event, event_id)
    if event is not None:
        ensure_event_manager(db, caller, event)
    return registrations_for_event(db, event_id)


@router.get("/club/{club_id}", response_model=list[RegistrationWithEventAndUser])
def club_registrations(
    club_id: str,
    db: Session = Depends(get_db),
    caller: Caller = Depends(require_manager),
):
    ensure_club_manager(caller, get_or_404(db, Club, club_id, "Club"))
    return registrations_for_club(db, club_id)


@router.patch("/{registration_id}/status")
def update_registration_status(
    registration_id: str,
    payload: RegistrationStatusUpdate,
    db: Session = Depends(get_db),
    caller: Caller = Depends(require_member),
):
    registration = get_or_404(db, EventRegistration, registration_id, "Registration")
    if registration.user_email != caller.email:
        ensure_manages_club_id(db, caller, registration.club_id)
    if payload.status == registration.status:
        return {"message": f"Registration status updated to {payload.status}"}
    if payload.status == "registered":
        event = get_or_404(db, Event, registration.event_id, "Event")
        ensure_capacity(db, event)
    update_fields(
        db,
        EventRegistration,
        registration_id,
        {"status": payload.status},
        "Registration",
        conflict_message="User already registered for this event",
    )
    return {"message": f"Registration status updated to {payload.status}"}


@router.delete("/{registration_id}")
def delete_registration(
    registration_id: str,
    db: Session = Depends(get_db),
    caller: Caller = Depends(require_manager),
):
    registration = get_or_404(db, EventRegistration, registration_id, "Registration")
    ensure_manages_club_id(db, caller, registration.club_id)
    delete_by_id(db, EventRegistration, registration_id, "Registration")
    return {"message": "Registration deleted successfully"}
