from typing import Optional

from sqlalchemy.orm import Session

from .errors import CapacityExceeded, Conflict
from .models import Club, Event, EventRegistration, Membership, User
from .store import count_active_registrations, find_active_registration, find_user_by_email, insert


def create_user(db: Session, email: str, name: str, photo_url: str) -> tuple[User, bool]:
    """Create a member account, or return the existing one for that email.

    The boolean is ``True`` when a new row was written.
    """
    existing = find_user_by_email(db, email)
    if existing:
        return existing, False
    try:
        user = insert(db, User(email=email, name=name, photo_url=photo_url, role="member", is_active=True))
    except Conflict:
        # lost a race with a concurrent signup for the same email
        return find_user_by_email(db, email), False
    return user, True


def ensure_capacity(db: Session, event: Event) -> None:
    if event.max_attendees is None:
        return
    if count_active_registrations(db, event.id) >= event.max_attendees:
        raise CapacityExceeded("Maximum attendees limit reached for this event")


def register_for_event(
    db: Session,
    event: Event,
    user_email: str,
    payment_id: Optional[str] = None,
) -> EventRegistration:
    if find_active_registration(db, event.id, user_email):
        raise Conflict("User already registered for this event")
    ensure_capacity(db, event)
    registration = EventRegistration(
        event_id=event.id,
        user_email=user_email,
        club_id=event.club_id,
        status="registered",
        payment_id=payment_id,
    )
    return insert(db, registration, "User already registered for this event")


def create_membership(
    db: Session,
    club: Club,
    user_email: str,
    status: Optional[str] = None,
    payment_id: Optional[str] = None,
) -> Membership:
    if status is None:
        status = "pendingPayment" if club.membership_fee > 0 and not payment_id else "active"
    membership = Membership(
        user_email=user_email,
        club_id=club.id,
        status=status,
        payment_id=payment_id,
    )
    return insert(db, membership, "Membership already exists for this user and club")
