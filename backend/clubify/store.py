"""Collection access for every entity.

Handlers never talk to SQLAlchemy directly for writes: inserts go through
:func:`insert` so uniqueness violations surface as :class:`Conflict`, and
field updates go through :func:`update_fields` so ``updated_at`` is always
stamped.
"""

import math
from typing import Any, Optional, Type

from sqlalchemy import delete, func, or_, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from .errors import Conflict, NotFound
from .models import Club, Event, EventRegistration, Membership, Payment, User, utcnow
from .schemas import (
    MembershipWithClub,
    MembershipWithUser,
    PaymentWithNames,
    RegistrationWithEvent,
    RegistrationWithEventAndUser,
    RegistrationWithUser,
)

EVENT_SORT_COLUMNS = {
    "createdAt": Event.created_at,
    "eventDate": Event.event_date,
    "eventFee": Event.event_fee,
}

CLUB_SORTS = {
    "newest": Club.created_at.desc(),
    "oldest": Club.created_at.asc(),
    "highestFee": Club.membership_fee.desc(),
    "lowestFee": Club.membership_fee.asc(),
}

MAX_PAGE_SIZE = 100


# Generic operations


def insert(db: Session, row, conflict_message: str = "Record already exists"):
    try:
        with db.begin_nested():
            db.add(row)
    except IntegrityError as exc:
        raise Conflict(conflict_message) from exc
    db.refresh(row)
    return row


def get_or_404(db: Session, model: Type, row_id: str, label: str):
    row = db.get(model, row_id)
    if not row:
        raise NotFound(f"{label} not found")
    return row


def update_fields(
    db: Session,
    model: Type,
    row_id: str,
    values: dict[str, Any],
    label: str,
    conflict_message: str = "Record already exists",
) -> int:
    stmt = update(model).where(model.id == row_id).values(**values, updated_at=utcnow())
    try:
        with db.begin_nested():
            matched = db.execute(stmt, execution_options={"synchronize_session": "fetch"}).rowcount
    except IntegrityError as exc:
        raise Conflict(conflict_message) from exc
    if not matched:
        raise NotFound(f"{label} not found")
    return matched


def delete_by_id(db: Session, model: Type, row_id: str, label: str) -> int:
    deleted = db.execute(delete(model).where(model.id == row_id)).rowcount
    if not deleted:
        raise NotFound(f"{label} not found")
    return deleted


# Users


def find_user_by_email(db: Session, email: str) -> Optional[User]:
    return db.execute(select(User).where(User.email == email)).scalar_one_or_none()


def list_users(db: Session, role: Optional[str] = None) -> list[User]:
    stmt = select(User)
    if role:
        stmt = stmt.where(User.role == role)
    return list(db.execute(stmt.order_by(User.created_at.asc())).scalars().all())


# Clubs


def list_clubs(
    db: Session,
    status: Optional[str] = None,
    search: Optional[str] = None,
    category: Optional[str] = None,
    sort_by: str = "newest",
) -> list[Club]:
    stmt = select(Club)
    if status:
        stmt = stmt.where(Club.status == status)
    if search:
        stmt = stmt.where(func.lower(Club.club_name).contains(search.lower(), autoescape=True))
    if category:
        stmt = stmt.where(Club.category == category)
    stmt = stmt.order_by(CLUB_SORTS.get(sort_by, CLUB_SORTS["newest"]), Club.id)
    return list(db.execute(stmt).scalars().all())


def clubs_by_manager(db: Session, email: str) -> list[Club]:
    stmt = select(Club).where(Club.manager_email == email).order_by(Club.created_at.desc())
    return list(db.execute(stmt).scalars().all())


# Events


def list_events_page(
    db: Session,
    page: int = 1,
    limit: int = 10,
    sort_by: str = "eventDate",
    sort_order: str = "asc",
    club_id: Optional[str] = None,
    search: Optional[str] = None,
) -> tuple[list[Event], int, int]:
    """Return one page of events, the total match count and the page count."""
    limit = min(limit, MAX_PAGE_SIZE)
    stmt = select(Event)
    count_stmt = select(func.count(Event.id))
    if club_id:
        stmt = stmt.where(Event.club_id == club_id)
        count_stmt = count_stmt.where(Event.club_id == club_id)
    if search:
        matches = func.lower(Event.title).contains(search.lower(), autoescape=True)
        stmt = stmt.where(matches)
        count_stmt = count_stmt.where(matches)

    total = db.execute(count_stmt).scalar() or 0

    column = EVENT_SORT_COLUMNS.get(sort_by, Event.event_date)
    ordering = column.desc() if sort_order == "desc" else column.asc()
    stmt = stmt.order_by(ordering, Event.id).offset((page - 1) * limit).limit(limit)
    events = list(db.execute(stmt).scalars().all())
    return events, total, math.ceil(total / limit)


def events_by_club(db: Session, club_id: str) -> list[Event]:
    stmt = select(Event).where(Event.club_id == club_id).order_by(Event.event_date.asc())
    return list(db.execute(stmt).scalars().all())


def delete_event_cascade(db: Session, event_id: str) -> int:
    """Delete an event and its registrations, returning the registrations removed."""
    get_or_404(db, Event, event_id, "Event")
    removed = db.execute(
        delete(EventRegistration).where(EventRegistration.event_id == event_id)
    ).rowcount
    delete_by_id(db, Event, event_id, "Event")
    return removed


# Memberships


def find_membership(db: Session, user_email: str, club_id: str) -> Optional[Membership]:
    return db.execute(
        select(Membership).where(
            Membership.user_email == user_email,
            Membership.club_id == club_id,
        )
    ).scalar_one_or_none()


def memberships_for_user(db: Session, email: str) -> list[MembershipWithClub]:
    stmt = (
        select(Membership, Club)
        .join(Club, Club.id == Membership.club_id)
        .where(Membership.user_email == email)
        .order_by(Membership.joined_at.desc())
    )
    return [
        MembershipWithClub(
            **_membership_fields(membership),
            club_name=club.club_name,
            description=club.description,
            category=club.category,
            location=club.location,
            membership_fee=club.membership_fee,
        )
        for membership, club in db.execute(stmt).all()
    ]


def memberships_for_club(db: Session, club_id: str) -> list[MembershipWithUser]:
    stmt = (
        select(Membership, User.name, User.photo_url)
        .join(User, User.email == Membership.user_email)
        .where(Membership.club_id == club_id)
        .order_by(Membership.joined_at.desc())
    )
    return [
        MembershipWithUser(**_membership_fields(membership), user_name=name, user_photo=photo)
        for membership, name, photo in db.execute(stmt).all()
    ]


def _membership_fields(membership: Membership) -> dict[str, Any]:
    return {
        "id": membership.id,
        "user_email": membership.user_email,
        "club_id": membership.club_id,
        "status": membership.status,
        "payment_id": membership.payment_id,
        "joined_at": membership.joined_at,
        "expires_at": membership.expires_at,
    }


# Event registrations


def find_active_registration(db: Session, event_id: str, user_email: str) -> Optional[EventRegistration]:
    return db.execute(
        select(EventRegistration).where(
            EventRegistration.event_id == event_id,
            EventRegistration.user_email == user_email,
            EventRegistration.status == "registered",
        )
    ).scalar_one_or_none()


def find_registration_for_payment(
    db: Session, event_id: str, user_email: str, payment_id: str
) -> Optional[EventRegistration]:
    """An active registration, or any registration already tied to this payment."""
    return db.execute(
        select(EventRegistration)
        .where(
            EventRegistration.event_id == event_id,
            EventRegistration.user_email == user_email,
            or_(
                EventRegistration.status == "registered",
                EventRegistration.payment_id == payment_id,
            ),
        )
        .limit(1)
    ).scalars().first()


def count_active_registrations(db: Session, event_id: str) -> int:
    return db.execute(
        select(func.count(EventRegistration.id)).where(
            EventRegistration.event_id == event_id,
            EventRegistration.status == "registered",
        )
    ).scalar() or 0


def registrations_for_user(db: Session, email: str) -> list[RegistrationWithEvent]:
    stmt = (
        select(EventRegistration, Event, Club.club_name)
        .join(Event, Event.id == EventRegistration.event_id)
        .join(Club, Club.id == EventRegistration.club_id)
        .where(EventRegistration.user_email == email)
        .order_by(Event.event_date.asc())
    )
    return [
        RegistrationWithEvent(
            **_registration_fields(registration),
            event_name=event.title,
            event_date=event.event_date,
            event_location=event.location,
            club_name=club_name,
        )
        for registration, event, club_name in db.execute(stmt).all()
    ]


def registrations_for_event(db: Session, event_id: str) -> list[RegistrationWithUser]:
    stmt = (
        select(EventRegistration, User.name, User.photo_url)
        .join(User, User.email == EventRegistration.user_email)
        .where(EventRegistration.event_id == event_id)
        .order_by(EventRegistration.registered_at.asc())
    )
    return [
        RegistrationWithUser(**_registration_fields(registration), user_name=name, user_photo=photo)
        for registration, name, photo in db.execute(stmt).all()
    ]


def registrations_for_club(db: Session, club_id: str) -> list[RegistrationWithEventAndUser]:
    stmt = (
        select(EventRegistration, Event.title, User.name, User.photo_url)
        .join(Event, Event.id == EventRegistration.event_id)
        .join(User, User.email == EventRegistration.user_email)
        .where(EventRegistration.club_id == club_id)
        .order_by(EventRegistration.registered_at.desc())
    )
    return [
        RegistrationWithEventAndUser(
            **_registration_fields(registration),
            event_name=title,
            user_name=name,
            user_photo=photo,
        )
        for registration, title, name, photo in db.execute(stmt).all()
    ]


def _registration_fields(registration: EventRegistration) -> dict[str, Any]:
    return {
        "id": registration.id,
        "event_id": registration.event_id,
        "user_email": registration.user_email,
        "club_id": registration.club_id,
        "status": registration.status,
        "payment_id": registration.payment_id,
        "registered_at": registration.registered_at,
    }


# Payments


def find_payment_by_intent(db: Session, intent_id: str) -> Optional[Payment]:
    return db.execute(
        select(Payment).where(Payment.external_intent_id == intent_id)
    ).scalar_one_or_none()


def find_completed_payment(db: Session, payment_ref: str, user_email: str, club_id: str) -> Optional[Payment]:
    """A completed membership payment for this user and club, by row id or intent id."""
    return db.execute(
        select(Payment)
        .where(
            or_(Payment.id == payment_ref, Payment.external_intent_id == payment_ref),
            Payment.user_email == user_email,
            Payment.club_id == club_id,
            Payment.type == "membership",
            Payment.status == "completed",
        )
        .limit(1)
    ).scalars().first()


def set_payment_status_by_intent(db: Session, intent_id: str, status: str) -> int:
    """Mark every payment row for an external intent; returns the rows matched."""
    return db.execute(
        update(Payment)
        .where(Payment.external_intent_id == intent_id)
        .values(status=status, updated_at=utcnow()),
        execution_options={"synchronize_session": "fetch"},
    ).rowcount


def payments_with_names(
    db: Session,
    user_email: Optional[str] = None,
    club_id: Optional[str] = None,
) -> list[PaymentWithNames]:
    stmt = (
        select(Payment, Club.club_name, Event.title, User.name)
        .outerjoin(Club, Club.id == Payment.club_id)
        .outerjoin(Event, Event.id == Payment.event_id)
        .outerjoin(User, User.email == Payment.user_email)
    )
    if user_email:
        stmt = stmt.where(Payment.user_email == user_email)
    if club_id:
        stmt = stmt.where(Payment.club_id == club_id)
    stmt = stmt.order_by(Payment.created_at.desc())
    return [
        PaymentWithNames.model_validate(payment).model_copy(
            update={"club_name": club_name, "event_name": event_name, "user_name": user_name}
        )
        for payment, club_name, event_name, user_name in db.execute(stmt).all()
    ]
