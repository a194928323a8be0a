from typing import Literal, Optional

from fastapi import APIRouter, Depends, Query
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session

from ..db import get_db
from ..errors import ValidationFailed
from ..guard import Caller, ensure_club_manager, ensure_event_manager, require_manager
from ..models import Club, Event
from ..schemas import EventCreate, EventOut, EventPage, EventUpdate
from ..store import (
    MAX_PAGE_SIZE,
    delete_event_cascade,
    events_by_club,
    get_or_404,
    insert,
    list_events_page,
    update_fields,
)

router = APIRouter(prefix="/events", tags=["events"])

EventSort = Literal["createdAt", "eventDate", "eventFee"]


@router.post("")
def create_event(
    payload: EventCreate,
    db: Session = Depends(get_db),
    caller: Caller = Depends(require_manager),
):
    club = get_or_404(db, Club, payload.club_id, "Club")
    ensure_club_manager(caller, club)
    event = insert(db, Event(**payload.model_dump()))
    return JSONResponse(
        status_code=201,
        content={"message": "Event created successfully", "eventId": event.id},
    )


@router.get("", response_model=EventPage)
def list_events(
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=10, ge=1, le=MAX_PAGE_SIZE),
    sort_by: EventSort = Query(default="eventDate", alias="sortBy"),
    sort_order: Literal["asc", "desc"] = Query(default="asc", alias="sortOrder"),
    club_id: Optional[str] = Query(default=None, alias="clubId"),
    search: Optional[str] = None,
    db: Session = Depends(get_db),
):
    search = search.strip() if isinstance(search, str) else None
    events, total, total_pages = list_events_page(
        db,
        page=page,
        limit=limit,
        sort_by=sort_by,
        sort_order=sort_order,
        club_id=club_id,
        search=search,
    )
    return EventPage(
        events=[EventOut.model_validate(event) for event in events],
        total=total,
        total_pages=total_pages,
        current_page=page,
    )


@router.get("/club/{club_id}", response_model=list[EventOut])
def club_events(club_id: str, db: Session = Depends(get_db)):
    return events_by_club(db, club_id)


@router.get("/{event_id}", response_model=EventOut)
def get_event(event_id: str, db: Session = Depends(get_db)):
    return get_or_404(db, Event, event_id, "Event")


@router.patch("/{event_id}")
def update_event(
    event_id: str,
    payload: EventUpdate,
    db: Session = Depends(get_db),
    caller: Caller = Depends(require_manager),
):
    event = get_or_404(db, Event, event_id, "Event")
    ensure_event_manager(db, caller, event)

    changes = payload.model_dump(exclude_unset=True)
    for field in ("title", "description", "event_date", "location", "is_paid", "event_fee"):
        if field in changes and changes[field] is None:
            raise ValidationFailed(f"{field} cannot be cleared")
    is_paid = changes.get("is_paid", event.is_paid)
    event_fee = changes.get("event_fee", event.event_fee)
    if is_paid and event_fee <= 0:
        raise ValidationFailed("paid events need an eventFee greater than 0")

    update_fields(db, Event, event_id, changes, "Event")
    return {"message": "Event updated successfully"}


@router.delete("/{event_id}")
def delete_event(
    event_id: str,
    db: Session = Depends(get_db),
    caller: Caller = Depends(require_manager),
):
    ensure_event_manager(db, caller, get_or_404(db, Event, event_id, "Event"))
    removed = delete_event_cascade(db, event_id)
    return {"message": "Event deleted successfully", "registrationsRemoved": removed}
