from typing import Literal, Optional

from fastapi import APIRouter, Depends, Query
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session

from ..db import get_db
from ..errors import Forbidden, NotFound, ValidationFailed
from ..guard import (
    Caller,
    ensure_club_manager,
    optional_caller,
    require_admin,
    require_manager,
)
from ..models import CLUB_STATUSES, Club
from ..schemas import ClubCreate, ClubOut, ClubStatusUpdate, ClubUpdate, normalize_email
from ..store import clubs_by_manager, delete_by_id, get_or_404, insert, list_clubs, update_fields

router = APIRouter(prefix="/clubs", tags=["clubs"])

ClubSort = Literal["newest", "oldest", "highestFee", "lowestFee"]


@router.post("")
def create_club(
    payload: ClubCreate,
    db: Session = Depends(get_db),
    caller: Caller = Depends(require_manager),
):
    club = Club(
        **payload.model_dump(),
        status="pending",
        manager_email=caller.email,
    )
    insert(db, club)
    return JSONResponse(
        status_code=201,
        content={"message": "Club created successfully", "clubId": club.id},
    )


@router.get("", response_model=list[ClubOut])
def all_clubs(
    search: Optional[str] = None,
    category: Optional[str] = None,
    sort_by: ClubSort = Query(default="newest", alias="sortBy"),
    include_all: bool = Query(default=False, alias="includeAll"),
    db: Session = Depends(get_db),
    caller: Optional[Caller] = Depends(optional_caller),
):
    search = search.strip() if isinstance(search, str) else None
    category = category.strip() if isinstance(category, str) else None
    if include_all and not (caller and caller.is_admin):
        raise Forbidden("Access denied. Admin required.")
    status = None if include_all else "approved"
    return list_clubs(db, status=status, search=search, category=category, sort_by=sort_by)


@router.get("/status/{status}", response_model=list[ClubOut])
def clubs_with_status(
    status: str,
    search: Optional[str] = None,
    category: Optional[str] = None,
    db: Session = Depends(get_db),
    caller: Caller = Depends(require_admin),
):
    if status not in CLUB_STATUSES:
        raise ValidationFailed("Invalid status")
    return list_clubs(db, status=status, search=search, category=category)


@router.get("/manager/{email}", response_model=list[ClubOut])
def clubs_for_manager(
    email: str,
    db: Session = Depends(get_db),
    caller: Caller = Depends(require_manager),
):
    try:
        email = normalize_email(email)
    except ValueError:
        raise ValidationFailed("Invalid email")
    if not caller.is_admin and email != caller.email:
        raise Forbidden("Access denied. You can only list your own clubs.")
    return clubs_by_manager(db, email)


@router.get("/{club_id}", response_model=ClubOut)
def get_club(
    club_id: str,
    db: Session = Depends(get_db),
    caller: Optional[Caller] = Depends(optional_caller),
):
    club = get_or_404(db, Club, club_id, "Club")
    if club.status != "approved":
        visible = caller is not None and (caller.is_admin or caller.email == club.manager_email)
        if not visible:
            raise NotFound("Club not found")
    return club


@router.patch("/{club_id}")
def update_club(
    club_id: str,
    payload: ClubUpdate,
    db: Session = Depends(get_db),
    caller: Caller = Depends(require_manager),
):
    club = get_or_404(db, Club, club_id, "Club")
    ensure_club_manager(caller, club)
    changes = payload.model_dump(exclude_unset=True)
    if any(value is None for value in changes.values()):
        raise ValidationFailed("Club fields cannot be cleared")
    update_fields(db, Club, club_id, changes, "Club")
    return {"message": "Club updated successfully"}


@router.patch("/{club_id}/status")
def update_club_status(
    club_id: str,
    payload: ClubStatusUpdate,
    db: Session = Depends(get_db),
    caller: Caller = Depends(require_admin),
):
    update_fields(db, Club, club_id, {"status": payload.status}, "Club")
    return {"message": f"Club status updated to {payload.status}"}


@router.delete("/{club_id}")
def delete_club(
    club_id: str,
    db: Session = Depends(get_db),
    caller: Caller = Depends(require_admin),
):
    delete_by_id(db, Club, club_id, "Club")
    return {"message": "Club deleted successfully"}
