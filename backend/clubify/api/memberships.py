from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session

from ..db import get_db
from ..errors import Conflict, Forbidden, ValidationFailed
from ..guard import (
    Caller,
    ensure_club_manager,
    ensure_manages_club_id,
    ensure_self_or_manager,
    require_manager,
    require_member,
)
from ..models import Club, Membership
from ..schemas import (
    MembershipCreate,
    MembershipStatusUpdate,
    MembershipWithClub,
    MembershipWithUser,
    normalize_email,
)
from ..services import create_membership
from ..store import (
    delete_by_id,
    find_completed_payment,
    find_membership,
    get_or_404,
    memberships_for_club,
    memberships_for_user,
    update_fields,
)

router = APIRouter(prefix="/memberships", tags=["memberships"])


@router.post("")
def join_club(
    payload: MembershipCreate,
    db: Session = Depends(get_db),
    caller: Caller = Depends(require_member),
):
    user_email = payload.user_email or caller.email
    club = get_or_404(db, Club, payload.club_id, "Club")
    if user_email != caller.email:
        ensure_club_manager(caller, club)
    manages = caller.is_admin or club.manager_email == caller.email
    if payload.status and payload.status != "pendingPayment" and not manages:
        raise Forbidden("Access denied. Only this club's managers can set a membership status.")
    if club.status != "approved" and not manages:
        raise ValidationFailed("Club is not accepting members")

    if find_membership(db, user_email, club.id):
        raise Conflict("Membership already exists for this user and club")
    status = payload.status
    if status is None and not manages and club.membership_fee > 0:
        # a paymentId only counts once the payment is settled
        paid = payload.payment_id and find_completed_payment(db, payload.payment_id, user_email, club.id)
        status = "active" if paid else "pendingPayment"
    membership = create_membership(
        db,
        club,
        user_email,
        status=status,
        payment_id=payload.payment_id,
    )
    return JSONResponse(
        status_code=201,
        content={
            "message": "Membership created successfully",
            "membershipId": membership.id,
            "status": membership.status,
        },
    )


@router.get("/user/{email}", response_model=list[MembershipWithClub])
def user_memberships(
    email: str,
    db: Session = Depends(get_db),
    caller: Caller = Depends(require_member),
):
    try:
        email = normalize_email(email)
    except ValueError:
        raise ValidationFailed("Invalid email")
    ensure_self_or_manager(caller, email)
    return memberships_for_user(db, email)


@router.get("/club/{club_id}", response_model=list[MembershipWithUser])
def club_memberships(
    club_id: str,
    db: Session = Depends(get_db),
    caller: Caller = Depends(require_manager),
):
    ensure_club_manager(caller, get_or_404(db, Club, club_id, "Club"))
    return memberships_for_club(db, club_id)


def _managed_membership(db: Session, caller: Caller, membership_id: str) -> Membership:
    membership = get_or_404(db, Membership, membership_id, "Membership")
    ensure_manages_club_id(db, caller, membership.club_id)
    return membership


@router.patch("/{membership_id}/status")
def update_membership_status(
    membership_id: str,
    payload: MembershipStatusUpdate,
    db: Session = Depends(get_db),
    caller: Caller = Depends(require_manager),
):
    _managed_membership(db, caller, membership_id)
    update_fields(db, Membership, membership_id, {"status": payload.status}, "Membership")
    return {"message": f"Membership status updated to {payload.status}"}


@router.delete("/{membership_id}")
def delete_membership(
    membership_id: str,
    db: Session = Depends(get_db),
    caller: Caller = Depends(require_manager),
):
    _managed_membership(db, caller, membership_id)
    delete_by_id(db, Membership, membership_id, "Membership")
    return {"message": "Membership deleted successfully"}
