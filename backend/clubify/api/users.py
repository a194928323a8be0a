from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session

from ..db import get_db
from ..errors import NotFound, ValidationFailed
from ..guard import Caller, require_admin
from ..models import USER_ROLES, User
from ..schemas import ActiveUpdate, RoleUpdate, UserCreate, UserOut, normalize_email
from ..services import create_user
from ..store import find_user_by_email, list_users, update_fields

router = APIRouter(prefix="/users", tags=["users"])


@router.post("")
def register_user(payload: UserCreate, db: Session = Depends(get_db)):
    user, created = create_user(db, payload.email, payload.name.strip(), payload.photo_url)
    if not created:
        return JSONResponse(
            status_code=200,
            content={"message": "User already exists", "userId": user.id},
        )
    return JSONResponse(
        status_code=201,
        content={"message": "User created successfully", "userId": user.id},
    )


@router.get("", response_model=list[UserOut])
def all_users(
    db: Session = Depends(get_db),
    caller: Caller = Depends(require_admin),
):
    return list_users(db)


@router.get("/role/{role}", response_model=list[UserOut])
def users_by_role(
    role: str,
    db: Session = Depends(get_db),
    caller: Caller = Depends(require_admin),
):
    if role not in USER_ROLES:
        raise ValidationFailed("Invalid role")
    return list_users(db, role=role)


@router.get("/{email}", response_model=UserOut)
def get_user(email: str, db: Session = Depends(get_db)):
    try:
        email = normalize_email(email)
    except ValueError:
        raise NotFound("User not found")
    user = find_user_by_email(db, email)
    if not user:
        raise NotFound("User not found")
    return user


@router.patch("/{user_id}/role")
def update_user_role(
    user_id: str,
    payload: RoleUpdate,
    db: Session = Depends(get_db),
    caller: Caller = Depends(require_admin),
):
    update_fields(db, User, user_id, {"role": payload.new_role}, "User")
    return {"message": f"User role updated to {payload.new_role}"}


@router.patch("/{user_id}/active")
def update_user_active(
    user_id: str,
    payload: ActiveUpdate,
    db: Session = Depends(get_db),
    caller: Caller = Depends(require_admin),
):
    if user_id == caller.user_id and not payload.is_active:
        raise ValidationFailed("Admins cannot deactivate themselves")
    update_fields(db, User, user_id, {"is_active": payload.is_active}, "User")
    state = "activated" if payload.is_active else "deactivated"
    return {"message": f"User {state}"}
