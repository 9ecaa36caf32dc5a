from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from .deps import Caller, get_db, require_admin
from .. import schemas
from ..usecases import admin_crud as uc

router = APIRouter(prefix="/admin", tags=["admin"])


# ---------------- USERS ----------------
@router.get("/users", response_model=list[schemas.UserOut])
def list_users(
    db: Session = Depends(get_db),
    admin: Caller = Depends(require_admin),
    search: str | None = Query(default=None),
    role: str | None = Query(default=None),
    limit: int = Query(default=200, ge=1, le=1000),
):
    return uc.list_users(db, search, role, limit)


@router.post("/users", response_model=schemas.UserOut, status_code=201)
def create_user(body: schemas.AdminUserCreate, db: Session = Depends(get_db), admin: Caller = Depends(require_admin)):
    return uc.create_user(db, body, actor_id=admin.user_id)


@router.get("/users/{user_id}", response_model=schemas.UserOut)
def get_user(user_id: str, db: Session = Depends(get_db), admin: Caller = Depends(require_admin)):
    return uc.get_user(db, user_id)


# ---------------- EVENTS (audit log) ----------------
@router.get("/events", response_model=list[schemas.EventOut])
def list_events(
    db: Session = Depends(get_db),
    admin: Caller = Depends(require_admin),
    event_type: str | None = Query(default=None),
    actor_id: str | None = Query(default=None),
    request_id: str | None = Query(default=None),
    slot_id: str | None = Query(default=None),
    limit: int = Query(default=200, ge=1, le=2000),
):
    return uc.list_events(db, event_type, actor_id, request_id, slot_id, limit)
