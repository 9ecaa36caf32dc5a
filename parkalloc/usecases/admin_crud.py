from __future__ import annotations

from typing import Optional

from sqlalchemy import func, or_, select
from sqlalchemy.orm import Session

from .. import models
from ..errors import Conflict, NotFound
from ..schemas import AdminUserCreate
from ..utils import log_event


# ---------------- USERS ----------------
def list_users(db: Session, search: Optional[str], role: Optional[str], limit: int):
    q = select(models.User)
    if search and search.strip():
        needle = search.strip().lower()
        q = q.where(or_(*(func.lower(col).contains(needle, autoescape=True)
                          for col in (models.User.user_id, models.User.name, models.User.email))))
    if role:
        q = q.where(models.User.role == role.upper())
    return db.execute(q.order_by(models.User.name.asc()).limit(limit)).scalars().all()


def create_user(db: Session, body: AdminUserCreate, actor_id: Optional[str] = None) -> models.User:
    """Register a parking user. E-mail is stored lower-cased; approval notices go there."""
    email = body.email.strip().lower()
    user_id = body.user_id or models.new_id("user")

    if db.get(models.User, user_id) is not None:
        raise Conflict("user_id_already_exists")
    taken = db.execute(select(models.User.user_id).where(models.User.email == email)).first()
    if taken:
        raise Conflict("email_already_in_use")

    now = models.utcnow()
    user = models.User(user_id=user_id, name=body.name, email=email, role=body.role,
                       created_at=now, updated_at=now)
    db.add(user)
    log_event(db, "user_registered", actor_type="admin", actor_id=actor_id,
              payload={"user_id": user_id, "role": body.role})
    db.commit()
    db.refresh(user)
    return user


def get_user(db: Session, user_id: str) -> models.User:
    user = db.get(models.User, user_id)
    if user is None:
        raise NotFound("user_not_found")
    return user


# ---------------- AUDIT LOG ----------------
_EVENT_FILTERS = {
    "event_type": models.Event.event_type,
    "actor_id": models.Event.actor_id,
    "request_id": models.Event.request_id,
    "slot_id": models.Event.slot_id,
}


def list_events(db: Session, event_type: Optional[str], actor_id: Optional[str], request_id: Optional[str],
                slot_id: Optional[str], limit: int):
    wanted = {"event_type": event_type, "actor_id": actor_id, "request_id": request_id, "slot_id": slot_id}
    q = select(models.Event)
    for name, value in wanted.items():
        if value:
            q = q.where(_EVENT_FILTERS[name] == value)
    q = q.order_by(models.Event.ts.desc(), models.Event.event_id.desc()).limit(limit)
    return db.execute(q).scalars().all()
