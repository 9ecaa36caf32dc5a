from __future__ import annotations

from typing import Optional

from sqlalchemy import select, update, func, or_
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from .. import models
from ..errors import Conflict, HasActiveAssignment, InvalidInput, NotFound
from ..schemas import VehicleCreate, VehiclePatch
from ..utils import log_event, page_of

MAX_PAGE_SIZE = 100


def _owned_vehicle(db: Session, owner_id: str, vehicle_id: str, is_admin: bool = False) -> models.Vehicle:
    v = db.get(models.Vehicle, vehicle_id)
    if not v or (not is_admin and v.owner_id != owner_id):
        raise NotFound("vehicle_not_found")
    return v


def _plate_taken(db: Session, plate: str) -> bool:
    return db.execute(
        select(models.Vehicle.vehicle_id).where(models.Vehicle.plate_number == plate).limit(1)
    ).first() is not None


def _approved_for(vehicle_id: str):
    return select(models.SlotRequest.request_id).where(
        models.SlotRequest.vehicle_id == vehicle_id,
        models.SlotRequest.status == models.REQUEST_APPROVED,
    )


def create_vehicle(db: Session, owner_id: str, body: VehicleCreate) -> models.Vehicle:
    if not db.get(models.User, owner_id):
        raise NotFound("user_not_found")
    plate = body.plate_number.strip().upper()
    if _plate_taken(db, plate):
        raise Conflict("plate_number_already_exists")

    now = models.utcnow()
    v = models.Vehicle(
        vehicle_id=models.new_id("veh"),
        owner_id=owner_id,
        plate_number=plate,
        vehicle_type=body.vehicle_type,
        size=body.size,
        created_at=now,
        updated_at=now,
    )
    db.add(v)
    log_event(db, "vehicle_created", actor_type="user", actor_id=owner_id, payload={"plate_number": plate})
    db.commit()
    db.refresh(v)
    return v


def update_vehicle(db: Session, owner_id: str, vehicle_id: str, body: VehiclePatch) -> models.Vehicle:
    """
    Owner edits plate, type or size. Type and size decide which slots a
    vehicle matches, so they are frozen while it holds an approved slot.
    """
    v = _owned_vehicle(db, owner_id, vehicle_id)
    data = {k: val for k, val in body.model_dump(exclude_unset=True).items() if val is not None}

    if "plate_number" in data:
        data["plate_number"] = data["plate_number"].strip().upper()
    data = {k: val for k, val in data.items() if val != getattr(v, k)}
    if not data:
        return v

    if "plate_number" in data and _plate_taken(db, data["plate_number"]):
        raise Conflict("plate_number_already_exists")

    q = update(models.Vehicle).where(
        models.Vehicle.vehicle_id == vehicle_id,
        models.Vehicle.owner_id == owner_id,
    )
    reshaped = "vehicle_type" in data or "size" in data
    if reshaped:
        if db.execute(_approved_for(vehicle_id).limit(1)).first():
            raise HasActiveAssignment("vehicle_has_approved_request")
        # an approval landing after the check above still blocks the write
        q = q.where(~_approved_for(vehicle_id).exists())

    try:
        res = db.execute(
            q.values(**data, updated_at=models.utcnow()).execution_options(synchronize_session=False)
        )
    except IntegrityError:
        db.rollback()
        raise Conflict("plate_number_already_exists")
    if res.rowcount != 1:
        db.rollback()
        raise HasActiveAssignment("vehicle_has_approved_request")

    log_event(db, "vehicle_updated", actor_type="user", actor_id=owner_id,
              payload={"vehicle_id": vehicle_id, "patch": data})
    db.commit()
    db.refresh(v)
    return v


def list_vehicles(
    db: Session,
    owner_id: str,
    is_admin: bool,
    search: Optional[str] = None,
    page: int = 1,
    limit: int = 10,
) -> dict:
    if page < 1 or limit < 1 or limit > MAX_PAGE_SIZE:
        raise InvalidInput("invalid_page_or_limit")

    q = select(models.Vehicle)
    if not is_admin:
        q = q.where(models.Vehicle.owner_id == owner_id)
    if search and search.strip():
        s = search.strip()
        conds = [func.lower(models.Vehicle.plate_number).contains(s.lower(), autoescape=True)]
        if s.upper() in models.VEHICLE_TYPES:
            conds.append(models.Vehicle.vehicle_type == s.upper())
        q = q.where(or_(*conds))

    total = db.execute(select(func.count()).select_from(q.subquery())).scalar_one()
    rows = db.execute(
        q.order_by(models.Vehicle.created_at.desc(), models.Vehicle.plate_number.asc())
        .offset((page - 1) * limit)
        .limit(limit)
    ).scalars().all()
    return page_of(list(rows), total, page, limit)


def get_vehicle(db: Session, owner_id: str, vehicle_id: str, is_admin: bool = False) -> models.Vehicle:
    return _owned_vehicle(db, owner_id, vehicle_id, is_admin)


def delete_vehicle(db: Session, owner_id: str, vehicle_id: str) -> dict:
    v = _owned_vehicle(db, owner_id, vehicle_id)
    if db.execute(_approved_for(vehicle_id).limit(1)).first():
        raise HasActiveAssignment("vehicle_has_approved_request")

    # pending/rejected history goes with the vehicle
    for req in db.execute(
        select(models.SlotRequest).where(models.SlotRequest.vehicle_id == vehicle_id)
    ).scalars().all():
        db.delete(req)
    db.delete(v)
    log_event(db, "vehicle_deleted", actor_type="user", actor_id=owner_id, payload={"vehicle_id": vehicle_id})
    db.commit()
    return {"ok": True}
