"""
SlotRequest lifecycle.

    PENDING --approve--> APPROVED
    PENDING --reject---> REJECTED
    PENDING --cancel---> (deleted)
    PENDING --edit-----> PENDING

APPROVED and REJECTED are terminal. Creating a request reserves nothing;
the slot is only picked (and occupied) at approval time.
"""
from __future__ import annotations

import logging
from datetime import date, datetime
from typing import Optional

from sqlalchemy import select, update, delete, func, or_
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, aliased

from .. import models
from ..errors import (
    InvalidInput,
    InvalidStateTransition,
    NotFound,
    NotRejected,
    SlotUnavailable,
    VehicleAlreadyAssigned,
    VehicleNotOwned,
)
from ..notifier import Notifier
from ..schemas import SlotRequestCreate, SlotRequestPatch
from ..utils import log_event, page_of
from ..vehicles import VehicleDirectory, VehicleInfo
from . import matcher

logger = logging.getLogger(__name__)

MAX_PAGE_SIZE = 100


def today() -> date:
    return datetime.now().date()


def _not_found(msg: str):
    raise NotFound(msg)


def _not_pending(req: models.SlotRequest):
    raise InvalidStateTransition(
        "slot_request_not_pending",
        f"slot request {req.request_id} is {req.status}",
    )


def _already_assigned(vehicle: VehicleInfo):
    raise VehicleAlreadyAssigned(message=f"vehicle {vehicle.plate_number} already holds an approved slot")


def _must_own_vehicle(directory: VehicleDirectory, user_id: str, vehicle_id: str) -> VehicleInfo:
    vehicle = directory.get_vehicle(vehicle_id)
    if not vehicle or vehicle.owner_id != user_id:
        raise VehicleNotOwned(message="vehicle not found or does not belong to user")
    return vehicle


def _check_window(start: Optional[date], end: Optional[date], start_changed: bool = True):
    if start and start_changed and start < today():
        raise InvalidInput("invalid_request_window", "start_date must not be earlier than the current date")
    if start and end and end < start:
        raise InvalidInput("invalid_request_window", "end_date must not be earlier than start_date")


def _get_request(db: Session, request_id: str) -> models.SlotRequest:
    req = db.get(models.SlotRequest, request_id)
    if not req:
        _not_found("slot_request_not_found")
    return req


def _own_pending(db: Session, request_id: str, caller_id: str) -> models.SlotRequest:
    req = db.get(models.SlotRequest, request_id)
    # someone else's request looks exactly like a missing one
    if not req or req.user_id != caller_id:
        _not_found("slot_request_not_found")
    if req.status != models.REQUEST_PENDING:
        _not_pending(req)
    return req


# ---------------- OWNER ACTIONS ----------------

def create_request(db: Session, directory: VehicleDirectory, user_id: str, body: SlotRequestCreate) -> models.SlotRequest:
    _must_own_vehicle(directory, user_id, body.vehicle_id)
    _check_window(body.start_date, body.end_date)

    now = models.utcnow()
    req = models.SlotRequest(
        request_id=models.new_id("req"),
        user_id=user_id,
        vehicle_id=body.vehicle_id,
        preferred_location=body.preferred_location,
        start_date=body.start_date,
        end_date=body.end_date,
        notes=body.notes,
        status=models.REQUEST_PENDING,
        created_at=now,
        updated_at=now,
    )
    db.add(req)
    log_event(db, "slot_request_created", actor_type="user", actor_id=user_id, request_id=req.request_id,
              payload={"vehicle_id": body.vehicle_id})
    db.commit()
    db.refresh(req)
    logger.info("[REQUESTS] %s created by %s for vehicle %s", req.request_id, user_id, body.vehicle_id)
    return req


def edit_request(db: Session, directory: VehicleDirectory, request_id: str, caller_id: str,
                 body: SlotRequestPatch) -> models.SlotRequest:
    req = _own_pending(db, request_id, caller_id)
    data = body.model_dump(exclude_unset=True)

    if data.get("vehicle_id") and data["vehicle_id"] != req.vehicle_id:
        _must_own_vehicle(directory, caller_id, data["vehicle_id"])
    elif "vehicle_id" in data:
        data.pop("vehicle_id")

    start = data.get("start_date", req.start_date)
    end = data.get("end_date", req.end_date)
    _check_window(start, end, start_changed="start_date" in data)

    if not data:
        return req

    res = db.execute(
        update(models.SlotRequest)
        .where(
            models.SlotRequest.request_id == request_id,
            models.SlotRequest.user_id == caller_id,
            models.SlotRequest.status == models.REQUEST_PENDING,
        )
        .values(**data, updated_at=models.utcnow())
        .execution_options(synchronize_session=False)
    )
    if res.rowcount != 1:
        db.rollback()
        _not_pending(_get_request(db, request_id))

    log_event(db, "slot_request_updated", actor_type="user", actor_id=caller_id, request_id=request_id,
              payload={"patch": data})
    db.commit()
    db.refresh(req)
    return req


def cancel_request(db: Session, request_id: str, caller_id: str) -> dict:
    req = _own_pending(db, request_id, caller_id)

    res = db.execute(
        delete(models.SlotRequest)
        .where(
            models.SlotRequest.request_id == request_id,
            models.SlotRequest.status == models.REQUEST_PENDING,
        )
        .execution_options(synchronize_session=False)
    )
    if res.rowcount != 1:
        db.rollback()
        _not_pending(_get_request(db, request_id))

    db.expunge(req)
    log_event(db, "slot_request_deleted", actor_type="user", actor_id=caller_id, request_id=request_id)
    db.commit()
    logger.info("[REQUESTS] %s cancelled by owner", request_id)
    return {"ok": True}


# ---------------- ADMIN ACTIONS ----------------

def _notify(notifier: Notifier, vehicle: VehicleInfo, slot_number: str, approved_at: datetime) -> None:
    if not vehicle.owner_email:
        logger.warning("[NOTIFY] no address for owner %s; skipping approval notice", vehicle.owner_id)
        return
    try:
        ok = notifier.notify_approval(vehicle.owner_email, slot_number, vehicle.plate_number, approved_at)
    except Exception as e:
        logger.warning("[NOTIFY] approval notice for %s failed: %r", slot_number, e)
        return
    if not ok:
        logger.warning("[NOTIFY] approval notice for %s was not delivered", slot_number)


def approve_request(
    db: Session,
    directory: VehicleDirectory,
    notifier: Notifier,
    request_id: str,
    explicit_slot_id: Optional[str] = None,
    actor_id: Optional[str] = None,
) -> models.SlotRequest:
    req = _get_request(db, request_id)
    if req.status != models.REQUEST_PENDING:
        _not_pending(req)

    vehicle = directory.get_vehicle(req.vehicle_id)
    if not vehicle:
        _not_found("vehicle_not_found")

    vehicle_id = req.vehicle_id
    # aliased so the guard is not correlated to the row being updated below
    other = aliased(models.SlotRequest)
    holding = select(other.request_id).where(
        other.vehicle_id == vehicle_id,
        other.status == models.REQUEST_APPROVED,
        other.request_id != request_id,
    )
    if db.execute(holding.limit(1)).first():
        _already_assigned(vehicle)

    slot = matcher.match(db, vehicle, req.preferred_location, explicit_slot_id)
    slot_id, slot_number = slot.slot_id, slot.slot_number
    approved_at = models.utcnow()

    # both flips are conditional and commit together; either guard failing undoes the other
    taken = db.execute(
        update(models.ParkingSlot)
        .where(models.ParkingSlot.slot_id == slot_id, models.ParkingSlot.status == models.SLOT_AVAILABLE)
        .values(status=models.SLOT_OCCUPIED, updated_at=approved_at)
        .execution_options(synchronize_session=False)
    )
    if taken.rowcount != 1:
        db.rollback()
        logger.info("[REQUESTS] approval of %s lost slot %s to a concurrent writer", request_id, slot_number)
        raise SlotUnavailable(message=f"slot {slot_number} is no longer available")

    try:
        moved = db.execute(
            update(models.SlotRequest)
            .where(
                models.SlotRequest.request_id == request_id,
                models.SlotRequest.status == models.REQUEST_PENDING,
                ~holding.exists(),
            )
            .values(
                status=models.REQUEST_APPROVED,
                slot_id=slot_id,
                slot_number=slot_number,
                rejection_reason=None,
                updated_at=approved_at,
            )
            .execution_options(synchronize_session=False)
        )
    except IntegrityError:
        # the partial unique index caught a concurrent approval for this vehicle
        db.rollback()
        _already_assigned(vehicle)
    if moved.rowcount != 1:
        db.rollback()
        current = _get_request(db, request_id)
        if current.status != models.REQUEST_PENDING:
            _not_pending(current)
        logger.info("[REQUESTS] approval of %s lost: vehicle %s approved elsewhere", request_id, vehicle_id)
        _already_assigned(vehicle)

    log_event(db, "slot_request_approved", actor_type="admin", actor_id=actor_id, request_id=request_id,
              slot_id=slot_id, payload={"slot_number": slot_number, "explicit": bool(explicit_slot_id)})
    db.commit()
    db.refresh(req)
    logger.info("[REQUESTS] %s approved -> %s", request_id, slot_number)

    _notify(notifier, vehicle, slot_number, approved_at)
    return req


def reject_request(db: Session, request_id: str, reason: str, actor_id: Optional[str] = None) -> models.SlotRequest:
    if not reason or not reason.strip():
        raise InvalidInput("rejection_reason_required")

    req = _get_request(db, request_id)
    if req.status != models.REQUEST_PENDING:
        _not_pending(req)

    res = db.execute(
        update(models.SlotRequest)
        .where(models.SlotRequest.request_id == request_id, models.SlotRequest.status == models.REQUEST_PENDING)
        .values(status=models.REQUEST_REJECTED, rejection_reason=reason.strip(), updated_at=models.utcnow())
        .execution_options(synchronize_session=False)
    )
    if res.rowcount != 1:
        db.rollback()
        _not_pending(_get_request(db, request_id))

    log_event(db, "slot_request_rejected", actor_type="admin", actor_id=actor_id, request_id=request_id,
              payload={"reason": reason.strip()})
    db.commit()
    db.refresh(req)
    logger.info("[REQUESTS] %s rejected: %s", request_id, req.rejection_reason)
    return req


# ---------------- READ ----------------

def get_request(db: Session, request_id: str, caller_id: str, is_admin: bool) -> models.SlotRequest:
    req = db.get(models.SlotRequest, request_id)
    if not req or (not is_admin and req.user_id != caller_id):
        _not_found("slot_request_not_found")
    return req


def list_requests(
    db: Session,
    caller_id: str,
    is_admin: bool,
    search: Optional[str] = None,
    status: Optional[str] = None,
    page: int = 1,
    limit: int = 10,
) -> dict:
    if page < 1 or limit < 1 or limit > MAX_PAGE_SIZE:
        raise InvalidInput("invalid_page_or_limit")

    q = select(models.SlotRequest).join(models.Vehicle, models.Vehicle.vehicle_id == models.SlotRequest.vehicle_id)
    if not is_admin:
        q = q.where(models.SlotRequest.user_id == caller_id)
    # unknown status values are ignored rather than rejected
    if status and status.upper() in models.REQUEST_STATUSES:
        q = q.where(models.SlotRequest.status == status.upper())
    if search and search.strip():
        s = search.strip().lower()
        q = q.where(or_(
            func.lower(models.Vehicle.plate_number).contains(s, autoescape=True),
            func.lower(models.SlotRequest.slot_number).contains(s, autoescape=True),
        ))

    total = db.execute(select(func.count()).select_from(q.subquery())).scalar_one()
    rows = db.execute(
        q.order_by(models.SlotRequest.created_at.desc())
        .offset((page - 1) * limit)
        .limit(limit)
    ).scalars().all()
    return page_of(list(rows), total, page, limit)


def get_rejection_reason_for_slot(db: Session, slot_id: str) -> dict:
    req = db.execute(
        select(models.SlotRequest)
        .where(models.SlotRequest.slot_id == slot_id)
        .order_by(models.SlotRequest.created_at.desc())
        .limit(1)
    ).scalar_one_or_none()
    if not req:
        _not_found("slot_request_not_found")
    if req.status != models.REQUEST_REJECTED:
        raise NotRejected(message=f"latest request for slot {slot_id} is {req.status}")
    return {"slot_id": slot_id, "request_id": req.request_id, "rejection_reason": req.rejection_reason}
