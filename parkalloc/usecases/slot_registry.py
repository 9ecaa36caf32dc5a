from __future__ import annotations

import logging
import random
from typing import Optional

from sqlalchemy import select, update, delete, func, or_
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from .. import models
from ..errors import (
    DuplicateSlotNumber,
    GenerationExhausted,
    HasActiveAssignment,
    InvalidInput,
    InvalidStateTransition,
    NotFound,
)
from ..schemas import SlotBulkCreate, SlotCreate, SlotPatch
from ..utils import log_event, page_of
from .slot_numbers import (
    SLOT_NUMBER_MAX_ATTEMPTS,
    SequentialNumbers,
    existing_numbers,
    generate_unique,
    is_slot_number_collision,
    slot_number_exists,
)

logger = logging.getLogger(__name__)

MAX_PAGE_SIZE = 100


def _not_found(msg: str):
    raise NotFound(msg)


def _duplicate(slot_number: str):
    raise DuplicateSlotNumber(message=f"slot number {slot_number} already exists")


def _store_reason(exc: SQLAlchemyError) -> str:
    orig = getattr(exc, "orig", None)
    return str(orig) if orig is not None else str(exc)


# ---------------- READ HELPERS ----------------

def get_slot_row(db: Session, slot_id: str) -> models.ParkingSlot:
    slot = db.get(models.ParkingSlot, slot_id)
    if not slot:
        _not_found("slot_not_found")
    return slot


def active_assignment(db: Session, slot_id: str) -> Optional[models.SlotRequest]:
    return db.execute(
        select(models.SlotRequest).where(
            models.SlotRequest.slot_id == slot_id,
            models.SlotRequest.status == models.REQUEST_APPROVED,
        ).limit(1)
    ).scalar_one_or_none()


def _assignments(db: Session, slot_ids: list[str]) -> dict[str, dict]:
    if not slot_ids:
        return {}
    rows = db.execute(
        select(models.SlotRequest.slot_id, models.SlotRequest.user_id, models.Vehicle.vehicle_id, models.Vehicle.plate_number)
        .join(models.Vehicle, models.Vehicle.vehicle_id == models.SlotRequest.vehicle_id)
        .where(
            models.SlotRequest.slot_id.in_(slot_ids),
            models.SlotRequest.status == models.REQUEST_APPROVED,
        )
    ).all()
    return {
        slot_id: {"user_id": user_id, "vehicle_id": vehicle_id, "vehicle_plate": plate}
        for slot_id, user_id, vehicle_id, plate in rows
    }


def _as_dict(slot: models.ParkingSlot, assigned_to: Optional[dict]) -> dict:
    return {
        "slot_id": slot.slot_id,
        "slot_number": slot.slot_number,
        "vehicle_type": slot.vehicle_type,
        "size": slot.size,
        "location": slot.location,
        "status": slot.status,
        "created_at": slot.created_at,
        "updated_at": slot.updated_at,
        "assigned_to": assigned_to,
    }


def slot_out(db: Session, slot: models.ParkingSlot) -> dict:
    return _as_dict(slot, _assignments(db, [slot.slot_id]).get(slot.slot_id))


def slots_out(db: Session, slots: list[models.ParkingSlot]) -> list[dict]:
    assigned = _assignments(db, [s.slot_id for s in slots])
    return [_as_dict(s, assigned.get(s.slot_id)) for s in slots]


# ---------------- CREATE ----------------

def _insert_slot(db: Session, slot_number: str, vehicle_type: str, size: str, location: str,
                 status: str = models.SLOT_AVAILABLE, actor_id: Optional[str] = None) -> models.ParkingSlot:
    """Insert and commit a single slot. Failures are rolled back and re-raised."""
    now = models.utcnow()
    slot = models.ParkingSlot(
        slot_id=models.new_id("slot"),
        slot_number=slot_number,
        vehicle_type=vehicle_type,
        size=size,
        location=location,
        status=status,
        created_at=now,
        updated_at=now,
    )
    db.add(slot)
    log_event(db, "slot_created", actor_type="admin", actor_id=actor_id, slot_id=slot.slot_id,
              payload={"slot_number": slot_number})
    try:
        db.commit()
    except SQLAlchemyError:
        db.rollback()
        raise
    db.refresh(slot)
    return slot


def _insert_generated(db: Session, body: SlotCreate, actor_id: Optional[str], rng,
                      max_attempts: int = SLOT_NUMBER_MAX_ATTEMPTS) -> models.ParkingSlot:
    """A drawn number can still lose to a concurrent insert; draw again within the same bound."""
    for attempt in range(1, max_attempts + 1):
        slot_number = generate_unique(db, rng=rng)
        try:
            return _insert_slot(db, slot_number, body.vehicle_type, body.size, body.location,
                                status=body.status, actor_id=actor_id)
        except IntegrityError as e:
            if not is_slot_number_collision(e):
                raise
            logger.info("[SLOTS] %s taken at insert (attempt %d/%d)", slot_number, attempt, max_attempts)

    logger.warning("[SLOTS] generated numbers kept colliding after %d attempts", max_attempts)
    raise GenerationExhausted(
        message=f"failed to generate a unique slot number after {max_attempts} attempts"
    )


def create_slot(db: Session, body: SlotCreate, actor_id: Optional[str] = None, rng=random) -> dict:
    if body.status == models.SLOT_OCCUPIED:
        raise InvalidStateTransition("slot_occupied_only_via_approval")

    if body.slot_number:
        slot_number = body.slot_number
        if slot_number_exists(db, slot_number):
            _duplicate(slot_number)
        try:
            slot = _insert_slot(db, slot_number, body.vehicle_type, body.size, body.location,
                                status=body.status, actor_id=actor_id)
        except IntegrityError as e:
            if is_slot_number_collision(e):
                _duplicate(slot_number)
            raise
    else:
        slot = _insert_generated(db, body, actor_id, rng)

    logger.info("[SLOTS] created %s (%s/%s/%s)", slot.slot_number, slot.vehicle_type, slot.size, slot.location)
    return slot_out(db, slot)


def create_slots_bulk(db: Session, body: SlotBulkCreate, actor_id: Optional[str] = None) -> dict:
    numbers = SequentialNumbers(body.prefix, existing_numbers(db, body.prefix))
    created: list[models.ParkingSlot] = []
    failed: list[dict] = []

    for _ in range(body.count):
        slot_number = next(numbers)
        while True:
            try:
                created.append(_insert_slot(db, slot_number, body.vehicle_type, body.size, body.location,
                                            actor_id=actor_id))
                break
            except SQLAlchemyError as e:
                if is_slot_number_collision(e):
                    # snapshot went stale under a concurrent writer; draw the next number
                    logger.info("[SLOTS] %s taken at insert, retrying with next sequence", slot_number)
                    slot_number = next(numbers)
                    continue
                logger.warning("[SLOTS] bulk insert of %s failed: %s", slot_number, _store_reason(e))
                failed.append({"slot_number": slot_number, "reason": _store_reason(e)})
                break

    if failed:
        logger.warning("[SLOTS] bulk %s: created %d of %d", body.prefix, len(created), body.count)
    else:
        logger.info("[SLOTS] bulk %s: created %d", body.prefix, len(created))

    return {
        "created_slots": slots_out(db, created),
        "total_created": len(created),
        "requested_count": body.count,
        "failed_attempts": failed,
    }


# ---------------- READ ----------------

def get_slot(db: Session, slot_id: str) -> dict:
    return slot_out(db, get_slot_row(db, slot_id))


def list_slots(db: Session, search: Optional[str], status: Optional[str], page: int = 1, limit: int = 10) -> dict:
    if page < 1 or limit < 1 or limit > MAX_PAGE_SIZE:
        raise InvalidInput("invalid_page_or_limit")

    q = select(models.ParkingSlot)
    if search and search.strip():
        s = search.strip()
        upper = s.upper()
        conds = [func.lower(models.ParkingSlot.slot_number).contains(s.lower(), autoescape=True)]
        if upper in models.LOCATIONS:
            conds.append(models.ParkingSlot.location == upper)
        if upper in models.VEHICLE_TYPES:
            conds.append(models.ParkingSlot.vehicle_type == upper)
        q = q.where(or_(*conds))
    if status:
        q = q.where(models.ParkingSlot.status == status)

    total = db.execute(select(func.count()).select_from(q.subquery())).scalar_one()
    rows = db.execute(
        q.order_by(models.ParkingSlot.created_at.asc(), models.ParkingSlot.slot_number.asc())
        .offset((page - 1) * limit)
        .limit(limit)
    ).scalars().all()
    return page_of(slots_out(db, list(rows)), total, page, limit)


def find_compatible(db: Session, vehicle_type: str, size: str,
                    preferred_location: Optional[str] = None) -> Optional[models.ParkingSlot]:
    """Oldest AVAILABLE slot of exactly this type and size; preferred location first."""
    q = (
        select(models.ParkingSlot)
        .where(
            models.ParkingSlot.status == models.SLOT_AVAILABLE,
            models.ParkingSlot.vehicle_type == vehicle_type,
            models.ParkingSlot.size == size,
        )
        .order_by(models.ParkingSlot.created_at.asc(), models.ParkingSlot.slot_number.asc())
        .limit(1)
    )
    if preferred_location:
        slot = db.execute(q.where(models.ParkingSlot.location == preferred_location)).scalar_one_or_none()
        if slot:
            return slot
    return db.execute(q).scalar_one_or_none()


# ---------------- UPDATE / DELETE ----------------

def update_slot(db: Session, slot_id: str, body: SlotPatch, actor_id: Optional[str] = None) -> dict:
    slot = get_slot_row(db, slot_id)
    data = {k: v for k, v in body.model_dump(exclude_unset=True).items() if v is not None}

    if "slot_number" in data and data["slot_number"] != slot.slot_number:
        if slot_number_exists(db, data["slot_number"]):
            _duplicate(data["slot_number"])

    loaded_status = slot.status
    if "status" in data and data["status"] != loaded_status:
        if data["status"] == models.SLOT_OCCUPIED:
            raise InvalidStateTransition("slot_occupied_only_via_approval")
        if active_assignment(db, slot_id):
            raise HasActiveAssignment()

    if not data:
        return slot_out(db, slot)

    # conditional on the status we read, so an approval landing in between is not overwritten
    try:
        res = db.execute(
            update(models.ParkingSlot)
            .where(models.ParkingSlot.slot_id == slot_id, models.ParkingSlot.status == loaded_status)
            .values(**data, updated_at=models.utcnow())
            .execution_options(synchronize_session=False)
        )
        if res.rowcount != 1:
            db.rollback()
            raise InvalidStateTransition("slot_status_changed")
        log_event(db, "slot_updated", actor_type="admin", actor_id=actor_id, slot_id=slot_id, payload={"patch": data})
        db.commit()
    except IntegrityError as e:
        db.rollback()
        if is_slot_number_collision(e):
            _duplicate(data.get("slot_number", slot_id))
        raise

    db.refresh(slot)
    logger.info("[SLOTS] updated %s: %s", slot.slot_number, data)
    return slot_out(db, slot)


def delete_slot(db: Session, slot_id: str, actor_id: Optional[str] = None) -> dict:
    slot = get_slot_row(db, slot_id)
    slot_number = slot.slot_number
    if active_assignment(db, slot_id):
        raise HasActiveAssignment()

    approved = (
        select(models.SlotRequest.request_id)
        .where(
            models.SlotRequest.slot_id == models.ParkingSlot.slot_id,
            models.SlotRequest.status == models.REQUEST_APPROVED,
        )
        .exists()
    )
    res = db.execute(
        delete(models.ParkingSlot)
        .where(
            models.ParkingSlot.slot_id == slot_id,
            models.ParkingSlot.status != models.SLOT_OCCUPIED,
            ~approved,
        )
        .execution_options(synchronize_session=False)
    )
    if res.rowcount != 1:
        db.rollback()
        raise HasActiveAssignment()

    db.expunge(slot)
    log_event(db, "slot_deleted", actor_type="admin", actor_id=actor_id, slot_id=slot_id,
              payload={"slot_number": slot_number})
    db.commit()
    logger.info("[SLOTS] deleted %s", slot_number)
    return {"ok": True}
