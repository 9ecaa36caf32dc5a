from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from .deps import Caller, get_caller, get_db, require_admin
from .. import schemas
from ..usecases import slot_registry as uc

router = APIRouter(prefix="/slots", tags=["slots"])


@router.post("/bulk", response_model=schemas.SlotBulkOut, status_code=201)
def create_slots_bulk(
    body: schemas.SlotBulkCreate,
    db: Session = Depends(get_db),
    admin: Caller = Depends(require_admin),
):
    return uc.create_slots_bulk(db, body, actor_id=admin.user_id)


@router.post("", response_model=schemas.SlotOut, status_code=201)
def create_slot(
    body: schemas.SlotCreate,
    db: Session = Depends(get_db),
    admin: Caller = Depends(require_admin),
):
    return uc.create_slot(db, body, actor_id=admin.user_id)


@router.get("", response_model=schemas.SlotPage)
def list_slots(
    db: Session = Depends(get_db),
    caller: Caller = Depends(get_caller),
    search: str | None = Query(default=None),
    status: schemas.SlotStatus | None = Query(default=None),
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=10, ge=1, le=100),
):
    return uc.list_slots(db, search, status, page, limit)


@router.get("/{slot_id}", response_model=schemas.SlotOut)
def get_slot(slot_id: str, db: Session = Depends(get_db), caller: Caller = Depends(get_caller)):
    return uc.get_slot(db, slot_id)


@router.put("/{slot_id}", response_model=schemas.SlotOut)
def update_slot(
    slot_id: str,
    body: schemas.SlotPatch,
    db: Session = Depends(get_db),
    admin: Caller = Depends(require_admin),
):
    return uc.update_slot(db, slot_id, body, actor_id=admin.user_id)


@router.delete("/{slot_id}")
def delete_slot(slot_id: str, db: Session = Depends(get_db), admin: Caller = Depends(require_admin)):
    return uc.delete_slot(db, slot_id, actor_id=admin.user_id)
