from typing import Optional

from fastapi import APIRouter, Body, Depends, Query
from sqlalchemy.orm import Session

from .deps import Caller, get_caller, get_db, get_directory, get_notifier, require_admin
from .. import schemas
from ..notifier import Notifier
from ..usecases import request_flow as uc
from ..vehicles import SqlVehicleDirectory

router = APIRouter(prefix="/slot-requests", tags=["slot-requests"])


@router.post("", response_model=schemas.SlotRequestOut, status_code=201)
def create_request(
    body: schemas.SlotRequestCreate,
    db: Session = Depends(get_db),
    directory: SqlVehicleDirectory = Depends(get_directory),
    caller: Caller = Depends(get_caller),
):
    return uc.create_request(db, directory, caller.user_id, body)


@router.get("", response_model=schemas.SlotRequestPage)
def list_requests(
    db: Session = Depends(get_db),
    caller: Caller = Depends(get_caller),
    search: str | None = Query(default=None),
    status: str | None = Query(default=None),
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=10, ge=1, le=100),
):
    return uc.list_requests(db, caller.user_id, caller.is_admin, search, status, page, limit)


@router.get("/{slot_id}/reason", response_model=schemas.RejectionReasonOut)
def rejection_reason(slot_id: str, db: Session = Depends(get_db), caller: Caller = Depends(get_caller)):
    return uc.get_rejection_reason_for_slot(db, slot_id)


@router.get("/{request_id}", response_model=schemas.SlotRequestOut)
def get_request(request_id: str, db: Session = Depends(get_db), caller: Caller = Depends(get_caller)):
    return uc.get_request(db, request_id, caller.user_id, caller.is_admin)


@router.put("/{request_id}", response_model=schemas.SlotRequestOut)
def edit_request(
    request_id: str,
    body: schemas.SlotRequestPatch,
    db: Session = Depends(get_db),
    directory: SqlVehicleDirectory = Depends(get_directory),
    caller: Caller = Depends(get_caller),
):
    return uc.edit_request(db, directory, request_id, caller.user_id, body)


@router.delete("/{request_id}")
def cancel_request(request_id: str, db: Session = Depends(get_db), caller: Caller = Depends(get_caller)):
    return uc.cancel_request(db, request_id, caller.user_id)


@router.put("/{request_id}/approve", response_model=schemas.SlotRequestOut)
def approve_request(
    request_id: str,
    body: Optional[schemas.ApproveSlotRequest] = Body(default=None),
    db: Session = Depends(get_db),
    directory: SqlVehicleDirectory = Depends(get_directory),
    notifier: Notifier = Depends(get_notifier),
    admin: Caller = Depends(require_admin),
):
    slot_id = body.slot_id if body else None
    return uc.approve_request(db, directory, notifier, request_id, explicit_slot_id=slot_id, actor_id=admin.user_id)


@router.put("/{request_id}/reject", response_model=schemas.SlotRequestOut)
def reject_request(
    request_id: str,
    body: schemas.RejectSlotRequest,
    db: Session = Depends(get_db),
    admin: Caller = Depends(require_admin),
):
    return uc.reject_request(db, request_id, body.reason, actor_id=admin.user_id)
