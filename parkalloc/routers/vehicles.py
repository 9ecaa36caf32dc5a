from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from .deps import Caller, get_caller, get_db
from .. import schemas
from ..usecases import vehicle_flow as uc

router = APIRouter(prefix="/vehicles", tags=["vehicles"])


@router.post("", response_model=schemas.VehicleOut, status_code=201)
def create_vehicle(body: schemas.VehicleCreate, db: Session = Depends(get_db), caller: Caller = Depends(get_caller)):
    return uc.create_vehicle(db, caller.user_id, body)


@router.get("", response_model=schemas.VehiclePage)
def list_vehicles(
    db: Session = Depends(get_db),
    caller: Caller = Depends(get_caller),
    search: str | None = Query(default=None),
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=10, ge=1, le=100),
):
    return uc.list_vehicles(db, caller.user_id, caller.is_admin, search, page, limit)


@router.get("/{vehicle_id}", response_model=schemas.VehicleOut)
def get_vehicle(vehicle_id: str, db: Session = Depends(get_db), caller: Caller = Depends(get_caller)):
    return uc.get_vehicle(db, caller.user_id, vehicle_id, caller.is_admin)


@router.delete("/{vehicle_id}")
def delete_vehicle(vehicle_id: str, db: Session = Depends(get_db), caller: Caller = Depends(get_caller)):
    return uc.delete_vehicle(db, caller.user_id, vehicle_id)


@router.put("/{vehicle_id}", response_model=schemas.VehicleOut)
def update_vehicle(
    vehicle_id: str,
    body: schemas.VehiclePatch,
    db: Session = Depends(get_db),
    caller: Caller = Depends(get_caller),
):
    return uc.update_vehicle(db, caller.user_id, vehicle_id, body)
