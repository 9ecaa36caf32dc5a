from __future__ import annotations

from dataclasses import dataclass
from typing import Optional, Protocol

from sqlalchemy import select
from sqlalchemy.orm import Session

from . import models


@dataclass(frozen=True)
class VehicleInfo:
    vehicle_id: str
    owner_id: str
    vehicle_type: str
    size: str
    plate_number: str
    owner_email: Optional[str] = None


class VehicleDirectory(Protocol):
    def get_vehicle(self, vehicle_id: str) -> Optional[VehicleInfo]: ...


class SqlVehicleDirectory:
    """Vehicle lookups served from the `vehicles` and `users` tables."""

    def __init__(self, db: Session) -> None:
        self._db = db

    def get_vehicle(self, vehicle_id: str) -> Optional[VehicleInfo]:
        row = self._db.execute(
            select(models.Vehicle, models.User.email)
            .join(models.User, models.User.user_id == models.Vehicle.owner_id)
            .where(models.Vehicle.vehicle_id == vehicle_id)
        ).first()
        if not row:
            return None

        v, email = row
        return VehicleInfo(
            vehicle_id=v.vehicle_id,
            owner_id=v.owner_id,
            vehicle_type=v.vehicle_type,
            size=v.size,
            plate_number=v.plate_number,
            owner_email=email,
        )
