from __future__ import annotations

from typing import Optional

from sqlalchemy.orm import Session

from .. import models
from ..errors import NoCompatibleSlot, NotFound, SlotUnavailable
from ..vehicles import VehicleInfo
from . import slot_registry


def match(
    db: Session,
    vehicle: VehicleInfo,
    preferred_location: Optional[str] = None,
    explicit_slot_id: Optional[str] = None,
) -> models.ParkingSlot:
    """
    Pick the slot an approval will occupy.

    An explicit slot from the admin is taken as-is (type and size are not
    re-checked) but must exist and still be AVAILABLE. Without one, the
    oldest compatible AVAILABLE slot wins.
    """
    if explicit_slot_id:
        slot = db.get(models.ParkingSlot, explicit_slot_id)
        if not slot:
            raise NotFound("slot_not_found")
        if slot.status != models.SLOT_AVAILABLE:
            raise SlotUnavailable(message=f"slot {slot.slot_number} is {slot.status}")
        return slot

    slot = slot_registry.find_compatible(db, vehicle.vehicle_type, vehicle.size, preferred_location)
    if not slot:
        raise NoCompatibleSlot(
            message=f"no available {vehicle.size} {vehicle.vehicle_type} slot"
        )
    return slot
