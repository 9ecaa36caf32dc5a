from __future__ import annotations

from pydantic import BaseModel, ConfigDict, Field, model_validator
from typing import Optional, List, Literal
from datetime import date, datetime


VehicleType = Literal["CAR", "MOTORCYCLE", "TRUCK"]
SlotSize = Literal["SMALL", "MEDIUM", "LARGE"]
Location = Literal["NORTH", "EAST", "SOUTH", "WEST"]
SlotStatus = Literal["AVAILABLE", "OCCUPIED", "UNAVAILABLE"]
RequestStatus = Literal["PENDING", "APPROVED", "REJECTED"]
UserRole = Literal["USER", "ADMIN"]


class ErrorOut(BaseModel):
    detail: str
    message: str


# ---------------- USERS ----------------

class AdminUserCreate(BaseModel):
    user_id: Optional[str] = None   # server can generate
    name: str
    email: str
    role: UserRole = "USER"


class UserOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    user_id: str
    name: str
    email: str
    role: str
    created_at: datetime
    updated_at: datetime


# ---------------- VEHICLES ----------------

class VehicleCreate(BaseModel):
    plate_number: str = Field(min_length=1)
    vehicle_type: VehicleType
    size: SlotSize


class VehiclePatch(BaseModel):
    plate_number: Optional[str] = Field(default=None, min_length=1)
    vehicle_type: Optional[VehicleType] = None
    size: Optional[SlotSize] = None


class VehicleOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    vehicle_id: str
    owner_id: str
    plate_number: str
    vehicle_type: str
    size: str
    created_at: datetime
    updated_at: datetime


class VehiclePage(BaseModel):
    items: List[VehicleOut]
    total: int
    page: int
    limit: int
    total_pages: int


# ---------------- SLOTS ----------------

class SlotCreate(BaseModel):
    """
    Admin creates a slot. Without slot_number the server draws a random
    SLOT-<3 digits> number.
    """
    slot_number: Optional[str] = Field(default=None, min_length=1)
    vehicle_type: VehicleType
    size: SlotSize
    location: Location
    status: SlotStatus = "AVAILABLE"


class SlotBulkCreate(BaseModel):
    count: int = Field(ge=1, le=1000)
    prefix: str = Field(min_length=1, max_length=32)
    vehicle_type: VehicleType
    size: SlotSize
    location: Location


class SlotPatch(BaseModel):
    slot_number: Optional[str] = Field(default=None, min_length=1)
    vehicle_type: Optional[VehicleType] = None
    size: Optional[SlotSize] = None
    location: Optional[Location] = None
    status: Optional[SlotStatus] = None


class AssignedTo(BaseModel):
    user_id: str
    vehicle_id: str
    vehicle_plate: str


class SlotOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    slot_id: str
    slot_number: str
    vehicle_type: str
    size: str
    location: str
    status: str
    created_at: datetime
    updated_at: datetime
    assigned_to: Optional[AssignedTo] = None


class FailedSlot(BaseModel):
    slot_number: str
    reason: str


class SlotBulkOut(BaseModel):
    created_slots: List[SlotOut]
    total_created: int
    requested_count: int
    failed_attempts: List[FailedSlot]


class SlotPage(BaseModel):
    items: List[SlotOut]
    total: int
    page: int
    limit: int
    total_pages: int


# ---------------- SLOT REQUESTS ----------------

class _WindowMixin(BaseModel):
    start_date: Optional[date] = None
    end_date: Optional[date] = None

    @model_validator(mode="after")
    def _check_window(self):
        if self.start_date and self.end_date and self.end_date < self.start_date:
            raise ValueError("end_date must not be earlier than start_date")
        return self


class SlotRequestCreate(_WindowMixin):
    vehicle_id: str
    preferred_location: Optional[Location] = None
    notes: Optional[str] = None


class SlotRequestPatch(_WindowMixin):
    vehicle_id: Optional[str] = None
    preferred_location: Optional[Location] = None
    notes: Optional[str] = None


class ApproveSlotRequest(BaseModel):
    slot_id: Optional[str] = None   # admin override; omitted -> auto match


class RejectSlotRequest(BaseModel):
    reason: str = Field(min_length=1)


class SlotRequestOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    request_id: str
    user_id: str
    vehicle_id: str
    preferred_location: Optional[str] = None
    start_date: Optional[date] = None
    end_date: Optional[date] = None
    notes: Optional[str] = None
    status: str
    slot_id: Optional[str] = None
    slot_number: Optional[str] = None
    rejection_reason: Optional[str] = None
    created_at: datetime
    updated_at: datetime


class SlotRequestPage(BaseModel):
    items: List[SlotRequestOut]
    total: int
    page: int
    limit: int
    total_pages: int


class RejectionReasonOut(BaseModel):
    slot_id: str
    request_id: str
    rejection_reason: str


# ---------------- EVENTS ----------------

class EventOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    event_id: int
    ts: datetime
    event_type: str
    actor_type: str
    actor_id: Optional[str] = None
    request_id: Optional[str] = None
    slot_id: Optional[str] = None
    payload_json: str
