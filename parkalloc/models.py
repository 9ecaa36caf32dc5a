import uuid
from datetime import datetime, date

from sqlalchemy import String, Integer, Date, DateTime, Text, ForeignKey, Index, text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from .db import Base


def utcnow():
    return datetime.now()


def new_id(prefix: str) -> str:
    return f"{prefix}_{uuid.uuid4().hex}"


VEHICLE_TYPES = ("CAR", "MOTORCYCLE", "TRUCK")
SIZES = ("SMALL", "MEDIUM", "LARGE")
LOCATIONS = ("NORTH", "EAST", "SOUTH", "WEST")

SLOT_AVAILABLE = "AVAILABLE"
SLOT_OCCUPIED = "OCCUPIED"
SLOT_UNAVAILABLE = "UNAVAILABLE"
SLOT_STATUSES = (SLOT_AVAILABLE, SLOT_OCCUPIED, SLOT_UNAVAILABLE)

REQUEST_PENDING = "PENDING"
REQUEST_APPROVED = "APPROVED"
REQUEST_REJECTED = "REJECTED"
REQUEST_STATUSES = (REQUEST_PENDING, REQUEST_APPROVED, REQUEST_REJECTED)


class User(Base):
    __tablename__ = "users"

    user_id: Mapped[str] = mapped_column(String, primary_key=True)
    name: Mapped[str] = mapped_column(String, default="")
    email: Mapped[str] = mapped_column(String, unique=True, index=True)
    role: Mapped[str] = mapped_column(String, default="USER")  # USER|ADMIN
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, onupdate=utcnow)


class Vehicle(Base):
    __tablename__ = "vehicles"

    vehicle_id: Mapped[str] = mapped_column(String, primary_key=True)
    owner_id: Mapped[str] = mapped_column(ForeignKey("users.user_id"), index=True)
    plate_number: Mapped[str] = mapped_column(String, unique=True, index=True)
    vehicle_type: Mapped[str] = mapped_column(String)
    size: Mapped[str] = mapped_column(String)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, onupdate=utcnow)

    owner = relationship("User")


class ParkingSlot(Base):
    __tablename__ = "parking_slots"

    slot_id: Mapped[str] = mapped_column(String, primary_key=True)
    slot_number: Mapped[str] = mapped_column(String, unique=True, index=True)  # e.g. "SLOT-00042"
    vehicle_type: Mapped[str] = mapped_column(String, index=True)
    size: Mapped[str] = mapped_column(String, index=True)
    location: Mapped[str] = mapped_column(String, index=True)
    status: Mapped[str] = mapped_column(String, default=SLOT_AVAILABLE, index=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, index=True)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, onupdate=utcnow)


class SlotRequest(Base):
    __tablename__ = "slot_requests"

    request_id: Mapped[str] = mapped_column(String, primary_key=True)
    user_id: Mapped[str] = mapped_column(ForeignKey("users.user_id"), index=True)
    vehicle_id: Mapped[str] = mapped_column(ForeignKey("vehicles.vehicle_id"), index=True)
    preferred_location: Mapped[str | None] = mapped_column(String, nullable=True)
    start_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    end_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)

    status: Mapped[str] = mapped_column(String, default=REQUEST_PENDING, index=True)
    # only set on approval; slot_id is a plain column so slot deletion is guarded in code
    slot_id: Mapped[str | None] = mapped_column(String, nullable=True, index=True)
    slot_number: Mapped[str | None] = mapped_column(String, nullable=True)
    rejection_reason: Mapped[str | None] = mapped_column(Text, nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, index=True)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, onupdate=utcnow)

    vehicle = relationship("Vehicle")
    user = relationship("User")

    # at most one APPROVED request per vehicle, held by the store as well
    __table_args__ = (
        Index(
            "uq_slot_requests_vehicle_approved",
            "vehicle_id",
            unique=True,
            sqlite_where=text("status = 'APPROVED'"),
            postgresql_where=text("status = 'APPROVED'"),
        ),
    )


class Event(Base):
    __tablename__ = "events"

    event_id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    ts: Mapped[datetime] = mapped_column(DateTime, default=utcnow)
    event_type: Mapped[str] = mapped_column(String, index=True)
    actor_type: Mapped[str] = mapped_column(String, default="system")  # user|admin|system
    actor_id: Mapped[str | None] = mapped_column(String, nullable=True)
    request_id: Mapped[str | None] = mapped_column(String, nullable=True, index=True)
    slot_id: Mapped[str | None] = mapped_column(String, nullable=True, index=True)
    payload_json: Mapped[str] = mapped_column(Text, default="{}")
