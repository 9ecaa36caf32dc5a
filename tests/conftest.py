"""
Test configuration and fixtures.

Every test gets its own file-backed SQLite database so two sessions can
interleave like two concurrent request handlers would.
"""

from datetime import datetime

import pytest
from fastapi.testclient import TestClient

from parkalloc import models
from parkalloc.db import init_db, make_engine, make_session_factory
from parkalloc.main import create_app
from parkalloc.vehicles import SqlVehicleDirectory


class RecordingNotifier:
    """Notifier double: records calls, can be told to fail."""

    def __init__(self):
        self.calls = []
        self.raise_exc = None
        self.result = True

    def start(self):
        pass

    def stop(self):
        pass

    def notify_approval(self, recipient, slot_number, plate_number, approved_at):
        self.calls.append((recipient, slot_number, plate_number, approved_at))
        if self.raise_exc:
            raise self.raise_exc
        return self.result


class FixedRng:
    """Stands in for `random`; replays `values`, repeating the last one."""

    def __init__(self, *values):
        self.values = list(values)
        self.calls = 0

    def randint(self, a, b):
        value = self.values[min(self.calls, len(self.values) - 1)]
        self.calls += 1
        return value


# ============================================================================
# STORE
# ============================================================================

@pytest.fixture
def engine(tmp_path):
    eng = make_engine(f"sqlite:///{tmp_path / 'parking.db'}")
    init_db(eng)
    yield eng
    eng.dispose()


@pytest.fixture
def session_factory(engine):
    return make_session_factory(engine)


@pytest.fixture
def db(session_factory):
    session = session_factory()
    yield session
    session.close()


@pytest.fixture
def other_db(session_factory):
    """A second session, playing the part of a concurrent request handler."""
    session = session_factory()
    yield session
    session.close()


@pytest.fixture
def directory(db):
    return SqlVehicleDirectory(db)


@pytest.fixture
def notifier():
    return RecordingNotifier()


# ============================================================================
# FACTORIES
# ============================================================================

@pytest.fixture
def make_user(db):
    def _make(user_id="user_1", email=None, role="USER", name="Test User"):
        u = models.User(user_id=user_id, name=name, email=email or f"{user_id}@example.com", role=role)
        db.add(u)
        db.commit()
        return u
    return _make


@pytest.fixture
def make_vehicle(db):
    def _make(owner_id="user_1", plate="RAB123A", vehicle_type="CAR", size="MEDIUM", vehicle_id=None):
        v = models.Vehicle(
            vehicle_id=vehicle_id or f"veh_{plate.lower()}",
            owner_id=owner_id,
            plate_number=plate,
            vehicle_type=vehicle_type,
            size=size,
        )
        db.add(v)
        db.commit()
        return v
    return _make


@pytest.fixture
def make_slot(db):
    def _make(slot_number="SLOT-100", vehicle_type="CAR", size="MEDIUM", location="NORTH",
              status=models.SLOT_AVAILABLE, created_at=None):
        slot = models.ParkingSlot(
            slot_id=f"slot_{slot_number.lower()}",
            slot_number=slot_number,
            vehicle_type=vehicle_type,
            size=size,
            location=location,
            status=status,
            created_at=created_at or datetime.now(),
        )
        db.add(slot)
        db.commit()
        return slot
    return _make


@pytest.fixture
def make_request(db):
    def _make(user_id="user_1", vehicle_id="veh_rab123a", status=models.REQUEST_PENDING,
              slot=None, rejection_reason=None, request_id=None, preferred_location=None):
        req = models.SlotRequest(
            request_id=request_id or models.new_id("req"),
            user_id=user_id,
            vehicle_id=vehicle_id,
            preferred_location=preferred_location,
            status=status,
            slot_id=slot.slot_id if slot else None,
            slot_number=slot.slot_number if slot else None,
            rejection_reason=rejection_reason,
        )
        db.add(req)
        db.commit()
        return req
    return _make


@pytest.fixture
def owner(make_user, make_vehicle):
    """user_1 owning a CAR/MEDIUM vehicle veh_rab123a."""
    make_user("user_1", email="owner@example.com")
    return make_vehicle("user_1", plate="RAB123A")


# ============================================================================
# HTTP
# ============================================================================

@pytest.fixture
def client(tmp_path, notifier):
    app = create_app(database_url=f"sqlite:///{tmp_path / 'api.db'}", notifier=notifier)
    with TestClient(app) as c:
        yield c


ADMIN = {"X-User-Id": "admin_1", "X-User-Role": "ADMIN"}


def as_user(user_id):
    return {"X-User-Id": user_id, "X-User-Role": "USER"}
