"""
End-to-end tests through the HTTP API.
"""

from fastapi.testclient import TestClient

from parkalloc.main import create_app

from conftest import ADMIN, as_user


def _register(client, user_id="user_1", email="owner@example.com"):
    r = client.post("/api/admin/users", json={"user_id": user_id, "name": "Owner", "email": email}, headers=ADMIN)
    assert r.status_code == 201, r.text


def _vehicle(client, user_id="user_1", plate="rab123a", vehicle_type="CAR", size="MEDIUM"):
    r = client.post(
        "/api/vehicles",
        json={"plate_number": plate, "vehicle_type": vehicle_type, "size": size},
        headers=as_user(user_id),
    )
    assert r.status_code == 201, r.text
    return r.json()


def _slot(client, slot_number="SLOT-100", vehicle_type="CAR", size="MEDIUM", location="NORTH"):
    r = client.post(
        "/api/slots",
        json={"slot_number": slot_number, "vehicle_type": vehicle_type, "size": size, "location": location},
        headers=ADMIN,
    )
    assert r.status_code == 201, r.text
    return r.json()


def _request(client, vehicle_id, user_id="user_1"):
    r = client.post("/api/slot-requests", json={"vehicle_id": vehicle_id}, headers=as_user(user_id))
    assert r.status_code == 201, r.text
    return r.json()


def test_health(client):
    r = client.get("/api/health")
    assert r.status_code == 200
    assert r.json() == {"ok": True}


def test_missing_identity_is_401(client):
    assert client.get("/api/slots").status_code == 401


def test_user_cannot_create_slots(client):
    r = client.post(
        "/api/slots",
        json={"vehicle_type": "CAR", "size": "SMALL", "location": "EAST"},
        headers=as_user("user_1"),
    )
    assert r.status_code == 403


def test_request_to_approval(client, notifier):
    _register(client)
    vehicle = _vehicle(client)
    assert vehicle["plate_number"] == "RAB123A"
    slot = _slot(client)

    req = _request(client, vehicle["vehicle_id"])
    assert req["status"] == "PENDING"
    assert req["slot_number"] is None

    r = client.put(f"/api/slot-requests/{req['request_id']}/approve", headers=ADMIN)
    assert r.status_code == 200, r.text
    assert r.json()["status"] == "APPROVED"
    assert r.json()["slot_number"] == "SLOT-100"

    r = client.get(f"/api/slots/{slot['slot_id']}", headers=as_user("user_1"))
    body = r.json()
    assert body["status"] == "OCCUPIED"
    assert body["assigned_to"] == {"user_id": "user_1", "vehicle_id": vehicle["vehicle_id"], "vehicle_plate": "RAB123A"}

    assert [c[:3] for c in notifier.calls] == [("owner@example.com", "SLOT-100", "RAB123A")]

    r = client.put(f"/api/slot-requests/{req['request_id']}/approve", json={}, headers=ADMIN)
    assert r.status_code == 409
    assert r.json()["detail"] == "slot_request_not_pending"


def test_approve_without_matching_slot(client):
    _register(client)
    vehicle = _vehicle(client, vehicle_type="TRUCK", size="LARGE")
    _slot(client)
    req = _request(client, vehicle["vehicle_id"])

    r = client.put(f"/api/slot-requests/{req['request_id']}/approve", headers=ADMIN)
    assert r.status_code == 409
    assert r.json()["detail"] == "no_compatible_slot"

    r = client.get(f"/api/slot-requests/{req['request_id']}", headers=as_user("user_1"))
    assert r.json()["status"] == "PENDING"


def test_approve_into_occupied_slot(client):
    _register(client)
    first = _vehicle(client, plate="A1")
    second = _vehicle(client, plate="A2")
    slot = _slot(client)
    r1 = _request(client, first["vehicle_id"])
    r2 = _request(client, second["vehicle_id"])

    ok = client.put(f"/api/slot-requests/{r1['request_id']}/approve", json={"slot_id": slot["slot_id"]}, headers=ADMIN)
    assert ok.status_code == 200

    r = client.put(f"/api/slot-requests/{r2['request_id']}/approve", json={"slot_id": slot["slot_id"]}, headers=ADMIN)
    assert r.status_code == 409
    assert r.json()["detail"] == "slot_unavailable"


def test_request_for_someone_elses_vehicle(client):
    _register(client)
    _register(client, "user_2", "other@example.com")
    vehicle = _vehicle(client)

    r = client.post("/api/slot-requests", json={"vehicle_id": vehicle["vehicle_id"]}, headers=as_user("user_2"))
    assert r.status_code == 403
    assert r.json()["detail"] == "vehicle_not_owned"


def test_reject_and_reason_lookup(client):
    _register(client)
    vehicle = _vehicle(client)
    slot = _slot(client)
    req = _request(client, vehicle["vehicle_id"])

    r = client.put(f"/api/slot-requests/{req['request_id']}/reject", json={"reason": ""}, headers=ADMIN)
    assert r.status_code == 422

    r = client.put(f"/api/slot-requests/{req['request_id']}/reject", json={"reason": "no space"}, headers=ADMIN)
    assert r.status_code == 200
    assert r.json()["rejection_reason"] == "no space"

    # the rejected request was never linked to this slot
    r = client.get(f"/api/slot-requests/{slot['slot_id']}/reason", headers=ADMIN)
    assert r.status_code == 404

    r = client.delete(f"/api/slot-requests/{req['request_id']}", headers=as_user("user_1"))
    assert r.status_code == 409
    assert r.json()["detail"] == "slot_request_not_pending"


def test_bulk_create_and_list(client):
    r = client.post(
        "/api/slots/bulk",
        json={"count": 3, "prefix": "B", "vehicle_type": "CAR", "size": "SMALL", "location": "WEST"},
        headers=ADMIN,
    )
    assert r.status_code == 201, r.text
    body = r.json()
    assert body["total_created"] == 3
    assert body["requested_count"] == 3
    assert body["failed_attempts"] == []
    assert [s["slot_number"] for s in body["created_slots"]] == ["B-00001", "B-00002", "B-00003"]

    r = client.get("/api/slots", params={"search": "b-0000", "limit": 2, "page": 2}, headers=as_user("user_1"))
    page = r.json()
    assert page["total"] == 3
    assert page["total_pages"] == 2
    assert [s["slot_number"] for s in page["items"]] == ["B-00003"]


def test_duplicate_slot_number(client):
    _slot(client)
    r = client.post(
        "/api/slots",
        json={"slot_number": "SLOT-100", "vehicle_type": "CAR", "size": "SMALL", "location": "EAST"},
        headers=ADMIN,
    )
    assert r.status_code == 409
    assert r.json()["detail"] == "slot_number_already_exists"


def test_delete_assigned_slot_blocked(client):
    _register(client)
    vehicle = _vehicle(client)
    slot = _slot(client)
    req = _request(client, vehicle["vehicle_id"])
    client.put(f"/api/slot-requests/{req['request_id']}/approve", headers=ADMIN)

    r = client.delete(f"/api/slots/{slot['slot_id']}", headers=ADMIN)
    assert r.status_code == 409
    assert r.json()["detail"] == "slot_has_approved_request"


def test_audit_log(client):
    _slot(client)
    r = client.get("/api/admin/events", params={"event_type": "slot_created"}, headers=ADMIN)
    assert r.status_code == 200
    assert len(r.json()) == 1


def test_vehicle_ownership(client):
    _register(client)
    _register(client, "user_2", "other@example.com")
    vehicle = _vehicle(client)

    r = client.get(f"/api/vehicles/{vehicle['vehicle_id']}", headers=as_user("user_2"))
    assert r.status_code == 404
    assert client.get("/api/vehicles", headers=as_user("user_2")).json()["items"] == []

    r = client.post(
        "/api/vehicles",
        json={"plate_number": "RAB123A", "vehicle_type": "CAR", "size": "SMALL"},
        headers=as_user("user_2"),
    )
    assert r.status_code == 409

    r = client.delete(f"/api/vehicles/{vehicle['vehicle_id']}", headers=as_user("user_1"))
    assert r.status_code == 200
    assert client.get("/api/vehicles", headers=as_user("user_1")).json()["total"] == 0


def test_vehicle_update_and_search(client):
    _register(client)
    vehicle = _vehicle(client)
    _vehicle(client, plate="moto_1", vehicle_type="MOTORCYCLE", size="SMALL")

    r = client.put(f"/api/vehicles/{vehicle['vehicle_id']}", json={"size": "LARGE"}, headers=as_user("user_1"))
    assert r.status_code == 200
    assert r.json()["size"] == "LARGE"

    r = client.put(f"/api/vehicles/{vehicle['vehicle_id']}", json={"plate_number": "MOTO_1"}, headers=as_user("user_1"))
    assert r.status_code == 409

    page = client.get("/api/vehicles", params={"search": "_"}, headers=as_user("user_1")).json()
    assert [v["plate_number"] for v in page["items"]] == ["MOTO_1"]


def test_store_opened_on_startup(tmp_path, notifier):
    db_file = tmp_path / "lazy" / "api.db"
    app = create_app(database_url=f"sqlite:///{db_file}", notifier=notifier)

    assert not hasattr(app.state, "engine")
    assert not db_file.exists()

    with TestClient(app) as c:
        assert c.get("/api/health").status_code == 200
    assert db_file.exists()
