import json
import logging
from datetime import datetime
from types import SimpleNamespace

import paho.mqtt.client as mqtt

from parkalloc import notifier as notifier_mod
from parkalloc.notifier import LogNotifier, MqttNotifier, approval_payload, build_notifier

APPROVED_AT = datetime(2030, 1, 2, 9, 30)


class FakeClient:
    def __init__(self, connected=True, rc=mqtt.MQTT_ERR_SUCCESS, fail_connects=0):
        self.connected = connected
        self.rc = rc
        self.fail_connects = fail_connects
        self.published = []
        self.connect_calls = 0
        self.loop_started = False

    def is_connected(self):
        return self.connected

    def publish(self, topic, payload, qos=0):
        self.published.append((topic, json.loads(payload), qos))
        return SimpleNamespace(rc=self.rc)

    def connect(self, host, port):
        self.connect_calls += 1
        if self.connect_calls <= self.fail_connects:
            raise ConnectionRefusedError("broker down")

    def loop_start(self):
        self.loop_started = True


def test_payload_shape():
    assert approval_payload("a@b.c", "SLOT-100", "RAB123A", APPROVED_AT) == {
        "recipient": "a@b.c",
        "slot_number": "SLOT-100",
        "plate_number": "RAB123A",
        "approved_at": "2030-01-02T09:30:00",
    }


def test_log_notifier_always_delivers(caplog):
    with caplog.at_level(logging.INFO, logger="parkalloc.notifier"):
        assert LogNotifier().notify_approval("a@b.c", "SLOT-100", "RAB123A", APPROVED_AT)
    assert "SLOT-100" in caplog.text


def test_build_notifier():
    assert isinstance(build_notifier("log"), LogNotifier)
    assert isinstance(build_notifier("mqtt"), MqttNotifier)


def test_mqtt_publishes_json():
    n = MqttNotifier(topic="t/approved")
    n._client = FakeClient()

    assert n.notify_approval("a@b.c", "SLOT-100", "RAB123A", APPROVED_AT)
    topic, payload, qos = n._client.published[0]
    assert topic == "t/approved"
    assert payload["slot_number"] == "SLOT-100"
    assert qos == 1


def test_mqtt_not_connected_reports_failure():
    n = MqttNotifier()
    n._client = FakeClient(connected=False)

    assert not n.notify_approval("a@b.c", "SLOT-100", "RAB123A", APPROVED_AT)
    assert n._client.published == []


def test_mqtt_publish_error_reports_failure():
    n = MqttNotifier()
    n._client = FakeClient(rc=mqtt.MQTT_ERR_NO_CONN)
    assert not n.notify_approval("a@b.c", "SLOT-100", "RAB123A", APPROVED_AT)


def test_mqtt_start_retries(monkeypatch):
    monkeypatch.setattr(notifier_mod.time, "sleep", lambda s: None)
    n = MqttNotifier()
    n._client = FakeClient(fail_connects=2)

    n.start(attempts=5)

    assert n._client.connect_calls == 3
    assert n._client.loop_started
