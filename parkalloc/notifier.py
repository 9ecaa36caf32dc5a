from __future__ import annotations

import json
import logging
import os
import time
from datetime import datetime
from typing import Protocol

import paho.mqtt.client as mqtt

logger = logging.getLogger(__name__)

NOTIFIER_BACKEND = os.getenv("NOTIFIER_BACKEND", "log")  # log | mqtt
MQTT_HOST = os.getenv("MQTT_HOST", "mqtt")
MQTT_PORT = int(os.getenv("MQTT_PORT", "1883"))
MQTT_APPROVAL_TOPIC = os.getenv("MQTT_APPROVAL_TOPIC", "parking/evt/slot_approved")


class Notifier(Protocol):
    def notify_approval(
        self, recipient: str, slot_number: str, plate_number: str, approved_at: datetime
    ) -> bool: ...


def approval_payload(recipient: str, slot_number: str, plate_number: str, approved_at: datetime) -> dict:
    return {
        "recipient": recipient,
        "slot_number": slot_number,
        "plate_number": plate_number,
        "approved_at": approved_at.isoformat(),
    }


class LogNotifier:
    """Writes approvals to the log only. Used when no broker is configured."""

    def start(self):
        pass

    def stop(self):
        pass

    def notify_approval(self, recipient, slot_number, plate_number, approved_at) -> bool:
        logger.info(
            "[NOTIFY] slot %s approved for %s (plate %s) at %s",
            slot_number, recipient, plate_number, approved_at.isoformat(),
        )
        return True


class MqttNotifier:
    """
    Publishes approval notices to the broker; a downstream mailer consumes
    the topic and renders the actual email.
    """

    def __init__(self, host: str = MQTT_HOST, port: int = MQTT_PORT, topic: str = MQTT_APPROVAL_TOPIC) -> None:
        self._host = host
        self._port = port
        self._topic = topic
        self._client = mqtt.Client(mqtt.CallbackAPIVersion.VERSION2)
        self._client.on_connect = self._on_connect

    def _on_connect(self, client, userdata, flags, reason_code, properties=None):
        if reason_code == 0:
            logger.info("[MQTT] connected to %s:%s", self._host, self._port)
        else:
            logger.warning("[MQTT] connect failed rc=%s", reason_code)

    def start(self, attempts: int = 10, delay_s: float = 2.0):
        for i in range(attempts):
            try:
                self._client.connect(self._host, self._port)
                self._client.loop_start()
                logger.info("[MQTT] loop started")
                return
            except OSError as e:
                logger.warning("[MQTT] retry %d: %s", i + 1, e)
                time.sleep(delay_s)
        logger.error("[MQTT] failed to start; approvals will not be announced")

    def stop(self):
        try:
            self._client.loop_stop()
            self._client.disconnect()
        except Exception as e:
            logger.debug("[MQTT] stop: %r", e)

    def notify_approval(self, recipient, slot_number, plate_number, approved_at) -> bool:
        if not self._client.is_connected():
            logger.warning("[MQTT] not connected; dropping approval notice for %s", slot_number)
            return False

        payload = approval_payload(recipient, slot_number, plate_number, approved_at)
        info = self._client.publish(self._topic, json.dumps(payload), qos=1)
        return info.rc == mqtt.MQTT_ERR_SUCCESS


def build_notifier(backend: str = NOTIFIER_BACKEND):
    if backend == "mqtt":
        return MqttNotifier()
    return LogNotifier()
