import json
import time
from typing import Optional

import paho.mqtt.client as mqtt

from .recognize.types import AttendanceEvent, Employee


class AttendancePublisher:
    """
    Publishes recorded attendance events and a liveness heartbeat over MQTT.

    Topics:
        attendance/<site_id>/events
        attendance/<site_id>/heartbeat

    Publishing is best effort: a broker problem is printed and never
    affects the attendance record that was already written.
    """
    def __init__(
        self,
        broker: str = "localhost",
        port: int = 1883,
        site_id: str = "default_site",
        client: Optional[mqtt.Client] = None,
        connect: bool = True,
    ):
        self.broker = broker
        self.port = int(port)
        self.site_id = site_id
        self.connected = False

        if client is not None:
            self.client = client
            return

        self.client = mqtt.Client(mqtt.CallbackAPIVersion.VERSION2)
        self.client.on_connect = self._on_connect
        self.client.on_disconnect = self._on_disconnect

        if connect:
            try:
                self.client.connect(self.broker, self.port, 60)
                self.client.loop_start()
            except OSError as e:
                print(f"[MQTT] Failed to connect to {self.broker}:{self.port}: {e}")

    @property
    def events_topic(self) -> str:
        return f"attendance/{self.site_id}/events"

    @property
    def heartbeat_topic(self) -> str:
        return f"attendance/{self.site_id}/heartbeat"

    def _on_connect(self, client, userdata, flags, reason_code, properties=None):
        print(f"[MQTT] Connected with result code {reason_code}")
        self.connected = not getattr(reason_code, "is_failure", False)
        if self.connected:
            self.publish_heartbeat()

    def _on_disconnect(self, client, userdata, flags, reason_code, properties=None):
        print(f"[MQTT] Disconnected with result code {reason_code}")
        self.connected = False

    def _publish(self, topic: str, payload: dict) -> bool:
        try:
            info = self.client.publish(topic, json.dumps(payload))
        except (OSError, ValueError, RuntimeError) as e:
            print(f"[MQTT] Failed to publish to {topic}: {e}")
            return False
        rc = getattr(info, "rc", mqtt.MQTT_ERR_SUCCESS)
        if rc != mqtt.MQTT_ERR_SUCCESS:
            print(f"[MQTT] Publish to {topic} returned {rc}")
            return False
        return True

    def publish_event(self, event: AttendanceEvent, employee: Optional[Employee] = None) -> bool:
        payload = {
            "event_id": event.id,
            "employee_id": event.employee_id,
            "employee_name": employee.name if employee else None,
            "event_type": event.event_type.value,
            "confidence": round(float(event.confidence), 4),
            "timestamp": event.timestamp.isoformat(),
        }
        return self._publish(self.events_topic, payload)

    def publish_heartbeat(self) -> bool:
        payload = {
            "node": self.site_id,
            "status": "ONLINE",
            "timestamp": int(time.time()),
        }
        return self._publish(self.heartbeat_topic, payload)

    def stop(self):
        try:
            self.client.loop_stop()
            self.client.disconnect()
        except (OSError, RuntimeError) as e:
            print(f"[MQTT] Error while stopping: {e}")
