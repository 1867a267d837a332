import json
import logging

from shedwatch.shared.models import Device
from shedwatch.shared.twin import compute_delta

logger = logging.getLogger(__name__)

SUPPRESSED_INHIBIT = [1, 1]


def shadow_update_topic(device_id: str) -> str:
    return f"$aws/things/{device_id}/shadow/update"


class ShadowPublisher:
    """Writes desired-state patches back to device shadows over MQTT."""

    def __init__(self, client, qos: int = 1):
        self.client = client
        self.qos = qos

    def publish_desired(self, device_id: str, desired: dict) -> None:
        payload = json.dumps({"state": {"desired": desired}})
        info = self.client.publish(shadow_update_topic(device_id), payload, qos=self.qos)
        if info.rc != 0:
            raise RuntimeError(f"shadow publish for {device_id} failed rc={info.rc}")
        logger.info("shadow_desired_published", extra={"device_id": device_id, "keys": sorted(desired)})

    def suppress_alarm(self, device: Device) -> bool:
        """Ask the device to inhibit its alarm outputs; False when already inhibited."""
        delta = compute_delta({"inh": SUPPRESSED_INHIBIT}, {"inh": device.inh})
        if not delta:
            return False
        self.publish_desired(device.asset_id, delta)
        return True
