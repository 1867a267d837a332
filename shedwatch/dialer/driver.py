import logging

from shedwatch.shared.metrics import escalation_calls_total
from shedwatch.shared.models import Alarm, Device
from shedwatch.shared.telephony import TelephonyClient

logger = logging.getLogger(__name__)


def call_attributes(alarm: Alarm, device: Device, phone: str, user_index: int) -> dict:
    return {
        "alarmId": alarm.alarm_id,
        "deviceId": device.asset_id,
        "deviceName": device.asset_name,
        "message": alarm.message,
        "phone": phone,
        "userIndex": str(user_index),
    }


class EscalationCallDriver:
    """
    Places exactly one call for one escalation step.

    There is no retry here: an unanswered or failed call is picked up again
    by the next cool-down cycle, which moves on to the next subscriber.
    """

    def __init__(self, telephony: TelephonyClient):
        self.telephony = telephony

    async def notify(self, alarm: Alarm, device: Device, user_index: int) -> bool:
        """Returns True when the call request was accepted; failures are logged, never raised."""
        phone = alarm.users[user_index]
        try:
            handle = await self.telephony.place_call(
                phone, call_attributes(alarm, device, phone, user_index)
            )
        except Exception:
            escalation_calls_total.labels(result="failed").inc()
            logger.exception(
                "escalation_call_failed",
                extra={"alarm_id": alarm.alarm_id, "user_index": user_index},
            )
            return False

        escalation_calls_total.labels(result="placed").inc()
        logger.info(
            "escalation_call_placed",
            extra={
                "alarm_id": alarm.alarm_id,
                "user_index": user_index,
                "contact_id": handle.contact_id,
            },
        )
        return True
