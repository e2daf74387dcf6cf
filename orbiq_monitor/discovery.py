"""Home Assistant MQTT discovery messages."""

import json
import threading
from typing import Any, Dict, Iterable, Optional

from .config import DeviceContext
from .registry import SensorDescriptor
from .session import OFFLINE, ONLINE, SessionHandle

DISCOVERY_QOS = 1


def device_info(device: DeviceContext) -> Dict[str, Any]:
    return {
        "identifiers": [f"orbiq_{device.name}"],
        "name": device.name,
        "manufacturer": device.manufacturer,
        "model": device.model,
        "sw_version": device.sw_version,
        "hw_version": device.hw_version,
    }


def discovery_payload(descriptor: SensorDescriptor, device: DeviceContext) -> str:
    payload: Dict[str, Any] = {
        "name": descriptor.name,
        "unique_id": descriptor.unique_id,
        "object_id": f"orbiq_{device.name}_{descriptor.sensor_id}",
        "state_topic": descriptor.state_topic,
        "unit_of_measurement": descriptor.unit,
        "state_class": "measurement",
        "icon": descriptor.icon,
        "availability_topic": device.availability_topic,
        "payload_available": ONLINE,
        "payload_not_available": OFFLINE,
        "device": device_info(device),
    }
    if descriptor.device_class:
        payload["device_class"] = descriptor.device_class
    return json.dumps(payload, sort_keys=True)


def publish_all(descriptors: Iterable[SensorDescriptor], handle: SessionHandle,
                delay: float, device: DeviceContext, logger,
                stop: Optional[threading.Event] = None) -> int:
    """Publish retained discovery config for each descriptor, in order.

    Sleeps ``delay`` seconds between consecutive messages. The first failed
    publish raises PublishError and the rest of the sequence is abandoned.
    Returns the number of messages sent; fewer than requested only when
    ``stop`` was set during a delay.
    """
    stop = stop or threading.Event()
    sent = 0
    for descriptor in descriptors:
        if sent and delay > 0 and stop.wait(delay):
            logger.info(f"Discovery interrupted after {sent} sensor(s)")
            return sent
        handle.publish(descriptor.discovery_topic, discovery_payload(descriptor, device),
                       qos=DISCOVERY_QOS, retain=True)
        sent += 1
    logger.info(f"Discovery complete: {sent} sensor(s) announced")
    return sent
