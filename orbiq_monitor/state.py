from typing import Optional

from .errors import PublishError
from .metrics import MetricSnapshot
from .registry import MetricKind, SensorDescriptor, SensorRegistry
from .session import SessionHandle
from .units import bytes_to_gb, format_value, percent_of


def resolve_value(descriptor: SensorDescriptor, snapshot: MetricSnapshot) -> Optional[float]:
    """Current display value for ``descriptor``, or None if the snapshot lacks it."""
    kind = descriptor.kind
    if kind is MetricKind.CPU_USAGE:
        return snapshot.cpu_percent
    if kind in (MetricKind.MEMORY_USAGE, MetricKind.MEMORY_USED, MetricKind.MEMORY_TOTAL):
        used, total = snapshot.memory_used, snapshot.memory_total
    elif kind in (MetricKind.DISK_USAGE, MetricKind.DISK_USED, MetricKind.DISK_TOTAL):
        disk = snapshot.disk(descriptor.sub_key)
        if disk is None:
            return None
        used, total = disk.used, disk.total
    elif kind is MetricKind.TEMPERATURE:
        return snapshot.temperature(descriptor.sub_key)
    elif kind is MetricKind.FAN:
        return snapshot.fan(descriptor.sub_key)
    else:
        return None

    if kind in (MetricKind.MEMORY_USAGE, MetricKind.DISK_USAGE):
        if used is None or total is None:
            return None
        return percent_of(used, total)
    if kind in (MetricKind.MEMORY_USED, MetricKind.DISK_USED):
        return None if used is None else bytes_to_gb(used)
    return None if total is None else bytes_to_gb(total)


def state_payload(descriptor: SensorDescriptor, snapshot: MetricSnapshot) -> Optional[str]:
    value = resolve_value(descriptor, snapshot)
    if value is None:
        return None
    return format_value(descriptor.value_kind, value)


def publish_tick(registry: SensorRegistry, snapshot: MetricSnapshot, handle: SessionHandle,
                 logger, qos: int = 0) -> int:
    """Publish one state message per descriptor. Returns the failure count.

    Sensors without a value in ``snapshot`` are skipped for this tick. A failed
    publish is logged and the remaining sensors are still attempted.
    """
    failures = 0
    skipped = 0
    for descriptor in registry:
        payload = state_payload(descriptor, snapshot)
        if payload is None:
            skipped += 1
            continue
        try:
            handle.publish(descriptor.state_topic, payload, qos=qos, retain=False)
        except PublishError as e:
            failures += 1
            logger.warning(f"State publish failed for {descriptor.sensor_id}: {e}")
    if skipped:
        logger.debug(f"Skipped {skipped} sensor(s) without a value this tick")
    return failures
