"""Derive the set of logical sensors and their MQTT topics from a snapshot.

Ids depend only on (device name, metric kind, sub-key). Home Assistant keys
entities on ``unique_id``, so an id that drifts between restarts shows up as
a duplicate entity on the hub.
"""

import hashlib
import re
from dataclasses import dataclass
from enum import Enum
from typing import Dict, Iterator, List, Optional, Sequence, Tuple

from .config import DeviceContext
from .errors import ConfigurationError
from .metrics import MetricSnapshot
from .units import DEVICE_CLASSES, UNITS, ValueKind

DEVICE_NAME_RE = re.compile(r"^[A-Za-z0-9_-]+$")
_NON_ALNUM_RE = re.compile(r"[^a-z0-9]+")
# Sub-keys whose slug is reversible: mounts made of lowercase alphanumeric
# path segments, probes made of lowercase alphanumeric words.
_PLAIN_MOUNT_RE = re.compile(r"(/[a-z0-9]+)+")
_PLAIN_PROBE_RE = re.compile(r"[a-z0-9]+( [a-z0-9]+)*")


class MetricKind(Enum):
    CPU_USAGE = ("cpu_usage", ValueKind.PERCENTAGE, "mdi:cpu-64-bit")
    MEMORY_USAGE = ("memory_usage", ValueKind.PERCENTAGE, "mdi:memory")
    MEMORY_USED = ("memory_used", ValueKind.GIGABYTES, "mdi:memory")
    MEMORY_TOTAL = ("memory_total", ValueKind.GIGABYTES, "mdi:memory")
    DISK_USAGE = ("disk_usage", ValueKind.PERCENTAGE, "mdi:harddisk")
    DISK_USED = ("disk_used", ValueKind.GIGABYTES, "mdi:harddisk")
    DISK_TOTAL = ("disk_total", ValueKind.GIGABYTES, "mdi:harddisk")
    TEMPERATURE = ("temp", ValueKind.CELSIUS, "mdi:thermometer")
    FAN = ("fan", ValueKind.RPM, "mdi:fan")

    def __init__(self, prefix: str, value_kind: ValueKind, icon: str):
        self.prefix = prefix
        self.value_kind = value_kind
        self.icon = icon


# hwmon chip name -> what it measures
_CHIP_LABELS = {
    "k10temp": "CPU",
    "coretemp": "CPU",
    "zenpower": "CPU",
    "cpu_thermal": "CPU",
    "cpu-thermal": "CPU",
    "amdgpu": "GPU",
    "nouveau": "GPU",
    "radeon": "GPU",
    "nvme": "NVMe",
    "acpitz": "System",
}


@dataclass(frozen=True)
class SensorDescriptor:
    sensor_id: str
    unique_id: str
    name: str
    kind: MetricKind
    sub_key: Optional[str]
    state_topic: str
    discovery_topic: str

    @property
    def value_kind(self) -> ValueKind:
        return self.kind.value_kind

    @property
    def unit(self) -> str:
        return UNITS[self.kind.value_kind]

    @property
    def device_class(self) -> Optional[str]:
        return DEVICE_CLASSES[self.kind.value_kind]

    @property
    def icon(self) -> str:
        return self.kind.icon


class SensorRegistry:
    """Ordered, id-unique collection of descriptors for one snapshot shape."""

    def __init__(self, descriptors: Sequence[SensorDescriptor], shape: Tuple = ()):
        self.descriptors: Tuple[SensorDescriptor, ...] = tuple(descriptors)
        self.shape = shape
        self._by_id: Dict[str, SensorDescriptor] = {d.sensor_id: d for d in self.descriptors}
        if len(self._by_id) != len(self.descriptors):
            raise ValueError("duplicate sensor ids in registry")

    def __iter__(self) -> Iterator[SensorDescriptor]:
        return iter(self.descriptors)

    def __len__(self) -> int:
        return len(self.descriptors)

    def __contains__(self, sensor_id: str) -> bool:
        return sensor_id in self._by_id

    def get(self, sensor_id: str) -> Optional[SensorDescriptor]:
        return self._by_id.get(sensor_id)

    @property
    def ids(self) -> List[str]:
        return [d.sensor_id for d in self.descriptors]

    def added_since(self, previous: Optional["SensorRegistry"]) -> List[SensorDescriptor]:
        """Descriptors present here but not in ``previous``, in order."""
        if previous is None:
            return list(self.descriptors)
        return [d for d in self.descriptors if d.sensor_id not in previous]


def validate_device_name(name: str) -> str:
    if not name:
        raise ConfigurationError("device name must not be empty")
    if not DEVICE_NAME_RE.match(name):
        raise ConfigurationError(
            f"device name {name!r} may only contain letters, digits, '-' and '_'"
        )
    return name


def slugify(value: str) -> str:
    """Lowercase ``value`` and collapse non-alphanumeric runs to one ``_``.

    The root mount ``/`` slugs to ``root``.
    """
    slug = _NON_ALNUM_RE.sub("_", value.lower()).strip("_")
    return slug or "root"


def sub_key_slug(kind: MetricKind, sub_key: str) -> str:
    """Id fragment for a mount or probe, derived from ``sub_key`` alone.

    Keys that slugify without losing information keep the bare slug. Any
    other key gets a short digest of the raw key appended, so "/mnt/a-b" and
    "/mnt/a_b" never share an id whichever of them is mounted.
    """
    slug = slugify(sub_key)
    if kind in (MetricKind.DISK_USAGE, MetricKind.DISK_USED, MetricKind.DISK_TOTAL):
        plain = sub_key == "/" or (_PLAIN_MOUNT_RE.fullmatch(sub_key) is not None and slug != "root")
    else:
        plain = _PLAIN_PROBE_RE.fullmatch(sub_key) is not None
    if plain:
        return slug
    return f"{slug}_{hashlib.sha1(sub_key.encode()).hexdigest()[:6]}"


def state_topic(device: DeviceContext, sensor_id: str) -> str:
    return f"{device.base_prefix}/{device.name}/sensor/{sensor_id}/state"


def discovery_topic(device: DeviceContext, sensor_id: str) -> str:
    return f"{device.discovery_prefix}/sensor/orbiq_{device.name}/{sensor_id}/config"


def temperature_label(probe: str) -> str:
    chip, _, rest = probe.partition(" ")
    what = _CHIP_LABELS.get(chip.lower())
    if what is None:
        return f"{probe} Temperature"
    return f"{what} {rest} Temperature" if rest else f"{what} Temperature"


def _entries(snapshot: MetricSnapshot) -> List[Tuple[MetricKind, Optional[str], str]]:
    entries: List[Tuple[MetricKind, Optional[str], str]] = [
        (MetricKind.CPU_USAGE, None, "CPU Usage"),
        (MetricKind.MEMORY_USAGE, None, "Memory Usage"),
        (MetricKind.MEMORY_USED, None, "Memory Used"),
        (MetricKind.MEMORY_TOTAL, None, "Memory Total"),
    ]
    for d in snapshot.disks:
        entries.append((MetricKind.DISK_USAGE, d.mount, f"Disk {d.mount} Usage"))
        entries.append((MetricKind.DISK_USED, d.mount, f"Disk {d.mount} Used"))
        entries.append((MetricKind.DISK_TOTAL, d.mount, f"Disk {d.mount} Total"))
    for t in snapshot.temperatures:
        entries.append((MetricKind.TEMPERATURE, t.name, temperature_label(t.name)))
    for f in snapshot.fans:
        entries.append((MetricKind.FAN, f.name, f"Fan {f.name}"))
    return entries


def build(snapshot: MetricSnapshot, device: DeviceContext) -> SensorRegistry:
    """Build the registry for ``snapshot``. Pure; raises ConfigurationError."""
    validate_device_name(device.name)
    descriptors: List[SensorDescriptor] = []
    for kind, sub_key, label in _entries(snapshot):
        sensor_id = kind.prefix if sub_key is None else f"{kind.prefix}_{sub_key_slug(kind, sub_key)}"
        descriptors.append(SensorDescriptor(
            sensor_id=sensor_id,
            unique_id=f"orbiq_{device.name}_{sensor_id}",
            name=label,
            kind=kind,
            sub_key=sub_key,
            state_topic=state_topic(device, sensor_id),
            discovery_topic=discovery_topic(device, sensor_id),
        ))
    return SensorRegistry(descriptors, snapshot.shape)
