from enum import Enum
from typing import Optional

GIB = 1024 ** 3


class ValueKind(Enum):
    PERCENTAGE = "percentage"
    GIGABYTES = "gigabytes"
    CELSIUS = "celsius"
    RPM = "rpm"


UNITS = {
    ValueKind.PERCENTAGE: "%",
    ValueKind.GIGABYTES: "GB",
    ValueKind.CELSIUS: "°C",
    ValueKind.RPM: "RPM",
}

DEVICE_CLASSES = {
    ValueKind.PERCENTAGE: None,
    ValueKind.GIGABYTES: "data_size",
    ValueKind.CELSIUS: "temperature",
    ValueKind.RPM: None,
}


def bytes_to_gb(n: float) -> float:
    return n / GIB


def percent_of(used: float, total: float) -> Optional[float]:
    if not total or total <= 0:
        return None
    return used / total * 100.0


def format_value(kind: ValueKind, value: float) -> str:
    """Render a value as the state payload string.

    GB values are expected already converted from bytes.
    """
    if kind is ValueKind.PERCENTAGE:
        return f"{value:.1f}"
    if kind is ValueKind.GIGABYTES:
        return f"{value:.2f}"
    if kind is ValueKind.CELSIUS:
        return f"{value:.1f}"
    if kind is ValueKind.RPM:
        return f"{value:.0f}"
    raise ValueError(f"unknown value kind {kind!r}")
