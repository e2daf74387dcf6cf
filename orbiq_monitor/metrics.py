"""Metric snapshots and the sensor sources that produce them."""

import math
import re
from dataclasses import dataclass
from typing import Any, Dict, Iterable, List, Optional, Protocol, Tuple, runtime_checkable

import psutil
import requests

from .config import SourceSettings
from .errors import SampleError


@dataclass(frozen=True)
class DiskUsage:
    mount: str
    used: int
    total: int


@dataclass(frozen=True)
class ProbeReading:
    name: str
    value: float


@dataclass(frozen=True)
class MetricSnapshot:
    """Readings captured at one instant. Never mutated after creation."""

    cpu_percent: Optional[float] = None
    memory_used: Optional[int] = None
    memory_total: Optional[int] = None
    disks: Tuple[DiskUsage, ...] = ()
    temperatures: Tuple[ProbeReading, ...] = ()
    fans: Tuple[ProbeReading, ...] = ()

    @property
    def shape(self) -> Tuple[Tuple[str, ...], Tuple[str, ...], Tuple[str, ...]]:
        """Structural key: which mounts and probes are present, in order."""
        return (
            tuple(d.mount for d in self.disks),
            tuple(t.name for t in self.temperatures),
            tuple(f.name for f in self.fans),
        )

    def disk(self, mount: str) -> Optional[DiskUsage]:
        for d in self.disks:
            if d.mount == mount:
                return d
        return None

    def temperature(self, name: str) -> Optional[float]:
        return _probe_value(self.temperatures, name)

    def fan(self, name: str) -> Optional[float]:
        return _probe_value(self.fans, name)


def _probe_value(readings: Iterable[ProbeReading], name: str) -> Optional[float]:
    for r in readings:
        if r.name == name:
            return r.value
    return None


@runtime_checkable
class SensorSource(Protocol):
    """Anything with a ``sample()`` returning a MetricSnapshot."""

    def sample(self) -> MetricSnapshot:
        ...


def _num_or_none(v) -> Optional[float]:
    if isinstance(v, (int, float)):
        if math.isnan(v) or math.isinf(v):
            return None
        return float(v)
    if isinstance(v, str):
        s = v.strip()
        if not s or s.lower().startswith('nan'):
            return None
        m = re.search(r'-?\d+(?:[\.,]\d+)?', s)
        if m:
            return float(m.group(0).replace(',', '.'))
    return None


def lhm_read_temps(logger, urls: Iterable[str], timeout: float) -> List[ProbeReading]:
    """Read temperatures from a LibreHardwareMonitor JSON endpoint.

    URLs are tried in order; the first one that answers wins. Returns an
    empty list when none of them respond.
    """
    data = None
    last_err = None
    for url in urls:
        try:
            logger.debug(f"LHM GET {url} timeout={timeout}")
            r = requests.get(url, timeout=timeout)
            r.raise_for_status()
            data = r.json()
            break
        except (requests.RequestException, ValueError) as e:
            last_err = e
            logger.debug(f"LHM fetch failed for {url}: {e}")
    if data is None:
        logger.warning(f"All LHM URLs failed, last_error={last_err}")
        return []

    temps: Dict[str, float] = {}

    def walk(node: Any):
        if not isinstance(node, dict):
            return
        if node.get("Type") == "Temperature":
            name = node.get("Text") or node.get("Name") or "temp"
            val = _num_or_none(node.get("Value"))
            if val is not None:
                temps[f"lhm {name}"] = val
        for ch in (node.get("Children", []) or []):
            walk(ch)
        for s in (node.get("Sensors", []) or []):
            walk(s)

    walk(data)
    return [ProbeReading(name, value) for name, value in temps.items()]


class PsutilSensorSource:
    """Samples the local host through psutil.

    Each metric is read independently; a metric that cannot be read is left
    empty in the snapshot instead of failing the whole sample.
    """

    def __init__(self, logger, settings: Optional[SourceSettings] = None):
        self.logger = logger
        self.settings = settings or SourceSettings()
        # First call primes psutil's counters so later calls don't block.
        psutil.cpu_percent(interval=None)

    def sample(self) -> MetricSnapshot:
        try:
            cpu = self._cpu()
            used, total = self._memory()
            snap = MetricSnapshot(
                cpu_percent=cpu,
                memory_used=used,
                memory_total=total,
                disks=tuple(self._disks()),
                temperatures=tuple(self._temperatures()),
                fans=tuple(self._fans()),
            )
        except psutil.Error as e:
            raise SampleError(f"psutil failed: {e}") from e
        self.logger.debug(
            f"Sampled cpu={snap.cpu_percent} mem={snap.memory_used}/{snap.memory_total} "
            f"disks={len(snap.disks)} temps={len(snap.temperatures)} fans={len(snap.fans)}"
        )
        return snap

    def _cpu(self) -> Optional[float]:
        try:
            return float(psutil.cpu_percent(interval=None))
        except OSError as e:
            self.logger.warning(f"cpu_percent failed: {e}")
            return None

    def _memory(self) -> Tuple[Optional[int], Optional[int]]:
        try:
            vm = psutil.virtual_memory()
        except OSError as e:
            self.logger.warning(f"virtual_memory failed: {e}")
            return None, None
        return int(vm.used), int(vm.total)

    def _mount_wanted(self, mount: str, fstype: str) -> bool:
        include = self.settings.fs_types_include
        if include and fstype not in include:
            self.logger.debug(f"Skip FS (fstype filtered): {mount} fstype={fstype}")
            return False
        for ex in self.settings.mount_excludes:
            if mount == ex or mount.startswith(ex.rstrip("/") + "/"):
                self.logger.debug(f"Skip FS (excluded): {mount}")
                return False
        return True

    def _disks(self) -> List[DiskUsage]:
        out: List[DiskUsage] = []
        seen = set()
        try:
            parts = psutil.disk_partitions(all=False)
        except OSError as e:
            self.logger.warning(f"disk_partitions failed: {e}")
            return out
        for p in parts:
            mnt = p.mountpoint
            if not mnt or mnt in seen or not self._mount_wanted(mnt, p.fstype):
                continue
            try:
                du = psutil.disk_usage(mnt)
            except OSError as e:
                self.logger.debug(f"disk_usage failed for {mnt}: {e}")
                continue
            seen.add(mnt)
            out.append(DiskUsage(mnt, int(du.used), int(du.total)))
        return out

    def _temperatures(self) -> List[ProbeReading]:
        out: List[ProbeReading] = []
        reader = getattr(psutil, "sensors_temperatures", None)
        if reader is not None:
            try:
                groups = reader()
            except (OSError, RuntimeError) as e:
                self.logger.debug(f"sensors_temperatures failed: {e}")
                groups = {}
            out.extend(_flatten_probes(groups, "current"))
        if self.settings.lhm_urls:
            out.extend(lhm_read_temps(self.logger, self.settings.lhm_urls, self.settings.lhm_timeout))
        return out

    def _fans(self) -> List[ProbeReading]:
        reader = getattr(psutil, "sensors_fans", None)
        if reader is None:
            return []
        try:
            groups = reader()
        except (OSError, RuntimeError) as e:
            self.logger.debug(f"sensors_fans failed: {e}")
            return []
        return _flatten_probes(groups, "current")


def _flatten_probes(groups: Dict[str, Any], attr: str) -> List[ProbeReading]:
    """Turn psutil's {chip: [entries]} into named readings.

    Unlabelled entries are numbered from 1 in chip order, matching the
    hwmon ``tempN_input`` convention.
    """
    out: List[ProbeReading] = []
    names = set()
    for chip, entries in (groups or {}).items():
        for idx, entry in enumerate(entries or [], start=1):
            val = _num_or_none(getattr(entry, attr, None))
            if val is None:
                continue
            label = (getattr(entry, "label", "") or "").strip()
            name = f"{chip} {label}" if label else f"{chip} {idx}"
            if name in names:
                name = f"{name} {idx}"
            names.add(name)
            out.append(ProbeReading(name, val))
    return out
