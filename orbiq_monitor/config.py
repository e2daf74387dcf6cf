"""Environment-driven daemon configuration.

Everything is read once at startup into frozen dataclasses; nothing in the
daemon re-reads the environment afterwards.
"""

import os
import socket
from dataclasses import dataclass, field
from typing import List, Mapping, Optional, Tuple

from . import __version__
from .errors import ConfigurationError


def env_bool(env: Mapping[str, str], name: str, default: bool) -> bool:
    v = env.get(name, str(default)).strip().lower()
    return v in ("1", "true", "yes", "on")


def env_list(env: Mapping[str, str], name: str) -> List[str]:
    return [s.strip() for s in env.get(name, "").split(",") if s.strip()]


def env_int(env: Mapping[str, str], name: str, default: int) -> int:
    raw = env.get(name, "").strip()
    if not raw:
        return default
    try:
        return int(raw)
    except ValueError:
        raise ConfigurationError(f"{name} must be an integer, got {raw!r}") from None


def env_float(env: Mapping[str, str], name: str, default: float) -> float:
    raw = env.get(name, "").strip()
    if not raw:
        return default
    try:
        return float(raw)
    except ValueError:
        raise ConfigurationError(f"{name} must be a number, got {raw!r}") from None


def default_device_name() -> str:
    # Short hostname; dots are not allowed in device names.
    return (socket.gethostname() or "system-monitor").split(".")[0]


@dataclass(frozen=True)
class DeviceContext:
    name: str
    discovery_prefix: str = "homeassistant"
    base_prefix: str = "orbiq"
    model: str = "OrbIQ System Monitor"
    manufacturer: str = "OrbIQ"
    sw_version: str = __version__
    hw_version: str = "1.0"

    @property
    def availability_topic(self) -> str:
        return f"{self.base_prefix}/{self.name}/availability"

    @property
    def hub_status_topic(self) -> str:
        return f"{self.discovery_prefix}/status"


@dataclass(frozen=True)
class MqttSettings:
    host: str = "localhost"
    port: int = 1883
    username: Optional[str] = None
    password: Optional[str] = None
    tls: bool = False
    client_id: str = "orbiq-system-monitor"
    keepalive: int = 30
    state_qos: int = 0


@dataclass(frozen=True)
class SourceSettings:
    fs_types_include: Tuple[str, ...] = ()
    mount_excludes: Tuple[str, ...] = ()
    lhm_urls: Tuple[str, ...] = ()
    lhm_timeout: float = 2.0


@dataclass(frozen=True)
class DaemonConfig:
    mqtt: MqttSettings
    device: DeviceContext
    source: SourceSettings = field(default_factory=SourceSettings)
    update_interval_secs: float = 30.0
    discovery_delay_ms: int = 100

    @property
    def discovery_delay(self) -> float:
        return self.discovery_delay_ms / 1000.0


def load_config(environ: Optional[Mapping[str, str]] = None) -> DaemonConfig:
    """Build a DaemonConfig from environment variables."""
    env = os.environ if environ is None else environ

    device = DeviceContext(
        name=env.get("DEVICE_NAME", "").strip() or default_device_name(),
        discovery_prefix=env.get("DISCOVERY_PREFIX", "homeassistant").strip() or "homeassistant",
    )

    keepalive = env_int(env, "MQTT_KEEPALIVE", 30)
    if keepalive <= 0:
        raise ConfigurationError(f"MQTT_KEEPALIVE must be positive, got {keepalive}")
    state_qos = env_int(env, "STATE_QOS", 0)
    if state_qos not in (0, 1):
        raise ConfigurationError(f"STATE_QOS must be 0 or 1, got {state_qos}")

    mqtt = MqttSettings(
        host=env.get("MQTT_HOST", "localhost"),
        port=env_int(env, "MQTT_PORT", 1883),
        # Credentials are passed through verbatim.
        username=env.get("MQTT_USERNAME") or None,
        password=env.get("MQTT_PASSWORD") or None,
        tls=env_bool(env, "MQTT_TLS", False),
        client_id=env.get("MQTT_CLIENT_ID", "").strip() or f"orbiq-{device.name}",
        keepalive=keepalive,
        state_qos=state_qos,
    )

    source = SourceSettings(
        fs_types_include=tuple(env_list(env, "FS_TYPES_INCLUDE")),
        mount_excludes=tuple(s.rstrip("/\\") or s for s in env_list(env, "MOUNT_EXCLUDES")),
        lhm_urls=tuple(env_list(env, "LHM_URLS")),
        lhm_timeout=env_float(env, "LHM_TIMEOUT", 2.0),
    )

    interval = env_float(env, "UPDATE_INTERVAL", 30.0)
    if interval <= 0:
        raise ConfigurationError(f"UPDATE_INTERVAL must be positive, got {interval}")
    delay_ms = env_int(env, "DISCOVERY_DELAY_MS", 100)
    if delay_ms < 0:
        raise ConfigurationError(f"DISCOVERY_DELAY_MS must not be negative, got {delay_ms}")

    return DaemonConfig(
        mqtt=mqtt,
        device=device,
        source=source,
        update_interval_secs=interval,
        discovery_delay_ms=delay_ms,
    )
