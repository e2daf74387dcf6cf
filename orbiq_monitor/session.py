"""Ownership of the single MQTT connection.

The Session drives the Disconnected -> Connecting -> Connected state machine
from the worker thread. paho's network thread only reports events (CONNACK,
disconnects, hub status messages) back through callbacks.
"""

import threading
from enum import Enum
from typing import Callable, Optional

import paho.mqtt.client as mqtt

from .config import DeviceContext, MqttSettings
from .errors import BrokerConnectionError, PublishError

ONLINE = "online"
OFFLINE = "offline"


class SessionState(Enum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"


def mqtt_client(settings: MqttSettings, device: DeviceContext, logger) -> mqtt.Client:
    # v2 callback API; still speaking MQTT v3.1.1
    client = mqtt.Client(
        mqtt.CallbackAPIVersion.VERSION2,
        client_id=settings.client_id,
        protocol=mqtt.MQTTv311,
        transport="tcp",
    )
    if settings.username:
        client.username_pw_set(settings.username, settings.password)
    if settings.tls:
        client.tls_set()
        client.tls_insecure_set(False)
    client.will_set(device.availability_topic, payload=OFFLINE, qos=1, retain=True)
    client.max_queued_messages_set(0)
    client.enable_logger(logger)
    return client


class SessionHandle:
    """Publishing reference valid for one connection epoch."""

    def __init__(self, session: "Session", epoch: int):
        self.session = session
        self.epoch = epoch

    @property
    def valid(self) -> bool:
        return self.session.is_connected() and self.session.epoch == self.epoch

    def publish(self, topic: str, payload: str, qos: int = 0, retain: bool = False) -> None:
        # A drop within the epoch is reported by the transport's rc; only a
        # newer epoch makes the handle stale.
        if self.session.epoch != self.epoch:
            raise PublishError(f"session epoch {self.epoch} was superseded by {self.session.epoch}")
        self.session.publish(topic, payload, qos=qos, retain=retain)


class Session:
    def __init__(self, settings: MqttSettings, device: DeviceContext, logger,
                 stop: threading.Event,
                 client_factory: Callable[..., mqtt.Client] = mqtt_client,
                 min_backoff: float = 1.0):
        self.settings = settings
        self.device = device
        self.logger = logger
        self.stop = stop
        self.min_backoff = min(min_backoff, float(settings.keepalive))
        self.epoch = 0
        self.state = SessionState.DISCONNECTED

        self._lock = threading.Lock()
        self._connack = threading.Event()
        self._connack_failure: Optional[str] = None
        self._rediscover = threading.Event()
        self._loop_running = False

        self.client = client_factory(settings, device, logger)
        self.client.on_connect = self._on_connect
        self.client.on_disconnect = self._on_disconnect
        self.client.on_message = self._on_message

    # -- paho callbacks (network thread) --

    def _on_connect(self, client, userdata, flags, reason_code, properties):
        if reason_code.is_failure:
            self._connack_failure = str(reason_code)
        else:
            self._connack_failure = None
            client.subscribe(self.device.hub_status_topic, qos=0)
        self._connack.set()

    def _on_disconnect(self, client, userdata, flags, reason_code, properties):
        with self._lock:
            was = self.state
            self.state = SessionState.DISCONNECTED
        if was is SessionState.CONNECTED:
            self.logger.warning(f"MQTT disconnected rc={reason_code}")

    def _on_message(self, client, userdata, msg):
        if msg.topic == self.device.hub_status_topic and msg.payload == ONLINE.encode():
            self.logger.info("Home Assistant came online, discovery will be resent")
            self._rediscover.set()

    # -- worker thread API --

    def is_connected(self) -> bool:
        return self.state is SessionState.CONNECTED

    def take_rediscovery_request(self) -> bool:
        """True once after the hub announced itself online."""
        if self._rediscover.is_set():
            self._rediscover.clear()
            return True
        return False

    def ensure_connected(self) -> Optional[SessionHandle]:
        """Block until connected; None if shutdown was requested first."""
        if self.is_connected():
            return SessionHandle(self, self.epoch)
        backoff = self.min_backoff
        while not self.stop.is_set():
            try:
                self._connect_once()
            except BrokerConnectionError as e:
                self.logger.warning(f"MQTT connect failed: {e}; retrying in {backoff:.0f}s")
                if self.stop.wait(backoff):
                    break
                backoff = min(backoff * 2, float(self.settings.keepalive))
                continue
            return SessionHandle(self, self.epoch)
        return None

    def _connect_once(self) -> None:
        self._stop_network_loop()
        with self._lock:
            self.state = SessionState.CONNECTING
        self._connack.clear()
        self._connack_failure = None
        s = self.settings
        self.logger.info(f"Connecting to MQTT broker at {s.host}:{s.port}")
        try:
            self.client.connect(s.host, s.port, keepalive=s.keepalive)
        except (OSError, ValueError) as e:
            self._set_disconnected()
            raise BrokerConnectionError(str(e)) from e
        self.client.loop_start()
        self._loop_running = True

        if not self._connack.wait(s.keepalive):
            self._set_disconnected()
            raise BrokerConnectionError(f"no CONNACK within {s.keepalive}s")
        if self._connack_failure is not None:
            self._set_disconnected()
            raise BrokerConnectionError(f"broker refused connection: {self._connack_failure}")

        with self._lock:
            self.state = SessionState.CONNECTED
            self.epoch += 1
        self.logger.info(f"MQTT connected (epoch {self.epoch})")
        try:
            self.publish(self.device.availability_topic, ONLINE, qos=1, retain=True)
        except PublishError as e:
            self._set_disconnected()
            raise BrokerConnectionError(f"availability publish failed: {e}") from e

    def publish(self, topic: str, payload: str, qos: int = 0, retain: bool = False) -> None:
        self.logger.debug(f"MQTT PUBLISH [{qos}]{'[retain]' if retain else ''} {topic} -> {payload}")
        info = self.client.publish(topic, payload, qos=qos, retain=retain)
        if info.rc != mqtt.MQTT_ERR_SUCCESS:
            raise PublishError(f"publish to {topic} failed: {mqtt.error_string(info.rc)}")
        if qos > 0:
            try:
                info.wait_for_publish(timeout=self.settings.keepalive)
            except (RuntimeError, ValueError) as e:
                raise PublishError(f"publish to {topic} failed: {e}") from e
            if not info.is_published():
                raise PublishError(f"no acknowledgement for {topic} within {self.settings.keepalive}s")

    def mark_lost(self, reason: str) -> None:
        """Treat the connection as gone; the next ensure_connected reconnects."""
        if self.is_connected():
            self.logger.warning(f"Connection considered lost: {reason}")
        self._set_disconnected()
        self.client.disconnect()

    def close(self) -> None:
        """Announce offline and tear the connection down."""
        if self.is_connected():
            try:
                self.publish(self.device.availability_topic, OFFLINE, qos=1, retain=True)
            except PublishError as e:
                self.logger.warning(f"Could not publish offline status: {e}")
        self._set_disconnected()
        self.client.disconnect()
        self._stop_network_loop()
        self.logger.info("Disconnected from MQTT broker")

    def _set_disconnected(self) -> None:
        with self._lock:
            self.state = SessionState.DISCONNECTED

    def _stop_network_loop(self) -> None:
        if self._loop_running:
            self.client.loop_stop()
            self._loop_running = False
