"""Top-level driver: connect, discover once per epoch, tick until stopped."""

import threading
from typing import Optional

from . import discovery, registry, state
from .config import DaemonConfig
from .errors import PublishError, SampleError
from .metrics import MetricSnapshot, SensorSource
from .registry import SensorRegistry
from .session import ONLINE, Session, SessionHandle

# Re-assert the retained online status every this many ticks.
AVAILABILITY_REFRESH_TICKS = 20


class PublishLoop:
    def __init__(self, config: DaemonConfig, source: SensorSource, session: Session,
                 logger, stop: threading.Event, once: bool = False):
        self.config = config
        self.source = source
        self.session = session
        self.logger = logger
        self.stop = stop
        self.once = once

        self.registry: Optional[SensorRegistry] = None
        self.discovered_epoch: Optional[int] = None
        self.ticks = 0

    def prepare(self) -> SensorRegistry:
        """Take the first sample and build the registry.

        Raises ConfigurationError for a bad device name before any network
        activity happens.
        """
        snapshot = self._sample() or MetricSnapshot()
        self.registry = registry.build(snapshot, self.config.device)
        self.logger.info(f"Registry built with {len(self.registry)} sensor(s)")
        return self.registry

    def run(self) -> None:
        if self.registry is None:
            self.prepare()
        self.logger.info(
            f"Starting publish loop for '{self.config.device.name}' "
            f"update_interval={self.config.update_interval_secs}s"
        )
        while not self.stop.is_set():
            handle = self.session.ensure_connected()
            if handle is None:
                break
            try:
                if handle.epoch != self.discovered_epoch:
                    self._discover(handle)
                self._tick_until_lost(handle)
            except PublishError as e:
                self.session.mark_lost(str(e))
            if self.once and self.ticks:
                break
        self.logger.info("Publish loop stopped")

    def _discover(self, handle: SessionHandle) -> None:
        self.logger.info(f"Publishing discovery for epoch {handle.epoch}")
        self.session.take_rediscovery_request()
        discovery.publish_all(self.registry, handle, self.config.discovery_delay,
                              self.config.device, self.logger, self.stop)
        self.discovered_epoch = handle.epoch

    def _tick_until_lost(self, handle: SessionHandle) -> None:
        while handle.valid:
            # --once publishes a single tick right away
            if self.once:
                if self.ticks:
                    return
            elif self.stop.wait(self.config.update_interval_secs):
                return
            snapshot = self._sample()
            self.ticks += 1
            if snapshot is None:
                continue
            if self.session.take_rediscovery_request():
                self._discover(handle)
            self._refresh_registry(snapshot, handle)
            failures = state.publish_tick(self.registry, snapshot, handle, self.logger,
                                          qos=self.config.mqtt.state_qos)
            if failures:
                self.session.mark_lost(f"{failures} state publish(es) failed")
                return
            if self.ticks % AVAILABILITY_REFRESH_TICKS == 0:
                self.logger.debug("Refreshing availability status")
                handle.publish(self.config.device.availability_topic, ONLINE, qos=1, retain=True)

    def _sample(self) -> Optional[MetricSnapshot]:
        try:
            return self.source.sample()
        except SampleError as e:
            self.logger.error(f"Sampling failed, skipping tick: {e}")
            return None

    def _refresh_registry(self, snapshot: MetricSnapshot, handle: SessionHandle) -> None:
        if snapshot.shape == self.registry.shape:
            return
        previous = self.registry
        self.registry = registry.build(snapshot, self.config.device)
        added = self.registry.added_since(previous)
        dropped = [sid for sid in previous.ids if sid not in self.registry]
        self.logger.info(
            f"Sensor set changed: {len(added)} added, {len(dropped)} dropped "
            f"({len(self.registry)} total)"
        )
        if added:
            discovery.publish_all(added, handle, self.config.discovery_delay,
                                  self.config.device, self.logger, self.stop)
