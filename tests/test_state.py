import logging
import threading
import unittest

from fakes import FakeClient, make_config, snapshot

from orbiq_monitor.registry import build
from orbiq_monitor.session import Session
from orbiq_monitor.state import publish_tick, state_payload

log = logging.getLogger("test.state")


class StatePayloadTests(unittest.TestCase):
    def setUp(self):
        self.cfg = make_config()

    def test_root_disk_scenario(self):
        snap = snapshot(disks=(("/", 50, 100),))
        reg = build(snap, self.cfg.device)
        self.assertEqual(state_payload(reg.get("disk_usage_root"), snap), "50.0")
        self.assertEqual(state_payload(reg.get("disk_used_root"), snap), "50.00")
        self.assertEqual(state_payload(reg.get("disk_total_root"), snap), "100.00")

    def test_memory_and_cpu(self):
        snap = snapshot(cpu=7.25)
        reg = build(snap, self.cfg.device)
        self.assertEqual(state_payload(reg.get("cpu_usage"), snap), "7.2")
        self.assertEqual(state_payload(reg.get("memory_usage"), snap), "25.0")
        self.assertEqual(state_payload(reg.get("memory_used"), snap), "4.00")
        self.assertEqual(state_payload(reg.get("memory_total"), snap), "16.00")

    def test_missing_values(self):
        reg = build(snapshot(temps=(("acpitz 1", 30.0),)), self.cfg.device)
        snap = snapshot(disks=(), temps=(), cpu=None, mem=None)
        for d in reg:
            self.assertIsNone(state_payload(d, snap), d.sensor_id)

    def test_zero_total_is_missing(self):
        snap = snapshot(disks=(("/boot", 0, 0),))
        reg = build(snap, self.cfg.device)
        self.assertIsNone(state_payload(reg.get("disk_usage_boot"), snap))
        self.assertEqual(state_payload(reg.get("disk_total_boot"), snap), "0.00")


class PublishTickTests(unittest.TestCase):
    def _handle(self, client):
        cfg = make_config()
        session = Session(cfg.mqtt, cfg.device, log, threading.Event(),
                          client_factory=lambda *a: client)
        return cfg, session.ensure_connected()

    def test_publishes_every_sensor_non_retained(self):
        client = FakeClient()
        cfg, handle = self._handle(client)
        snap = snapshot(temps=(("k10temp 1", 48.5),))
        reg = build(snap, cfg.device)
        self.assertEqual(publish_tick(reg, snap, handle, log), 0)
        states = [p for p in client.published if p[0].endswith("/state")]
        self.assertEqual([p[0] for p in states], [d.state_topic for d in reg])
        self.assertFalse(any(p[3] for p in states))
        self.assertIn(("orbiq/server-01/sensor/temp_k10temp_1/state", "48.5", 0, False), states)

    def test_probe_lost_between_ticks(self):
        client = FakeClient()
        cfg, handle = self._handle(client)
        reg = build(snapshot(temps=(("nvme composite", 38.0),)), cfg.device)
        later = snapshot(temps=())
        publish_tick(reg, later, handle, log)
        topics = [p[0] for p in client.published]
        self.assertNotIn("orbiq/server-01/sensor/temp_nvme_composite/state", topics)

    def test_failures_do_not_stop_remaining(self):
        client = FakeClient(fail_when=lambda i, topic: topic.endswith("memory_usage/state"))
        cfg, handle = self._handle(client)
        snap = snapshot()
        reg = build(snap, cfg.device)
        self.assertEqual(publish_tick(reg, snap, handle, log), 1)
        attempted = [a[0] for a in client.attempts if a[0].endswith("/state")]
        self.assertEqual(attempted, [d.state_topic for d in reg])

    def test_disconnect_mid_tick_still_attempts_every_sensor(self):
        sent = []

        def drop_after_second_state(index, topic):
            if topic.endswith("/state"):
                sent.append(topic)
                if len(sent) == 2:
                    client.drop()

        client = FakeClient(after_publish=drop_after_second_state)
        cfg, handle = self._handle(client)
        snap = snapshot(disks=(), temps=(("acpitz 1", 30.0),))
        reg = build(snap, cfg.device)
        self.assertEqual(len(reg), 5)
        self.assertEqual(publish_tick(reg, snap, handle, log), 3)
        attempted = [a[0] for a in client.attempts if a[0].endswith("/state")]
        self.assertEqual(attempted, [d.state_topic for d in reg])
        self.assertEqual(len([p for p in client.published if p[0].endswith("/state")]), 2)


if __name__ == "__main__":
    unittest.main()
