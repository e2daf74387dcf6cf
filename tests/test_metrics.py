import logging
import unittest
from collections import namedtuple
from unittest import mock

import psutil
import requests

from orbiq_monitor.config import SourceSettings
from orbiq_monitor.errors import SampleError
from orbiq_monitor.metrics import PsutilSensorSource, SensorSource, lhm_read_temps

log = logging.getLogger("test.metrics")

Part = namedtuple("Part", "device mountpoint fstype opts")
Usage = namedtuple("Usage", "total used free percent")
Mem = namedtuple("Mem", "total available percent used free")
Temp = namedtuple("Temp", "label current high critical")
Fan = namedtuple("Fan", "label current")

PARTS = [
    Part("/dev/sda1", "/", "ext4", "rw"),
    Part("/dev/loop0", "/snap/core/1", "squashfs", "ro"),
    Part("/dev/sdb1", "/data", "xfs", "rw"),
]


def fake_usage(path):
    if path == "/data":
        raise PermissionError("denied")
    return Usage(100, 40, 60, 40.0)


class PsutilSourceTests(unittest.TestCase):
    def setUp(self):
        patches = [
            mock.patch.object(psutil, "cpu_percent", return_value=12.0),
            mock.patch.object(psutil, "virtual_memory", return_value=Mem(16, 8, 50.0, 8, 8)),
            mock.patch.object(psutil, "disk_partitions", return_value=PARTS),
            mock.patch.object(psutil, "disk_usage", side_effect=fake_usage),
            mock.patch.object(psutil, "sensors_temperatures", create=True, return_value={
                "k10temp": [Temp("Tctl", 45.5, None, None)],
                "nvme": [Temp("", 38.0, 80.0, 90.0), Temp("", float("nan"), None, None)],
            }),
            mock.patch.object(psutil, "sensors_fans", create=True, return_value={
                "it8728": [Fan("", 1200)],
            }),
        ]
        for p in patches:
            p.start()
            self.addCleanup(p.stop)

    def test_sample(self):
        snap = PsutilSensorSource(log).sample()
        self.assertEqual(snap.cpu_percent, 12.0)
        self.assertEqual((snap.memory_used, snap.memory_total), (8, 16))
        # unreadable /data is left out
        self.assertEqual([d.mount for d in snap.disks], ["/", "/snap/core/1"])
        self.assertEqual([t.name for t in snap.temperatures], ["k10temp Tctl", "nvme 1"])
        self.assertEqual(snap.fan("it8728 1"), 1200.0)

    def test_sources_are_structural(self):
        self.assertIsInstance(PsutilSensorSource(log), SensorSource)
        self.assertNotIn(SensorSource, PsutilSensorSource.__mro__)
        self.assertNotIsInstance(object(), SensorSource)

    def test_filters(self):
        source = PsutilSensorSource(log, SourceSettings(mount_excludes=("/snap",)))
        self.assertEqual([d.mount for d in source.sample().disks], ["/"])
        source = PsutilSensorSource(log, SourceSettings(fs_types_include=("squashfs",)))
        self.assertEqual([d.mount for d in source.sample().disks], ["/snap/core/1"])

    def test_partial_snapshot_on_metric_failure(self):
        with mock.patch.object(psutil, "virtual_memory", side_effect=OSError("no /proc/meminfo")):
            snap = PsutilSensorSource(log).sample()
        self.assertIsNone(snap.memory_total)
        self.assertEqual(snap.cpu_percent, 12.0)

    def test_psutil_error_is_sample_error(self):
        source = PsutilSensorSource(log)
        with mock.patch.object(psutil, "cpu_percent", side_effect=psutil.AccessDenied()):
            with self.assertRaises(SampleError):
                source.sample()

    def test_shape(self):
        snap = PsutilSensorSource(log).sample()
        self.assertEqual(snap.shape, (("/", "/snap/core/1"), ("k10temp Tctl", "nvme 1"), ("it8728 1",)))


class LhmTests(unittest.TestCase):
    DATA = {
        "Text": "Sensor",
        "Children": [{
            "Text": "AMD Ryzen 7",
            "Children": [
                {"Text": "Core (Tctl/Tdie)", "Type": "Temperature", "Value": "52,5 °C"},
                {"Text": "CPU Total", "Type": "Load", "Value": "7,0 %"},
                {"Text": "Broken", "Type": "Temperature", "Value": "NaN"},
            ],
        }],
    }

    def test_reads_first_working_url(self):
        ok = mock.Mock()
        ok.json.return_value = self.DATA
        with mock.patch("orbiq_monitor.metrics.requests.get",
                        side_effect=[requests.ConnectionError("down"), ok]) as get:
            temps = lhm_read_temps(log, ["http://a/data.json", "http://b/data.json"], 2.0)
        self.assertEqual(get.call_count, 2)
        self.assertEqual([(t.name, t.value) for t in temps], [("lhm Core (Tctl/Tdie)", 52.5)])

    def test_all_urls_fail(self):
        with mock.patch("orbiq_monitor.metrics.requests.get", side_effect=requests.Timeout("slow")):
            self.assertEqual(lhm_read_temps(log, ["http://a/data.json"], 1.0), [])


if __name__ == "__main__":
    unittest.main()
