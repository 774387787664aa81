"""Tests for device scanning and live system sizing."""
import pytest

from conftest import GB, efi, persistence, system, usb_stick
from stickplan.core.config import StickplanConfig
from stickplan.core.errors import CollaboratorIOError
from stickplan.discovery import StorageScanner, measure_live_system
from stickplan.models import DeviceDescriptor


class TestStorageScanner:
    """Building StorageDevice objects from backend descriptors."""

    def test_scan_device(self, backend):
        backend.add_device(usb_stick("sdb"), [system(3, GB), efi(1), persistence(2, GB)])

        device = StorageScanner(backend).scan_device("/dev/sdb")

        assert device.device == "sdb"
        assert [p.number for p in device.partitions] == [1, 2, 3]
        assert not device.classified

    def test_scan_unknown_device(self, backend):
        with pytest.raises(CollaboratorIOError):
            StorageScanner(backend).scan_device("sdz")

    def test_every_scan_builds_new_objects(self, backend):
        backend.add_device(usb_stick("sdb"), [efi(1)])
        scanner = StorageScanner(backend)
        assert scanner.scan_device("sdb").partitions[0] is not scanner.scan_device("sdb").partitions[0]

    def test_scan_all_sorted_and_skips_unreadable(self, backend, caplog):
        backend.add_device(usb_stick("sdb"), [efi(1, size=GB)])
        backend.add_device(DeviceDescriptor("sda", 500 * GB, connection_bus="sata"), [])
        # listed, but gone before it could be described
        backend.list_devices = lambda: ["sdc", "sdb", "sda"]

        devices = StorageScanner(backend).scan_all()

        assert [d.device for d in devices] == ["sda", "sdb"]
        assert "Skipping sdc" in caplog.text

    @pytest.mark.parametrize("source,expected", [
        ("sdb4", "sdb"),
        ("nvme0n1p2", "nvme0n1"),
        ("sdb", "sdb"),
    ])
    def test_find_boot_device(self, backend, source, expected):
        backend.premount(source, "/lib/live/mount/medium")
        assert StorageScanner(backend).find_boot_device("/lib/live/mount/medium") == expected

    def test_find_boot_device_when_not_live(self, backend):
        assert StorageScanner(backend).find_boot_device("/lib/live/mount/medium") is None


class TestMeasureLiveSystem:
    """Size of the running system and the enlarged size a copy needs."""

    def test_applies_system_size_factor(self, backend):
        backend.used_spaces = {"medium": 2_000_000_000}
        config = StickplanConfig(system_size_factor=1.25, live_medium_path="/lib/live/mount/medium")

        size = measure_live_system(backend, config)

        assert size.system_size == 2_000_000_000
        assert size.enlarged_system_size == 2_500_000_000
        assert size.medium_path == "/lib/live/mount/medium"
        assert "GiB" in str(size)

    def test_default_factor(self, backend):
        backend.used_spaces = {"medium": 1_000_000_000}
        assert measure_live_system(backend).enlarged_system_size == 1_100_000_000

    def test_measurement_failure_propagates(self, backend):
        with pytest.raises(CollaboratorIOError):
            measure_live_system(backend)
