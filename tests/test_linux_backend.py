"""Tests for the Linux storage backend."""
import json
import subprocess
from pathlib import Path
from unittest.mock import Mock, patch

import pytest

from stickplan.core.config import StickplanConfig
from stickplan.core.errors import CollaboratorIOError, MountError, UnmountError
from stickplan.models import Partition, PartitionDescriptor
from stickplan.services.backends.linux import LinuxStorageBackend

RUN = "stickplan.services.backends.linux.subprocess.run"


def completed(stdout="", returncode=0, stderr=""):
    return Mock(stdout=stdout, stderr=stderr, returncode=returncode)


@pytest.fixture
def linux_backend():
    config = StickplanConfig(unmount_attempts=3, unmount_delay=0.0, mount_timeout=5, measure_timeout=10)
    return LinuxStorageBackend(config=config)


@pytest.fixture
def sdb1(linux_backend):
    return Partition(PartitionDescriptor("sdb", 1, 1_048_576, 209_715_200, "0xef", "EFI", "vfat"), linux_backend)


class TestMockMode:
    """Canned layout used by STICKPLAN_MOCK=1."""

    def test_lists_mock_device(self):
        backend = LinuxStorageBackend(mock=True)
        assert backend.list_devices() == ["sdb"]
        assert backend.describe_device("sdb").removable is True
        assert [p.number for p in backend.list_partitions("sdb")] == [1, 2, 3, 4]

    def test_unknown_mock_device(self):
        with pytest.raises(CollaboratorIOError):
            LinuxStorageBackend(mock=True).describe_device("sdz")

    def test_mock_mount_round_trip(self):
        backend = LinuxStorageBackend(mock=True)
        partition = Partition(backend.list_partitions("sdb")[3], backend)

        with patch(RUN) as mock_run:
            assert partition.is_system() is True

        mock_run.assert_not_called()
        assert not partition.is_mounted()


class TestEnumeration:
    """lsblk parsing."""

    def test_list_devices(self, linux_backend):
        output = json.dumps({"blockdevices": [
            {"name": "sda", "type": "disk"},
            {"name": "sr0", "type": "rom"},
            {"name": "loop0", "type": "loop"},
        ]})
        with patch(RUN, return_value=completed(output)) as mock_run:
            assert linux_backend.list_devices() == ["sda", "sr0"]

        cmd = mock_run.call_args[0][0]
        assert cmd[:3] == ["lsblk", "-J", "-b"]

    def test_describe_device(self, linux_backend):
        output = json.dumps({"blockdevices": [{
            "name": "sdb", "size": 16008609792, "type": "disk", "rm": True, "hotplug": "1",
            "tran": "usb", "vendor": "SanDisk ", "model": "Ultra  ", "serial": "4C53",
        }]})
        with patch(RUN, return_value=completed(output)), \
                patch("stickplan.services.backends.linux.Path.read_text", side_effect=OSError):
            descriptor = linux_backend.describe_device("sdb")

        assert descriptor.size == 16008609792
        assert descriptor.removable is True
        assert descriptor.system_internal is False
        assert descriptor.connection_bus == "usb"
        assert descriptor.vendor == "SanDisk"
        assert descriptor.device_type.value == "usb_flash_drive"

    def test_describe_missing_device(self, linux_backend):
        error = subprocess.CalledProcessError(32, ["lsblk"], stderr="lsblk: /dev/sdz: not a block device")
        with patch(RUN, side_effect=error):
            with pytest.raises(CollaboratorIOError, match="not a block device"):
                linux_backend.describe_device("sdz")

    def test_list_partitions(self, linux_backend):
        output = json.dumps({"blockdevices": [{
            "name": "nvme0n1", "type": "disk",
            "children": [
                {"name": "nvme0n1p2", "type": "part", "partn": 2, "start": 411648,
                 "size": 4000000000, "parttype": "0x07", "label": "Exchange", "fstype": "exfat"},
                {"name": "nvme0n1p1", "type": "part", "partn": 1, "start": 2048,
                 "size": 209715200, "parttype": "0xEF", "label": "EFI", "fstype": "vfat"},
                {"name": "nvme0n1p1-crypt", "type": "crypt"},
            ],
        }]})
        with patch(RUN, return_value=completed(output)):
            partitions = linux_backend.list_partitions("nvme0n1")

        assert [p.number for p in partitions] == [1, 2]
        assert partitions[0].offset == 2048 * 512
        assert partitions[0].table_type == "0xef"
        assert partitions[0].name == "nvme0n1p1"
        assert partitions[1].fs_type == "exfat"

    def test_garbled_lsblk_output(self, linux_backend):
        with patch(RUN, return_value=completed("not json")):
            with pytest.raises(CollaboratorIOError, match="Unparseable"):
                linux_backend.list_devices()

    def test_find_device_for_mount_point(self, linux_backend):
        mounts = (
            "sysfs /sys sysfs rw 0 0\n"
            "/dev/sdb4 /lib/live/mount/medium iso9660 ro 0 0\n"
            "/dev/sdb3 /lib/live/mount/persistence/sdb3 ext4 rw 0 0\n"
        )
        with patch("stickplan.services.backends.linux.Path.read_text", return_value=mounts):
            assert linux_backend.find_device_for_mount_point("/lib/live/mount/medium") == "sdb4"
            assert linux_backend.find_device_for_mount_point("/mnt") is None


class TestMounting:
    """udisksctl mount and unmount."""

    def test_mount_reports_existing_mount(self, linux_backend, sdb1):
        with patch(RUN, return_value=completed("/boot/efi\n")) as mock_run:
            info = linux_backend.mount(sdb1)

        assert info.mount_path == "/boot/efi"
        assert info.already_mounted is True
        assert mock_run.call_count == 1

    def test_mount_parses_udisks_output(self, linux_backend, sdb1):
        responses = [
            completed("", returncode=1),
            completed("Mounted /dev/sdb1 at /media/user/EFI.\n"),
        ]
        with patch(RUN, side_effect=responses) as mock_run:
            info = linux_backend.mount(sdb1)

        assert info.mount_path == "/media/user/EFI"
        assert info.already_mounted is False
        udisks_cmd = mock_run.call_args_list[1][0][0]
        assert udisks_cmd == ["udisksctl", "mount", "--no-user-interaction", "-b", "/dev/sdb1"]
        assert mock_run.call_args_list[1][1]["timeout"] == 5

    def test_mount_timeout_is_mount_error(self, linux_backend, sdb1):
        responses = [
            completed("", returncode=1),
            subprocess.TimeoutExpired(["udisksctl"], 5),
        ]
        with patch(RUN, side_effect=responses):
            with pytest.raises(MountError, match="timed out"):
                linux_backend.mount(sdb1)

    def test_mount_paths_failure(self, linux_backend, sdb1):
        with patch(RUN, return_value=completed("", returncode=2, stderr="bad usage")):
            with pytest.raises(CollaboratorIOError, match="findmnt failed"):
                linux_backend.mount_paths(sdb1)

    def test_unmount_retries_busy_partition(self, linux_backend, sdb1):
        attempts = {"unmount": 0}

        def run(cmd, **kwargs):
            if cmd[0] == "findmnt":
                return completed("/media/user/EFI\n")
            if cmd[0] == "udisksctl":
                attempts["unmount"] += 1
                if attempts["unmount"] < 3:
                    raise subprocess.CalledProcessError(1, cmd, stderr="target is busy")
                return completed("")
            return completed("", returncode=1)

        with patch(RUN, side_effect=run):
            assert linux_backend.unmount(sdb1) is True

        assert attempts["unmount"] == 3

    def test_unmount_gives_up(self, linux_backend, sdb1, caplog):
        def run(cmd, **kwargs):
            if cmd[0] == "findmnt":
                return completed("/media/user/EFI\n")
            if cmd[0] == "fuser":
                return completed("", stderr="/dev/sdb1: user 1234 ..c.. bash")
            raise subprocess.CalledProcessError(1, cmd, stderr="target is busy")

        with patch(RUN, side_effect=run):
            with pytest.raises(UnmountError, match="target is busy"):
                linux_backend.unmount(sdb1)

        assert "failed after 3 attempts" in caplog.text

    def test_unmount_of_unmounted_partition(self, linux_backend, sdb1):
        with patch(RUN, return_value=completed("", returncode=1)) as mock_run:
            assert linux_backend.unmount(sdb1) is True
        assert mock_run.call_count == 1

    def test_mount_overlay_is_read_only_union(self, linux_backend, tmp_path):
        with patch(RUN, return_value=completed("")) as mock_run, \
                patch("stickplan.services.backends.linux.tempfile.mkdtemp", return_value=str(tmp_path)):
            merged = linux_backend.mount_overlay("/media/data/rw", ["/tmp/x/ro2", "/tmp/x/ro1"])

        assert merged == str(tmp_path)
        cmd = mock_run.call_args[0][0]
        assert cmd == [
            "mount", "-t", "overlay", "overlay",
            "-o", "lowerdir=/media/data/rw:/tmp/x/ro2:/tmp/x/ro1", str(tmp_path),
        ]

    def test_mount_squashfs_layers_in_overlay_order(self, linux_backend, tmp_path):
        live = tmp_path / "live"
        live.mkdir()
        (live / "filesystem.squashfs").touch()
        (live / "filesystem2.squashfs").touch()
        layer_root = tmp_path / "layers"
        layer_root.mkdir()

        with patch(RUN, return_value=completed("")) as mock_run, \
                patch("stickplan.services.backends.linux.tempfile.mkdtemp", return_value=str(layer_root)):
            layers = linux_backend.mount_squashfs_layers(str(tmp_path))

        assert layers == [str(layer_root / "ro2"), str(layer_root / "ro1")]
        first_cmd = mock_run.call_args_list[0][0][0]
        assert first_cmd[:3] == ["mount", "-o", "loop,ro"]
        assert first_cmd[3].endswith("filesystem.squashfs")

    def test_mount_squashfs_without_images(self, linux_backend, tmp_path):
        (tmp_path / "live").mkdir()
        with pytest.raises(MountError, match="No system images"):
            linux_backend.mount_squashfs_layers(str(tmp_path))

    def test_release_overlay_reports_stuck_mounts(self, linux_backend):
        error = subprocess.CalledProcessError(32, ["umount"], stderr="target is busy")
        with patch(RUN, side_effect=error):
            with pytest.raises(UnmountError, match="/tmp/merged"):
                linux_backend.release_overlay("/tmp/merged", [])


class TestInspection:
    """Filesystem layout and size measurements."""

    def test_has_squashfs_system_layout(self, linux_backend, tmp_path):
        assert linux_backend.has_squashfs_system_layout(str(tmp_path)) is False
        (tmp_path / "live").mkdir()
        assert linux_backend.has_squashfs_system_layout(str(tmp_path)) is False
        (tmp_path / "live" / "filesystem.squashfs").touch()
        assert linux_backend.has_squashfs_system_layout(str(tmp_path)) is True

    def test_measure_directory_size(self, linux_backend, tmp_path):
        with patch(RUN, return_value=completed(f"123456\t{tmp_path}\n")) as mock_run:
            assert linux_backend.measure_directory_size(str(tmp_path)) == 123456

        assert mock_run.call_args[0][0] == ["du", "-sb", str(tmp_path)]
        assert mock_run.call_args[1]["timeout"] == 10

    def test_missing_directory_is_zero(self, linux_backend, tmp_path, caplog):
        missing = tmp_path / "etc" / "cups"
        with patch(RUN) as mock_run:
            assert linux_backend.measure_directory_size(str(missing)) == 0
        mock_run.assert_not_called()
        assert "not found in data partition" in caplog.text

    def test_du_timeout_is_measurement_failure(self, linux_backend, tmp_path):
        with patch(RUN, side_effect=subprocess.TimeoutExpired(["du"], 10)):
            with pytest.raises(CollaboratorIOError, match="timed out after 10s"):
                linux_backend.measure_directory_size(str(tmp_path))

    def test_missing_tool(self, linux_backend, tmp_path):
        with patch(RUN, side_effect=FileNotFoundError("du")):
            with pytest.raises(CollaboratorIOError, match="not found"):
                linux_backend.measure_directory_size(str(tmp_path))

    def test_filesystem_used_space_is_total_minus_free(self, linux_backend):
        usage = Mock(total=1000, used=600, free=300)
        with patch("stickplan.services.backends.linux.psutil.disk_usage", return_value=usage):
            assert linux_backend.filesystem_used_space("/media/data") == 700

    def test_filesystem_used_space_failure(self, linux_backend):
        with patch("stickplan.services.backends.linux.psutil.disk_usage", side_effect=OSError("gone")):
            with pytest.raises(CollaboratorIOError):
                linux_backend.filesystem_used_space(str(Path("/nonexistent")))
