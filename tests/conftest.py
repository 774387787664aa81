"""Shared test fixtures for stickplan tests."""
import os
from pathlib import Path
from typing import Dict, Iterable, List, Optional, Sequence

import pytest

from stickplan.core.config import StickplanConfig, set_config
from stickplan.core.errors import CollaboratorIOError, MountError, UnmountError
from stickplan.models import DeviceDescriptor, MountInfo, PartitionDescriptor, StorageDevice
from stickplan.services.backends.base import StorageBackend

GB = 1_000_000_000
MERGED_PATH = "/fake/merged"


class FakeBackend(StorageBackend):
    """In-memory StorageBackend that records every call.

    ``system_partitions`` names the partitions whose mount shows a live/
    directory with squashfs images. ``directory_sizes`` is keyed by path
    relative to the merged overlay view, ``used_spaces`` by partition name
    (or by the basename of any other measured mount path).
    """

    def __init__(
        self,
        system_partitions: Iterable[str] = (),
        directory_sizes: Optional[Dict[str, int]] = None,
        used_spaces: Optional[Dict[str, int]] = None,
        mount_root: str = "/fake/mnt",
    ):
        super().__init__(mock=True)
        self.system_partitions = set(system_partitions)
        self.directory_sizes = directory_sizes if directory_sizes is not None else {}
        self.used_spaces = used_spaces if used_spaces is not None else {}
        self.mount_root = mount_root

        self.devices: Dict[str, DeviceDescriptor] = {}
        self.partition_descriptors: Dict[str, List[PartitionDescriptor]] = {}
        self.mount_points: Dict[str, str] = {}

        self.mount_calls: List[str] = []
        self.unmount_calls: List[str] = []
        self.layout_checks: List[str] = []
        self.overlays: List[tuple] = []
        self.released: List[tuple] = []
        self.measured: List[str] = []

        self.failing_mounts: set = set()
        self.failing_unmounts: set = set()
        self.failing_layout_checks: set = set()
        self.fail_measure = False

    def add_device(self, descriptor: DeviceDescriptor, partitions: Sequence[PartitionDescriptor]) -> None:
        self.devices[descriptor.device] = descriptor
        self.partition_descriptors[descriptor.device] = list(partitions)

    def premount(self, partition_name: str, path: str) -> None:
        """Pretend a partition was mounted before stickplan ran."""
        self.mount_points[partition_name] = path

    # ---- enumeration ----
    def list_devices(self) -> List[str]:
        return sorted(self.devices)

    def describe_device(self, device: str) -> DeviceDescriptor:
        if device not in self.devices:
            raise CollaboratorIOError(f"no such device {device}", target=device)
        return self.devices[device]

    def list_partitions(self, device: str) -> List[PartitionDescriptor]:
        return list(self.partition_descriptors.get(device, []))

    def find_device_for_mount_point(self, mount_point: str) -> Optional[str]:
        for name, path in self.mount_points.items():
            if path == mount_point:
                return name
        return None

    # ---- mounting ----
    def mount_paths(self, partition) -> List[str]:
        path = self.mount_points.get(partition.name)
        return [path] if path else []

    def mount(self, partition) -> MountInfo:
        self.mount_calls.append(partition.name)
        if partition.name in self.mount_points:
            return MountInfo(self.mount_points[partition.name], already_mounted=True)
        if partition.name in self.failing_mounts:
            raise MountError(f"cannot mount {partition.name}", target=partition.name)
        path = os.path.join(self.mount_root, partition.name)
        self.mount_points[partition.name] = path
        return MountInfo(path, already_mounted=False)

    def unmount(self, partition) -> bool:
        self.unmount_calls.append(partition.name)
        if partition.name in self.failing_unmounts:
            raise UnmountError(f"{partition.name} is busy", target=partition.name)
        self.mount_points.pop(partition.name, None)
        return True

    def mount_squashfs_layers(self, system_mount_path: str) -> List[str]:
        return ["/fake/ro2", "/fake/ro1"]

    def mount_overlay(self, read_write_path: str, read_only_layer_paths: Sequence[str]) -> str:
        self.overlays.append((read_write_path, list(read_only_layer_paths)))
        return MERGED_PATH

    def release_overlay(self, merged_path: Optional[str], read_only_layer_paths: Sequence[str]) -> None:
        self.released.append((merged_path, list(read_only_layer_paths)))

    # ---- inspection ----
    def has_squashfs_system_layout(self, mount_path: str) -> bool:
        name = Path(mount_path).name
        self.layout_checks.append(name)
        if name in self.failing_layout_checks:
            raise CollaboratorIOError(f"cannot read {mount_path}", target=name)
        return name in self.system_partitions

    def measure_directory_size(self, path: str) -> int:
        self.measured.append(path)
        if self.fail_measure:
            raise CollaboratorIOError(f"du timed out for {path}", target=path)
        return self.directory_sizes.get(os.path.relpath(path, MERGED_PATH), 0)

    def filesystem_used_space(self, mount_path: str) -> int:
        name = Path(mount_path).name
        if name not in self.used_spaces:
            raise CollaboratorIOError(f"statvfs failed for {mount_path}", target=mount_path)
        return self.used_spaces[name]


def part(
    number: int,
    size: int,
    label: str = "",
    fs_type: str = "ext4",
    table_type: str = "0x83",
    device: str = "sdb",
    offset: Optional[int] = None,
) -> PartitionDescriptor:
    """Partition descriptor with a plausible offset."""
    if offset is None:
        offset = number * 1_048_576
    return PartitionDescriptor(device, number, offset, size, table_type, label, fs_type)


def efi(number: int = 1, size: int = 200 * 1024 * 1024, label: str = "EFI") -> PartitionDescriptor:
    return part(number, size, label=label, fs_type="vfat", table_type="0xef")


def exchange(number: int = 2, size: int = 4 * GB, fs_type: str = "exfat", table_type: str = "0x07") -> PartitionDescriptor:
    return part(number, size, label="Exchange", fs_type=fs_type, table_type=table_type)


def persistence(number: int, size: int, label: str = "persistence") -> PartitionDescriptor:
    return part(number, size, label=label)


def system(number: int, size: int) -> PartitionDescriptor:
    return part(number, size, label="system")


def usb_stick(device: str = "sdb", size: int = 16 * GB) -> DeviceDescriptor:
    return DeviceDescriptor(
        device=device, size=size, removable=True, system_internal=False,
        connection_bus="usb", vendor="Fake", model="Stick",
    )


@pytest.fixture(autouse=True)
def default_config():
    """Every test starts with default settings."""
    set_config(StickplanConfig())
    yield
    set_config(None)


@pytest.fixture
def config():
    return StickplanConfig()


@pytest.fixture
def backend():
    """Empty FakeBackend; tests declare system partitions and sizes."""
    return FakeBackend()


@pytest.fixture
def build_device(backend):
    """Factory: register partitions on the fake backend and return a StorageDevice."""

    def _build(*partitions: PartitionDescriptor, descriptor: Optional[DeviceDescriptor] = None) -> StorageDevice:
        descriptor = descriptor or usb_stick()
        backend.add_device(descriptor, partitions)
        return StorageDevice.from_descriptors(descriptor, partitions, backend)

    return _build
