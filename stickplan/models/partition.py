"""Partition models."""
import re
from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING, Callable, Optional, Tuple, TypeVar

from stickplan.core.errors import CollaboratorIOError
from stickplan.core.logger import get_logger
from stickplan.core.once import ComputeOnce

if TYPE_CHECKING:
    from stickplan.services.backends.base import StorageBackend

logger = get_logger(__name__)

T = TypeVar("T")

EFI_LABEL = "EFI"
LEGACY_EFI_LABELS = ("boot",)
PERSISTENCE_LABEL = "persistence"
LEGACY_PERSISTENCE_LABELS = ("live-rw",)

EXTENDED_PARTITION_TYPES = ("0x05", "0x0f")
EXT_FILESYSTEMS = ("ext2", "ext3", "ext4")

# Where live-boot mounts the persistence partition of the running system
ACTIVE_PERSISTENCE_PREFIX = "/lib/live/mount/persistence/"

# Reported by Partition.used_space when measuring failed
UNKNOWN_USED_SPACE = -1

_P_SEPARATED_DEVICES = ("mmcblk", "nvme", "loop")
_DEVICE_P_NUMBER = re.compile(r"(.*\d)p(\d+)")
_DEVICE_NUMBER = re.compile(r"(.*\D)(\d+)")


class Role(Enum):
    """Role of a partition in the live system layout."""
    NONE = "none"
    DATA = "data"              # persistence overlay (home, settings)
    EFI = "efi"                # bootloader
    EXCHANGE = "exchange"      # FAT/exFAT/NTFS area shared with other hosts
    SYSTEM = "system"          # read-only squashfs image(s)


def partition_device_name(device: str, number: int) -> str:
    """Block device name of a partition, e.g. ``sda1`` or ``nvme0n1p1``."""
    if device.startswith(_P_SEPARATED_DEVICES):
        return f"{device}p{number}"
    return f"{device}{number}"


def split_device_and_number(name: str) -> Tuple[str, int]:
    """Split ``sda1`` into ``("sda", 1)`` and ``nvme0n1p3`` into ``("nvme0n1", 3)``.

    Raises:
        ValueError: If the name carries no partition number
    """
    name = name[len("/dev/"):] if name.startswith("/dev/") else name
    pattern = _DEVICE_P_NUMBER if name.startswith(_P_SEPARATED_DEVICES) else _DEVICE_NUMBER
    match = pattern.fullmatch(name)
    if not match:
        raise ValueError(f"Not a partition device name: {name}")
    return match.group(1), int(match.group(2))


@dataclass(frozen=True)
class PartitionDescriptor:
    """Raw partition properties as reported by the platform."""
    device: str            # parent device, e.g. "sda"
    number: int            # 1-based partition number
    offset: int            # bytes from start of device
    size: int              # bytes
    table_type: str = ""   # partition table type code, e.g. "0x83"
    label: str = ""        # filesystem label
    fs_type: str = ""      # filesystem type, e.g. "ext4"

    def __post_init__(self):
        if self.number < 1:
            raise ValueError(f"Partition numbers start at 1, got {self.number}")
        if self.size < 0 or self.offset < 0:
            raise ValueError(f"Negative offset/size for {self.device} partition {self.number}")

    @property
    def name(self) -> str:
        return partition_device_name(self.device, self.number)


@dataclass(frozen=True)
class MountInfo:
    """Where a partition is mounted and whether it was mounted before we asked."""
    mount_path: str
    already_mounted: bool


class Partition:
    """A partition of a storage device.

    Identity and geometry are immutable. The EFI flag, the system flag and the
    used space are probed lazily and memoized once per instance.
    """

    def __init__(self, descriptor: PartitionDescriptor, backend: "StorageBackend"):
        self.descriptor = descriptor
        self.backend = backend
        self._role = Role.NONE
        self._role_assigned = False
        self._efi = ComputeOnce(self._matches_efi_label, name=f"{self.name} efi flag")
        self._system = ComputeOnce(self._probe_system_layout, name=f"{self.name} system flag")
        self._used_space = ComputeOnce(self._measure_used_space, name=f"{self.name} used space")

    # -----------------------------
    #  Identity and geometry
    # -----------------------------
    @property
    def device(self) -> str:
        return self.descriptor.device

    @property
    def number(self) -> int:
        return self.descriptor.number

    @property
    def name(self) -> str:
        return self.descriptor.name

    @property
    def offset(self) -> int:
        return self.descriptor.offset

    @property
    def size(self) -> int:
        return self.descriptor.size

    @property
    def table_type(self) -> str:
        return self.descriptor.table_type

    @property
    def label(self) -> str:
        return self.descriptor.label

    @property
    def fs_type(self) -> str:
        return self.descriptor.fs_type

    @property
    def role(self) -> Role:
        return self._role

    def assign_role(self, role: Role) -> None:
        """Record the role of this partition. Roles are assigned only once."""
        if self._role_assigned:
            raise ValueError(f"{self.name} already has role {self._role.value}")
        self._role = role
        self._role_assigned = True

    # -----------------------------
    #  Cheap label/type predicates
    # -----------------------------
    def is_persistence(self) -> bool:
        """True if the label marks a persistence (data) partition."""
        return self.label == PERSISTENCE_LABEL or self.label in LEGACY_PERSISTENCE_LABELS

    def is_efi(self) -> bool:
        """True if the label marks an EFI (or legacy boot) partition."""
        return self._efi.get()

    def is_exchange(self) -> bool:
        """True if this looks like the exchange partition.

        The exchange partition is the first partition on legacy removable
        layouts and the second one (after EFI) on current layouts. It uses
        type 0x07 with exFAT/NTFS or 0x0c/0x0e with FAT32.
        """
        if self.number not in (1, 2):
            return False
        if self.table_type == "0x07":
            return self.fs_type in ("exfat", "ntfs")
        if self.table_type in ("0x0c", "0x0e"):
            return self.fs_type == "vfat"
        return False

    def is_extended(self) -> bool:
        """True for extended (container) partitions."""
        return self.table_type in EXTENDED_PARTITION_TYPES

    def has_ext_filesystem(self) -> bool:
        """True if the filesystem is ext2, ext3 or ext4."""
        return self.fs_type in EXT_FILESYSTEMS

    def _matches_efi_label(self) -> bool:
        matches = self.label == EFI_LABEL or self.label in LEGACY_EFI_LABELS
        logger.debug(
            f"{self.name}: label '{self.label}' "
            f"{'matches' if matches else 'does not match'} efi/boot label"
        )
        return matches

    # -----------------------------
    #  Mount-backed probes
    # -----------------------------
    def is_system(self) -> bool:
        """True if the partition holds live/*.squashfs system images.

        Mounts the partition on first call (expensive).

        Raises:
            CollaboratorIOError: If mounting or unmounting failed
        """
        return self._system.get()

    def get_used_space(self) -> int:
        """Filesystem used space (total - free) in bytes.

        Raises:
            CollaboratorIOError: If the partition could not be measured
        """
        return self._used_space.get()

    @property
    def used_space(self) -> int:
        """Used space in bytes, or UNKNOWN_USED_SPACE (-1) if measuring failed."""
        try:
            return self.get_used_space()
        except CollaboratorIOError:
            return UNKNOWN_USED_SPACE

    def mount_paths(self):
        """Current mount paths of this partition."""
        return self.backend.mount_paths(self)

    def is_mounted(self) -> bool:
        return bool(self.mount_paths())

    def is_active_persistence(self) -> bool:
        """True if this is the persistence partition of the running live system."""
        if not self.is_persistence():
            return False
        return any(path.startswith(ACTIVE_PERSISTENCE_PREFIX) for path in self.mount_paths())

    def execute_mounted(self, action: Callable[[str], T]) -> T:
        """Run ``action(mount_path)`` with the partition mounted.

        The partition is unmounted afterwards only if this call mounted it.
        """
        mount_info = self.backend.mount(self)
        try:
            return action(mount_info.mount_path)
        finally:
            if not mount_info.already_mounted:
                self.backend.unmount(self)

    def _probe_system_layout(self) -> bool:
        logger.debug(f"checking file structure on partition {self.name}")
        return self.execute_mounted(self.backend.has_squashfs_system_layout)

    def _measure_used_space(self) -> int:
        used = self.execute_mounted(self.backend.filesystem_used_space)
        logger.info(f"{self.name}: used space = {used}")
        return used

    # -----------------------------
    #  Dunder helpers
    # -----------------------------
    def __eq__(self, other) -> bool:
        if not isinstance(other, Partition):
            return NotImplemented
        return (self.device, self.number) == (other.device, other.number)

    def __hash__(self) -> int:
        return hash((self.device, self.number))

    def __str__(self) -> str:
        parts = [f"/dev/{self.name}", f"offset: {self.offset}", f"size: {self.size}"]
        if self.label:
            parts.append(f'label: "{self.label}"')
        if self.fs_type:
            parts.append(f'fs: "{self.fs_type}"')
        if self.table_type:
            parts.append(f'type: "{self.table_type}"')
        return ", ".join(parts)

    def __repr__(self) -> str:
        return f"Partition({self.name}, role={self._role.value})"
