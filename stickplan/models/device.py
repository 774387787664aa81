"""Storage device models."""
import threading
from dataclasses import dataclass
from enum import Enum
from functools import total_ordering
from typing import TYPE_CHECKING, Dict, Iterable, Optional, Tuple

from stickplan.models.partition import Partition, PartitionDescriptor, Role
from stickplan.models.units import format_bytes

if TYPE_CHECKING:
    from stickplan.services.backends.base import StorageBackend


class DeviceType(Enum):
    """Storage device type, derived from bus and device name."""
    OPTICAL_DISC = "optical_disc"
    HARD_DRIVE = "hard_drive"
    USB_FLASH_DRIVE = "usb_flash_drive"
    SD_MEMORY_CARD = "sd_memory_card"
    NVME = "nvme"

    @property
    def display_name(self) -> str:
        return {
            DeviceType.OPTICAL_DISC: "Optical disc",
            DeviceType.HARD_DRIVE: "Hard drive",
            DeviceType.USB_FLASH_DRIVE: "USB flash drive",
            DeviceType.SD_MEMORY_CARD: "SD memory card",
            DeviceType.NVME: "NVMe",
        }[self]


@dataclass(frozen=True)
class DeviceDescriptor:
    """Raw device properties as reported by the platform."""
    device: str                  # e.g. "sda", "nvme0n1"
    size: int                    # bytes
    removable: bool = False      # from /sys/block/<dev>/removable
    optical: bool = False
    system_internal: bool = True
    connection_bus: str = ""     # e.g. "usb", "sata"
    vendor: str = ""
    model: str = ""
    serial: str = ""

    @property
    def device_type(self) -> DeviceType:
        """Best-effort device type.

        Optical drives first, then name prefixes, then the bus: an external
        USB device is treated as a flash drive, everything else as a hard drive.
        """
        if self.optical:
            return DeviceType.OPTICAL_DISC
        if self.device.startswith("mmcblk"):
            return DeviceType.SD_MEMORY_CARD
        if self.device.startswith("nvme"):
            return DeviceType.NVME
        if not self.system_internal and self.connection_bus == "usb":
            return DeviceType.USB_FLASH_DRIVE
        return DeviceType.HARD_DRIVE


@total_ordering
class StorageDevice:
    """A storage device with its partitions and their classified roles.

    Role references point into ``partitions``; at most one partition per role.
    """

    def __init__(self, descriptor: DeviceDescriptor, partitions: Iterable[Partition] = ()):
        self.descriptor = descriptor
        ordered = sorted(partitions, key=lambda p: p.number)

        numbers = [p.number for p in ordered]
        if len(numbers) != len(set(numbers)):
            raise ValueError(f"Duplicate partition numbers on {descriptor.device}: {numbers}")
        foreign = [p.name for p in ordered if p.device != descriptor.device]
        if foreign:
            raise ValueError(f"Partitions {foreign} do not belong to {descriptor.device}")

        self._partitions: Tuple[Partition, ...] = tuple(ordered)
        self._roles: Dict[Role, Partition] = {}
        # held while roles are assigned and for the classified flag
        self.classification_lock = threading.Lock()
        self.classified = False

    @classmethod
    def from_descriptors(
        cls,
        descriptor: DeviceDescriptor,
        partition_descriptors: Iterable[PartitionDescriptor],
        backend: "StorageBackend",
    ) -> "StorageDevice":
        """Build a device and its partitions from platform descriptors."""
        return cls(descriptor, [Partition(d, backend) for d in partition_descriptors])

    # -----------------------------
    #  Device properties
    # -----------------------------
    @property
    def device(self) -> str:
        return self.descriptor.device

    @property
    def size(self) -> int:
        return self.descriptor.size

    @property
    def removable(self) -> bool:
        return self.descriptor.removable

    @property
    def device_type(self) -> DeviceType:
        return self.descriptor.device_type

    @property
    def size_human(self) -> str:
        return format_bytes(self.size)

    @property
    def partitions(self) -> Tuple[Partition, ...]:
        """Partitions ordered by ascending partition number."""
        return self._partitions

    def partition(self, number: int) -> Optional[Partition]:
        """Partition with the given number, or None."""
        for partition in self._partitions:
            if partition.number == number:
                return partition
        return None

    def previous_partition(self, partition: Partition) -> Optional[Partition]:
        """Partition physically listed right before ``partition``, or None."""
        index = self._index_of(partition)
        return self._partitions[index - 1] if index > 0 else None

    def next_partition(self, partition: Partition) -> Optional[Partition]:
        """Partition physically listed right after ``partition``, or None."""
        index = self._index_of(partition)
        return self._partitions[index + 1] if index + 1 < len(self._partitions) else None

    def _index_of(self, partition: Partition) -> int:
        for index, candidate in enumerate(self._partitions):
            if candidate is partition:
                return index
        raise ValueError(f"{partition.name} is not a partition of {self.device}")

    # -----------------------------
    #  Role references
    # -----------------------------
    def assign_role(self, role: Role, partition: Partition) -> None:
        """Record ``partition`` as the partition with ``role``.

        Raises:
            ValueError: If the partition is not on this device, the role is
                NONE, or the role was already assigned
        """
        if role is Role.NONE:
            raise ValueError("Role.NONE is not a role reference")
        self._index_of(partition)
        if role in self._roles:
            raise ValueError(
                f"{role.value} partition of {self.device} is already {self._roles[role].name}"
            )
        partition.assign_role(role)
        self._roles[role] = partition

    def partition_for(self, role: Role) -> Optional[Partition]:
        return self._roles.get(role)

    @property
    def data_partition(self) -> Optional[Partition]:
        return self._roles.get(Role.DATA)

    @property
    def efi_partition(self) -> Optional[Partition]:
        return self._roles.get(Role.EFI)

    @property
    def exchange_partition(self) -> Optional[Partition]:
        return self._roles.get(Role.EXCHANGE)

    @property
    def system_partition(self) -> Optional[Partition]:
        return self._roles.get(Role.SYSTEM)

    # -----------------------------
    #  Dunder helpers
    # -----------------------------
    def __eq__(self, other) -> bool:
        if not isinstance(other, StorageDevice):
            return NotImplemented
        return (self.device, self.size) == (other.device, other.size)

    def __lt__(self, other) -> bool:
        if not isinstance(other, StorageDevice):
            return NotImplemented
        return self.device < other.device

    def __hash__(self) -> int:
        return hash((self.device, self.size))

    def __str__(self) -> str:
        return f"{self.device}, {self.device_type.display_name}, {self.size_human}"

    def __repr__(self) -> str:
        return f"StorageDevice({self.device}, partitions={len(self._partitions)})"
