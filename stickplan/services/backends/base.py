"""Abstract base class for storage backends."""
from abc import ABC, abstractmethod
from typing import List, Optional, Sequence

from stickplan.models.device import DeviceDescriptor
from stickplan.models.partition import MountInfo, Partition, PartitionDescriptor


class StorageBackend(ABC):
    """Abstract interface to the platform's block devices and mounts.

    Every primitive that touches the system lives here so the classifier and
    the planner stay pure decision logic. Failing primitives raise
    ``CollaboratorIOError`` (or a subclass), never return a fake size.
    """

    def __init__(self, mock: bool = False):
        """Initialize backend.

        Args:
            mock: If True, simulate operations without touching the system
        """
        self.mock = mock

    # -----------------------------
    #  Enumeration
    # -----------------------------
    @abstractmethod
    def list_devices(self) -> List[str]:
        """Return names of all block devices that may carry a live system."""
        pass

    @abstractmethod
    def describe_device(self, device: str) -> DeviceDescriptor:
        """Return the properties of a block device.

        Raises:
            CollaboratorIOError: If the device can not be queried
        """
        pass

    @abstractmethod
    def list_partitions(self, device: str) -> List[PartitionDescriptor]:
        """Return the partitions of a device ordered by partition number.

        Raises:
            CollaboratorIOError: If the partition table can not be read
        """
        pass

    @abstractmethod
    def find_device_for_mount_point(self, mount_point: str) -> Optional[str]:
        """Return the block device (e.g. ``sdb1`` or ``sdb``) mounted at a path."""
        pass

    # -----------------------------
    #  Mounting
    # -----------------------------
    @abstractmethod
    def mount_paths(self, partition: Partition) -> List[str]:
        """Return the current mount paths of a partition (empty if unmounted)."""
        pass

    @abstractmethod
    def mount(self, partition: Partition) -> MountInfo:
        """Make sure a partition is mounted.

        Returns:
            MountInfo with the mount path and whether it was already mounted

        Raises:
            MountError: If mounting failed or timed out
        """
        pass

    @abstractmethod
    def unmount(self, partition: Partition) -> bool:
        """Unmount a partition.

        Returns:
            True if the partition is no longer mounted

        Raises:
            UnmountError: If the partition stays busy
        """
        pass

    @abstractmethod
    def mount_squashfs_layers(self, system_mount_path: str) -> List[str]:
        """Loop-mount every live/*.squashfs image read-only.

        Returns:
            Mount points of the read-only layers, lowest layer last
        """
        pass

    @abstractmethod
    def mount_overlay(self, read_write_path: str, read_only_layer_paths: Sequence[str]) -> str:
        """Mount a read-only union of a data directory and system layers.

        Returns:
            Path of the merged view
        """
        pass

    @abstractmethod
    def release_overlay(self, merged_path: Optional[str], read_only_layer_paths: Sequence[str]) -> None:
        """Unmount the merged view and layers and delete their temporary directories."""
        pass

    # -----------------------------
    #  Inspection
    # -----------------------------
    @abstractmethod
    def has_squashfs_system_layout(self, mount_path: str) -> bool:
        """True if ``mount_path/live`` contains at least one ``*.squashfs`` file."""
        pass

    @abstractmethod
    def measure_directory_size(self, path: str) -> int:
        """Recursive size of a directory in bytes (0 if it does not exist).

        Raises:
            CollaboratorIOError: If the walk failed or timed out
        """
        pass

    @abstractmethod
    def filesystem_used_space(self, mount_path: str) -> int:
        """Used space (total - free) of the filesystem mounted at a path.

        Raises:
            CollaboratorIOError: If the filesystem can not be queried
        """
        pass
