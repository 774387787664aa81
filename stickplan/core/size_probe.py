"""Size measurements the upgrade planner depends on.

The planner only sees the ``SizeProbe`` contract. ``OverlaySizeProbe``
measures the user data the way a running live system sees it: the data
partition merged over the read-only system images.
"""
from abc import ABC, abstractmethod
from pathlib import Path
from typing import List, Optional

from stickplan.core.config import StickplanConfig, get_config
from stickplan.core.errors import CollaboratorIOError
from stickplan.core.logger import get_logger
from stickplan.models.device import StorageDevice
from stickplan.models.partition import MountInfo, Partition
from stickplan.services.backends.base import StorageBackend

logger = get_logger(__name__)

# Directories carried over to the new data partition
PRESERVED_DIRECTORIES = ("home", "etc/cups")


class SizeProbe(ABC):
    """Provides the used-space figures of a classified device.

    Implementations raise ``CollaboratorIOError`` when a figure can not be
    measured. They never return 0 in place of an unknown size.
    """

    @abstractmethod
    def home_and_cups_size(self, device: StorageDevice) -> int:
        """Size of home + etc/cups as seen through the merged system view."""
        pass

    @abstractmethod
    def used_space(self, partition: Partition) -> int:
        """Filesystem used space (total - free) of a partition."""
        pass


class OverlaySizeProbe(SizeProbe):
    """SizeProbe backed by a StorageBackend.

    Mounts the system partition, its squashfs layers and the data partition,
    merges them read-only and measures the preserved directories. Everything
    mounted here is released again, even when measuring fails.
    """

    def __init__(self, backend: StorageBackend, config: Optional[StickplanConfig] = None):
        self.backend = backend
        self.config = config or get_config()

    def home_and_cups_size(self, device: StorageDevice) -> int:
        system = device.system_partition
        data = device.data_partition
        if system is None or data is None:
            raise ValueError(f"{device.device} needs a system and a data partition to measure user data")

        system_mount = self.backend.mount(system)
        try:
            layers: List[str] = self.backend.mount_squashfs_layers(system_mount.mount_path)
            try:
                data_mount = self.backend.mount(data)
                try:
                    return self._measure_merged(data_mount, layers)
                finally:
                    self._unmount_if_mounted_here(data, data_mount)
            finally:
                self._release(None, layers)
        finally:
            self._unmount_if_mounted_here(system, system_mount)

    def used_space(self, partition: Partition) -> int:
        return partition.get_used_space()

    def _measure_merged(self, data_mount: MountInfo, layers: List[str]) -> int:
        read_write = data_mount.mount_path
        # live-boot with overlayfs keeps the upper layer in rw/ next to work/
        rw_dir = Path(read_write, "rw")
        if rw_dir.is_dir() and Path(read_write, "work").is_dir():
            read_write = str(rw_dir)

        merged = self.backend.mount_overlay(read_write, layers)
        try:
            total = 0
            for directory in PRESERVED_DIRECTORIES:
                size = self.backend.measure_directory_size(str(Path(merged, directory)))
                logger.debug(f"{directory}: {size} bytes")
                total += size
        finally:
            self._release(merged, [])

        logger.info(f"size of home and cups: {total}")
        return total

    def _release(self, merged: Optional[str], layers: List[str]) -> None:
        try:
            self.backend.release_overlay(merged, layers)
        except CollaboratorIOError as e:
            logger.warning(f"Could not release temporary mounts: {e}")

    def _unmount_if_mounted_here(self, partition: Partition, mount_info: MountInfo) -> None:
        if mount_info.already_mounted:
            return
        try:
            self.backend.unmount(partition)
        except CollaboratorIOError as e:
            # the measurement itself is already complete here
            logger.warning(f"Could not unmount /dev/{partition.name}: {e}")
