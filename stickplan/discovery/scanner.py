"""Storage device scanner."""
from typing import List, Optional

from stickplan.core.errors import CollaboratorIOError
from stickplan.core.logger import get_logger
from stickplan.models.device import StorageDevice
from stickplan.models.partition import split_device_and_number
from stickplan.services.backends.base import StorageBackend

logger = get_logger(__name__)


class StorageScanner:
    """Build StorageDevice objects from what the backend reports.

    Every scan returns new objects: memoized probes of an earlier scan are
    never reused.
    """

    def __init__(self, backend: StorageBackend):
        self.backend = backend

    def scan_device(self, device: str) -> StorageDevice:
        """Scan one device (``sdb`` or ``/dev/sdb``).

        Raises:
            CollaboratorIOError: If the device or its partition table can not be read
        """
        device = device[len("/dev/"):] if device.startswith("/dev/") else device
        descriptor = self.backend.describe_device(device)
        partitions = self.backend.list_partitions(device)
        storage_device = StorageDevice.from_descriptors(descriptor, partitions, self.backend)
        logger.debug(f"scanned {storage_device!r}")
        return storage_device

    def scan_all(self) -> List[StorageDevice]:
        """Scan all devices, skipping the ones that can not be read."""
        devices = []
        for name in self.backend.list_devices():
            try:
                devices.append(self.scan_device(name))
            except CollaboratorIOError as e:
                logger.warning(f"Skipping {name}: {e}")
        return sorted(devices)

    def find_boot_device(self, mount_point: str) -> Optional[str]:
        """Name of the device (not partition) the live system was booted from.

        Returns None when nothing is mounted at ``mount_point``.
        """
        source = self.backend.find_device_for_mount_point(mount_point)
        if source is None:
            logger.info(f"nothing mounted at {mount_point}")
            return None
        try:
            device, _ = split_device_and_number(source)
        except ValueError:
            # isohybrid images are mounted from the whole device
            device = source
        logger.info(f"boot device: {device}")
        return device
