"""Upgrade planning for classified storage devices.

Two independent decisions:

- ``plan_system_upgrade``: can the system partition be replaced in place,
  after shrinking its predecessor, or only by backup/reinstall?
- ``plan_efi_upgrade``: does the EFI partition need to grow, and how?
"""
from typing import Optional

from stickplan.core.classifier import PartitionClassifier
from stickplan.core.config import StickplanConfig, get_config
from stickplan.core.errors import CollaboratorIOError
from stickplan.core.logger import get_logger
from stickplan.core.size_probe import OverlaySizeProbe, SizeProbe
from stickplan.models.device import StorageDevice
from stickplan.models.partition import Partition
from stickplan.models.plan import (
    EfiUpgradePlan,
    ImpossibleReason,
    SystemPlanResult,
    SystemUpgradePlan,
)
from stickplan.models.units import format_bytes

logger = get_logger(__name__)


class UpgradePlanner:
    """Decides how a device can be upgraded.

    Devices are classified on first use. Sizes come from the SizeProbe;
    a failing measurement turns into an IMPOSSIBLE plan, never into 0 bytes.
    """

    def __init__(
        self,
        size_probe: SizeProbe,
        config: Optional[StickplanConfig] = None,
        classifier: Optional[PartitionClassifier] = None,
    ):
        self.size_probe = size_probe
        self.config = config or get_config()
        self.classifier = classifier or PartitionClassifier()

    # -----------------------------
    #  System partition
    # -----------------------------
    def plan_system_upgrade(self, device: StorageDevice, enlarged_system_size: int) -> SystemPlanResult:
        """Plan the upgrade of the system partition.

        Args:
            device: Device to upgrade
            enlarged_system_size: Bytes the new system needs, safety margin included

        Returns:
            SystemPlanResult; IMPOSSIBLE results carry a reason
        """
        self.classifier.classify(device)
        try:
            result = self._plan_system_upgrade(device, enlarged_system_size)
        except CollaboratorIOError as e:
            logger.warning(f"Measuring {device.device} failed: {e}")
            result = SystemPlanResult.impossible(ImpossibleReason.MEASUREMENT_FAILED, error=e)

        if result.is_possible:
            logger.info(f"system upgrade plan for {device.device}: {result.plan.value}")
        else:
            logger.info(f"system upgrade of {device.device} impossible: {result.message}")
        return result

    def _plan_system_upgrade(self, device: StorageDevice, enlarged_system_size: int) -> SystemPlanResult:
        system = device.system_partition
        if system is None:
            return SystemPlanResult.impossible(ImpossibleReason.NO_SYSTEM_PARTITION)

        data = device.data_partition
        if data is None:
            return SystemPlanResult.impossible(ImpossibleReason.NO_DATA_PARTITION)

        old_data_size = self.size_probe.home_and_cups_size(device)
        old_data_size_enlarged = int(old_data_size * self.config.data_size_factor)
        logger.info(
            f"old data size: {format_bytes(old_data_size)}, "
            f"enlarged: {format_bytes(old_data_size_enlarged)}, "
            f"data partition: {format_bytes(data.size)}"
        )
        if old_data_size_enlarged > data.size:
            return SystemPlanResult.impossible(
                ImpossibleReason.DATA_PARTITION_TOO_SMALL, required_bytes=old_data_size_enlarged
            )

        if not self._has_upgradable_schema(device):
            return self.destructive_plan(device)

        return self._plan_in_place(device, system, old_data_size, enlarged_system_size)

    def _has_upgradable_schema(self, device: StorageDevice) -> bool:
        efi = device.efi_partition
        if efi is None:
            logger.info(f"{device.device} has no EFI partition")
            return False
        if efi.number == 1:
            return True
        exchange = device.exchange_partition
        if efi.number == 2 and exchange is not None and exchange.number == 1:
            # legacy removable layout: exchange first, EFI second
            return True
        logger.info(f"unsupported EFI partition position on {device.device}: {efi.number}")
        return False

    def destructive_plan(self, device: StorageDevice) -> SystemPlanResult:
        """BACKUP if there is any user data or exchange partition to keep, INSTALLATION otherwise."""
        if device.data_partition is None and device.exchange_partition is None:
            return SystemPlanResult(SystemUpgradePlan.INSTALLATION)
        return SystemPlanResult(SystemUpgradePlan.BACKUP)

    def _plan_in_place(
        self,
        device: StorageDevice,
        system: Partition,
        old_data_size: int,
        enlarged_system_size: int,
    ) -> SystemPlanResult:
        for partition in device.partitions:
            if partition is not system:
                continue

            remaining = partition.size - enlarged_system_size
            logger.info(f"remaining space on system partition: {remaining}")
            if remaining >= 0:
                return SystemPlanResult(SystemUpgradePlan.REGULAR)

            previous = device.previous_partition(partition)
            if previous is not None and self._can_shrink(device, previous, old_data_size, -remaining):
                return SystemPlanResult(SystemUpgradePlan.REPARTITION)
            return SystemPlanResult.impossible(ImpossibleReason.SYSTEM_PARTITION_TOO_SMALL)

        # the system role always points into the partition list
        return SystemPlanResult.impossible(ImpossibleReason.UNSUPPORTED_SCHEMA)

    def _can_shrink(self, device: StorageDevice, previous: Partition, old_data_size: int, missing: int) -> bool:
        if previous.is_extended():
            logger.info(f"previous partition {previous.name} is an extended partition")
            return False
        if not previous.has_ext_filesystem():
            logger.info(f"previous partition {previous.name} has no ext filesystem ({previous.fs_type})")
            return False

        if previous is device.data_partition:
            used = old_data_size
        else:
            used = self.size_probe.used_space(previous)
        usable = previous.size - used
        logger.info(f"usable space on {previous.name}: {usable}, missing: {missing}")
        return usable > missing

    # -----------------------------
    #  EFI partition
    # -----------------------------
    def plan_efi_upgrade(self, device: StorageDevice, needed_efi_size: int) -> EfiUpgradePlan:
        """Plan the upgrade of the EFI partition.

        Args:
            device: Device to upgrade
            needed_efi_size: Bytes the new EFI partition needs

        Returns:
            EfiUpgradePlan
        """
        self.classifier.classify(device)
        plan = self._plan_efi_upgrade(device, needed_efi_size)
        logger.info(f"EFI upgrade plan for {device.device}: {plan.value}")
        return plan

    def _plan_efi_upgrade(self, device: StorageDevice, needed_efi_size: int) -> EfiUpgradePlan:
        efi = device.efi_partition
        if efi is None:
            return EfiUpgradePlan.REGULAR

        missing = needed_efi_size - efi.size
        logger.info(f"missing EFI space: {missing}")
        if missing <= self.config.efi_size_tolerance:
            return EfiUpgradePlan.REGULAR

        following = device.next_partition(efi)
        if following is not None and following.has_ext_filesystem():
            return EfiUpgradePlan.ENLARGE_REPARTITION
        return EfiUpgradePlan.ENLARGE_BACKUP


def plan_system_upgrade(
    device: StorageDevice,
    enlarged_system_size: int,
    size_probe: Optional[SizeProbe] = None,
    config: Optional[StickplanConfig] = None,
) -> SystemPlanResult:
    """Plan a system upgrade, measuring through the device's own backend by default."""
    if size_probe is None:
        if not device.partitions:
            return UpgradePlanner(_NullSizeProbe(), config).plan_system_upgrade(device, enlarged_system_size)
        size_probe = OverlaySizeProbe(device.partitions[0].backend, config)
    return UpgradePlanner(size_probe, config).plan_system_upgrade(device, enlarged_system_size)


def plan_efi_upgrade(
    device: StorageDevice,
    needed_efi_size: int,
    config: Optional[StickplanConfig] = None,
) -> EfiUpgradePlan:
    """Plan an EFI upgrade. Needs no measurements."""
    return UpgradePlanner(_NullSizeProbe(), config).plan_efi_upgrade(device, needed_efi_size)


class _NullSizeProbe(SizeProbe):
    """Probe for code paths that never measure."""

    def home_and_cups_size(self, device: StorageDevice) -> int:
        raise CollaboratorIOError(f"{device.device}: nothing to measure")

    def used_space(self, partition: Partition) -> int:
        raise CollaboratorIOError(f"{partition.name}: nothing to measure")
