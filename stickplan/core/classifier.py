"""Partition role classification.

Each partition of a device gets at most one role. Rules are evaluated in a
fixed order, cheapest first, and the first matching rule wins. A role is
given to the first (lowest-numbered) partition matching it; a later partition
whose earlier rule's role is already taken falls through to the next rules.

The system check mounts the partition, so it must stay last: it only runs on
partitions none of the label/type rules claimed.
"""
from dataclasses import dataclass
from enum import IntEnum
from typing import Callable, Dict, Optional, Tuple

from stickplan.core.errors import CollaboratorIOError
from stickplan.core.logger import get_logger
from stickplan.models.device import StorageDevice
from stickplan.models.partition import Partition, Role

logger = get_logger(__name__)


class ProbeCost(IntEnum):
    """Relative cost of evaluating a rule."""
    LABEL = 1     # compares descriptor fields
    MOUNT = 100   # mount/inspect/unmount round trip


@dataclass(frozen=True)
class ClassificationRule:
    """A role, the predicate deciding it, and what the predicate costs."""
    role: Role
    predicate: Callable[[Partition], bool]
    cost: ProbeCost
    description: str


CLASSIFICATION_RULES: Tuple[ClassificationRule, ...] = (
    ClassificationRule(
        Role.DATA, Partition.is_persistence, ProbeCost.LABEL,
        "label 'persistence' (legacy 'live-rw')",
    ),
    # EFI before exchange: a FAT partition labeled EFI would match both
    ClassificationRule(
        Role.EFI, Partition.is_efi, ProbeCost.LABEL,
        "label 'EFI' (legacy 'boot')",
    ),
    ClassificationRule(
        Role.EXCHANGE, Partition.is_exchange, ProbeCost.LABEL,
        "partition 1 or 2 with exFAT/NTFS (0x07) or FAT32 (0x0c/0x0e)",
    ),
    ClassificationRule(
        Role.SYSTEM, Partition.is_system, ProbeCost.MOUNT,
        "live/ directory with *.squashfs images",
    ),
)

assert [r.cost for r in CLASSIFICATION_RULES] == sorted(r.cost for r in CLASSIFICATION_RULES), \
    "classification rules must be ordered by cost"


@dataclass(frozen=True)
class Classification:
    """Role references of a classified device (any may be None)."""
    data: Optional[Partition] = None
    efi: Optional[Partition] = None
    exchange: Optional[Partition] = None
    system: Optional[Partition] = None

    @classmethod
    def of(cls, device: StorageDevice) -> "Classification":
        return cls(
            data=device.data_partition,
            efi=device.efi_partition,
            exchange=device.exchange_partition,
            system=device.system_partition,
        )

    def as_dict(self) -> Dict[str, Optional[str]]:
        return {
            "data": self.data.name if self.data else None,
            "efi": self.efi.name if self.efi else None,
            "exchange": self.exchange.name if self.exchange else None,
            "system": self.system.name if self.system else None,
        }


class PartitionClassifier:
    """Assigns roles to the partitions of a storage device."""

    def __init__(self, rules: Tuple[ClassificationRule, ...] = CLASSIFICATION_RULES):
        self.rules = rules

    def classify(self, device: StorageDevice) -> Classification:
        """Classify all partitions of ``device`` (once).

        Role references are recorded on the device. Calling this again on
        the same device returns the recorded result without probing. Threads
        classifying the same device concurrently wait for the first one.
        """
        with device.classification_lock:
            if not device.classified:
                self._assign_roles(device)
                device.classified = True
        return Classification.of(device)

    def _assign_roles(self, device: StorageDevice) -> None:
        for partition in device.partitions:
            role = self._first_matching_role(device, partition)
            if role is Role.NONE:
                logger.debug(f"{partition.name}: no role")
                continue
            device.assign_role(role, partition)
            logger.info(f"{role.value} partition: {partition}")

    def _first_matching_role(self, device: StorageDevice, partition: Partition) -> Role:
        for rule in self.rules:
            if device.partition_for(rule.role) is not None:
                continue
            try:
                matched = rule.predicate(partition)
            except CollaboratorIOError as e:
                # One unreadable partition must not hide the others
                logger.warning(f"Probing {partition.name} for {rule.role.value} failed: {e}")
                return Role.NONE
            if matched:
                return rule.role
        return Role.NONE


_default_classifier = PartitionClassifier()


def classify(device: StorageDevice) -> Classification:
    """Classify ``device`` with the default rule order."""
    return _default_classifier.classify(device)
