"""Upgrade plan models."""
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Optional

from stickplan.models.units import format_bytes


class SystemUpgradePlan(Enum):
    """How the system partition of a device can be upgraded."""
    REGULAR = "regular"            # clean data partition, replace system image in place
    REPARTITION = "repartition"    # shrink the previous partition to grow the system partition
    BACKUP = "backup"              # back up user data, reinstall, restore
    INSTALLATION = "installation"  # nothing worth keeping, clean installation
    IMPOSSIBLE = "impossible"


class EfiUpgradePlan(Enum):
    """How the EFI partition of a device can be upgraded."""
    REGULAR = "regular"                          # create new or replace content
    ENLARGE_REPARTITION = "enlarge_repartition"  # shrink the following ext partition
    ENLARGE_BACKUP = "enlarge_backup"            # back up the following partition, then restore


class ImpossibleReason(Enum):
    """Why a system upgrade is impossible."""
    NO_SYSTEM_PARTITION = "no_system_partition"
    NO_DATA_PARTITION = "no_data_partition"
    DATA_PARTITION_TOO_SMALL = "data_partition_too_small"
    SYSTEM_PARTITION_TOO_SMALL = "system_partition_too_small"
    UNSUPPORTED_SCHEMA = "unsupported_schema"
    MEASUREMENT_FAILED = "measurement_failed"


REASON_MESSAGES = {
    ImpossibleReason.NO_SYSTEM_PARTITION: "No system partition found",
    ImpossibleReason.NO_DATA_PARTITION: "No data partition found",
    ImpossibleReason.DATA_PARTITION_TOO_SMALL: "The data partition is too small (required: {required})",
    ImpossibleReason.SYSTEM_PARTITION_TOO_SMALL: "The system partition is too small",
    ImpossibleReason.UNSUPPORTED_SCHEMA: "The partitioning schema is not supported",
    ImpossibleReason.MEASUREMENT_FAILED: "Measuring the storage device failed: {error}",
}


@dataclass(frozen=True)
class SystemPlanResult:
    """Outcome of system upgrade planning.

    ``reason`` is set exactly when the plan is IMPOSSIBLE. ``required_bytes``
    accompanies DATA_PARTITION_TOO_SMALL, ``error`` accompanies
    MEASUREMENT_FAILED.
    """
    plan: SystemUpgradePlan
    reason: Optional[ImpossibleReason] = None
    required_bytes: Optional[int] = None
    error: Optional[Exception] = None

    def __post_init__(self):
        impossible = self.plan is SystemUpgradePlan.IMPOSSIBLE
        if impossible and self.reason is None:
            raise ValueError("An impossible plan needs a reason")
        if not impossible and self.reason is not None:
            raise ValueError(f"Plan {self.plan.value} must not carry a reason")

    @classmethod
    def impossible(
        cls,
        reason: ImpossibleReason,
        required_bytes: Optional[int] = None,
        error: Optional[Exception] = None,
    ) -> "SystemPlanResult":
        return cls(SystemUpgradePlan.IMPOSSIBLE, reason, required_bytes, error)

    @property
    def is_possible(self) -> bool:
        return self.plan is not SystemUpgradePlan.IMPOSSIBLE

    @property
    def is_destructive(self) -> bool:
        """True if the upgrade replaces the whole partition layout."""
        return self.plan in (SystemUpgradePlan.BACKUP, SystemUpgradePlan.INSTALLATION)

    @property
    def message(self) -> Optional[str]:
        """Human-readable reason, None for possible plans."""
        if self.reason is None:
            return None
        required = format_bytes(self.required_bytes) if self.required_bytes is not None else "?"
        return REASON_MESSAGES[self.reason].format(required=required, error=self.error)

    def as_dict(self) -> Dict[str, Any]:
        return {
            "plan": self.plan.value,
            "reason": self.reason.value if self.reason else None,
            "message": self.message,
            "required_bytes": self.required_bytes,
        }
