"""Data models for stickplan."""
from stickplan.models.device import DeviceDescriptor, DeviceType, StorageDevice
from stickplan.models.partition import (
    MountInfo,
    Partition,
    PartitionDescriptor,
    Role,
    UNKNOWN_USED_SPACE,
)
from stickplan.models.plan import (
    EfiUpgradePlan,
    ImpossibleReason,
    SystemPlanResult,
    SystemUpgradePlan,
)
from stickplan.models.units import format_bytes

__all__ = [
    'DeviceDescriptor',
    'DeviceType',
    'StorageDevice',
    'MountInfo',
    'Partition',
    'PartitionDescriptor',
    'Role',
    'UNKNOWN_USED_SPACE',
    'EfiUpgradePlan',
    'ImpossibleReason',
    'SystemPlanResult',
    'SystemUpgradePlan',
    'format_bytes',
]
