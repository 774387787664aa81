"""Size of the running live system."""
from dataclasses import dataclass
from typing import Optional

from stickplan.core.config import StickplanConfig, get_config
from stickplan.core.logger import get_logger
from stickplan.models.units import format_bytes
from stickplan.services.backends.base import StorageBackend

logger = get_logger(__name__)


@dataclass(frozen=True)
class LiveSystemSize:
    """Measured size of the live medium and the size a copy of it needs."""
    system_size: int
    enlarged_system_size: int
    medium_path: str

    def __str__(self) -> str:
        return (
            f"{format_bytes(self.system_size)} "
            f"(enlarged: {format_bytes(self.enlarged_system_size)})"
        )


def measure_live_system(backend: StorageBackend, config: Optional[StickplanConfig] = None) -> LiveSystemSize:
    """Measure the running live system.

    The enlarged size adds ``system_size_factor`` as a safety margin for
    filesystem overhead on the target partition.

    Raises:
        CollaboratorIOError: If the live medium can not be measured
    """
    config = config or get_config()
    system_size = backend.filesystem_used_space(config.live_medium_path)
    enlarged = int(system_size * config.system_size_factor)
    size = LiveSystemSize(system_size, enlarged, config.live_medium_path)
    logger.info(f"live system size: {size}")
    return size
