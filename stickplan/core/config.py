"""stickplan runtime configuration and settings."""
import os
from dataclasses import dataclass, fields
from typing import Any, Dict, Optional

from stickplan.core.errors import ConfigValidationError

# parted "optimal" alignment may create an EFI partition slightly smaller
# than requested, so EFI size checks tolerate this much slack.
DEFAULT_EFI_SIZE_TOLERANCE = 2 * 1024 * 1024


@dataclass
class StickplanConfig:
    """Runtime configuration for classification and planning.

    Attributes:
        data_size_factor: Overhead factor applied to the measured home+cups
            size before comparing it with the data partition (default: 1.1)
        system_size_factor: Safety factor applied to the measured live system
            size to get the enlarged system size (default: 1.1)
        efi_size_tolerance: Bytes an EFI partition may be smaller than needed
            and still be upgraded in place (default: 2 MiB)
        mount_timeout: Timeout in seconds for mount/unmount commands (default: 30)
        measure_timeout: Timeout in seconds for directory size walks (default: 600)
        unmount_attempts: Attempts before giving up on a busy unmount (default: 5)
        unmount_delay: Initial delay in seconds between unmount attempts (default: 1.0)
        live_medium_path: Mount point of the running live system medium
    """

    data_size_factor: float = 1.1
    system_size_factor: float = 1.1
    efi_size_tolerance: int = DEFAULT_EFI_SIZE_TOLERANCE

    # Collaborator timeouts
    mount_timeout: int = 30
    measure_timeout: int = 600
    unmount_attempts: int = 5
    unmount_delay: float = 1.0

    live_medium_path: str = "/lib/live/mount/medium"

    def __post_init__(self):
        problems = []
        for name in ("data_size_factor", "system_size_factor"):
            if getattr(self, name) < 1.0:
                problems.append(f"{name} must be at least 1.0")
        if self.efi_size_tolerance < 0:
            problems.append("efi_size_tolerance must not be negative")
        for name in ("mount_timeout", "measure_timeout"):
            if getattr(self, name) <= 0:
                problems.append(f"{name} must be positive")
        if self.unmount_attempts < 1:
            problems.append("unmount_attempts must be at least 1")
        if self.unmount_delay < 0:
            problems.append("unmount_delay must not be negative")
        if problems:
            raise ConfigValidationError("Invalid settings: " + "; ".join(problems))

    @classmethod
    def from_env(cls, base: Optional["StickplanConfig"] = None) -> "StickplanConfig":
        """Create config from environment variables.

        Every field can be overridden with ``STICKPLAN_<FIELD_NAME>``, e.g.
        ``STICKPLAN_DATA_SIZE_FACTOR=1.2`` or ``STICKPLAN_MOUNT_TIMEOUT=60``.

        Args:
            base: Values used when a variable is not set (defaults otherwise)

        Returns:
            StickplanConfig instance with values from environment or defaults

        Raises:
            ConfigValidationError: If a variable is not a valid value
        """
        base = base or cls()
        values: Dict[str, Any] = {}
        for f in fields(cls):
            variable = f"STICKPLAN_{f.name.upper()}"
            raw = os.getenv(variable)
            if raw is None:
                values[f.name] = getattr(base, f.name)
                continue
            try:
                values[f.name] = f.type(raw)
            except ValueError:
                raise ConfigValidationError(f"{variable}={raw!r} is not a valid {f.type.__name__}") from None
        return cls(**values)

    def as_dict(self) -> Dict[str, Any]:
        """Return settings as a plain dict (for display)."""
        return {f.name: getattr(self, f.name) for f in fields(self)}


# Global config instance (can be overridden)
_config: Optional[StickplanConfig] = None


def get_config() -> StickplanConfig:
    """Get the global stickplan configuration.

    Returns:
        StickplanConfig instance (creates from environment if not set)
    """
    global _config
    if _config is None:
        _config = StickplanConfig.from_env()
    return _config


def set_config(config: Optional[StickplanConfig]):
    """Set the global stickplan configuration.

    Args:
        config: StickplanConfig instance to use globally (None resets it)
    """
    global _config
    _config = config
