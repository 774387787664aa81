"""YAML settings file loader.

A ``stickplan.yml`` file may override any runtime setting::

    planner:
      data_size_factor: 1.2
      efi_size_tolerance: 4194304
    timeouts:
      mount: 60
      measure: 900

Values from the file replace the defaults; ``STICKPLAN_*`` environment
variables replace values from the file.
"""
import os
from pathlib import Path
from typing import Any, Dict, Optional

import yaml
from pydantic import BaseModel, ConfigDict, Field, ValidationError

from stickplan.core.config import StickplanConfig
from stickplan.core.errors import ConfigValidationError
from stickplan.core.logger import get_logger

logger = get_logger(__name__)

# Default config search paths (ordered by proximity to current run)
CONFIG_PATHS = [
    "./stickplan.yml",
    str(Path.home() / ".config" / "stickplan" / "stickplan.yml"),
    "/etc/stickplan/stickplan.yml",
]


class PlannerSettings(BaseModel):
    """Sizing factors and tolerances of the upgrade planner."""

    model_config = ConfigDict(extra='forbid')

    data_size_factor: Optional[float] = Field(None, ge=1.0, description="Overhead on measured home+cups size")
    system_size_factor: Optional[float] = Field(None, ge=1.0, description="Overhead on measured live system size")
    efi_size_tolerance: Optional[int] = Field(None, ge=0, description="Bytes an EFI partition may lack")


class TimeoutSettings(BaseModel):
    """Collaborator timeouts and unmount retries."""

    model_config = ConfigDict(extra='forbid')

    mount: Optional[int] = Field(None, gt=0, description="Seconds per mount/unmount command")
    measure: Optional[int] = Field(None, gt=0, description="Seconds per directory size walk")
    unmount_attempts: Optional[int] = Field(None, ge=1)
    unmount_delay: Optional[float] = Field(None, ge=0)


class SettingsFile(BaseModel):
    """Top level of stickplan.yml."""

    model_config = ConfigDict(extra='forbid')

    planner: PlannerSettings = Field(default_factory=PlannerSettings)
    timeouts: TimeoutSettings = Field(default_factory=TimeoutSettings)
    live_medium_path: Optional[str] = None

    def overrides(self) -> Dict[str, Any]:
        """Settings set in the file, keyed by StickplanConfig field name."""
        values = {
            "data_size_factor": self.planner.data_size_factor,
            "system_size_factor": self.planner.system_size_factor,
            "efi_size_tolerance": self.planner.efi_size_tolerance,
            "mount_timeout": self.timeouts.mount,
            "measure_timeout": self.timeouts.measure,
            "unmount_attempts": self.timeouts.unmount_attempts,
            "unmount_delay": self.timeouts.unmount_delay,
            "live_medium_path": self.live_medium_path,
        }
        return {key: value for key, value in values.items() if value is not None}


def find_config(config_path: Optional[str] = None) -> Optional[str]:
    """Locate the active settings file, or None when there is none."""
    if config_path:
        return config_path

    if env_config := os.environ.get("STICKPLAN_CONFIG"):
        return env_config

    for path in CONFIG_PATHS:
        if Path(path).exists():
            return path

    return None


class ConfigLoader:
    """Loads stickplan.yml into a StickplanConfig."""

    def __init__(self, config_path: Optional[str] = None):
        self.config_path = Path(config_path) if config_path else None
        self.settings: Optional[SettingsFile] = None

    def load_settings(self) -> SettingsFile:
        """Parse and validate the settings file.

        Raises:
            FileNotFoundError: If the file does not exist
            ConfigValidationError: If the file is not valid YAML or has invalid values
        """
        if self.config_path is None:
            self.settings = SettingsFile()
            return self.settings

        if not self.config_path.exists():
            raise FileNotFoundError(f"Config file not found: {self.config_path}")

        try:
            with open(self.config_path) as f:
                raw = yaml.safe_load(f)
        except yaml.YAMLError as e:
            raise ConfigValidationError(f"{self.config_path} is not valid YAML: {e}") from e

        # An empty file means "all defaults"
        if raw is None:
            raw = {}
        if not isinstance(raw, dict):
            raise ConfigValidationError(f"{self.config_path} must contain a mapping")

        try:
            self.settings = SettingsFile.model_validate(raw)
        except ValidationError as e:
            raise ConfigValidationError(f"Invalid settings in {self.config_path}:\n{e}") from e

        logger.debug(f"loaded settings from {self.config_path}")
        return self.settings

    def load(self) -> StickplanConfig:
        """Defaults, then the settings file, then the environment."""
        settings = self.load_settings()
        from_file = StickplanConfig(**settings.overrides())
        return StickplanConfig.from_env(base=from_file)


def load_config(config_path: Optional[str] = None) -> StickplanConfig:
    """Load the effective configuration from the located settings file."""
    return ConfigLoader(find_config(config_path)).load()
