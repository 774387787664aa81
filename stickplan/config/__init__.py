"""Settings file handling."""
from stickplan.config.loader import ConfigLoader, SettingsFile, find_config, load_config

__all__ = ['ConfigLoader', 'SettingsFile', 'find_config', 'load_config']
