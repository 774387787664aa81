"""Storage backend implementations.

stickplan talks to the platform through a StorageBackend:
- Linux: lsblk + udisksctl + mount/du (default)
"""
from .base import StorageBackend
from .linux import LinuxStorageBackend

__all__ = ['StorageBackend', 'LinuxStorageBackend']
