"""Storage device discovery and live system sizing."""
from stickplan.discovery.live_system import LiveSystemSize, measure_live_system
from stickplan.discovery.scanner import StorageScanner

__all__ = ['StorageScanner', 'LiveSystemSize', 'measure_live_system']
