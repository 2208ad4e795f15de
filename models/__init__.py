"""Models package - data structures and settings."""
from .dwi_volume import DWIVolume
from .app_settings import AppSettings, get_settings

__all__ = [
    'DWIVolume',
    'AppSettings',
    'get_settings',
]
