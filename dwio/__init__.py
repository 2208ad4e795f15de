"""Volume file input/output."""
from .volume_io import load_volume, save_volume, volume_format, SUPPORTED_FORMATS

__all__ = [
    'load_volume',
    'save_volume',
    'volume_format',
    'SUPPORTED_FORMATS',
]
