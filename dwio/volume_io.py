"""
Volume file I/O.

Reads and writes multi-channel volumes as:
- ``.npy``: plain numpy array (nx, ny, nz[, n_channels])
- ``.zarr``: uncompressed Zarr v2 array, voxel size stored in the attributes

Outputs are always written as float32. Single-channel volumes (noise maps)
are written as 3D arrays.
"""

from pathlib import Path
from typing import Union
import logging
import numpy as np
import zarr

from models.dwi_volume import DWIVolume
from utils.errors import ConfigurationError

logger = logging.getLogger(__name__)

SUPPORTED_FORMATS = {
    '.npy': 'npy',
    '.zarr': 'zarr',
}


def volume_format(path: Union[str, Path]) -> str:
    """
    Determine the storage format from the file extension.

    Raises:
        ConfigurationError: For unsupported extensions
    """
    suffix = Path(path).suffix.lower()
    if suffix not in SUPPORTED_FORMATS:
        raise ConfigurationError(
            f"Unsupported volume format '{suffix}' for {path} "
            f"(supported: {', '.join(SUPPORTED_FORMATS)})"
        )
    return SUPPORTED_FORMATS[suffix]


def load_volume(path: Union[str, Path]) -> DWIVolume:
    """
    Load a 3D or 4D volume.

    Args:
        path: .npy file or .zarr store

    Returns:
        DWIVolume (3D data is promoted to one channel)
    """
    path = Path(path)
    fmt = volume_format(path)
    if not path.exists():
        raise FileNotFoundError(f"Volume not found: {path}")

    voxel_size = (1.0, 1.0, 1.0)
    if fmt == 'npy':
        data = np.load(path)
    else:
        z = zarr.open(str(path), mode='r')
        data = z[...]
        voxel_size = tuple(z.attrs.get('voxel_size', voxel_size))

    if data.ndim not in (3, 4):
        raise ConfigurationError(f"Expected a 3D or 4D volume in {path}, got shape {data.shape}")

    logger.debug(f"Loaded {path}: shape={data.shape}, dtype={data.dtype}")
    return DWIVolume(data=data, voxel_size=voxel_size, metadata={'source_path': str(path)})


def save_volume(volume: DWIVolume, path: Union[str, Path]) -> Path:
    """
    Write *volume* as float32.

    Args:
        volume: Volume to write
        path: Destination .npy file or .zarr store (overwritten)

    Returns:
        The destination path
    """
    path = Path(path)
    fmt = volume_format(path)
    data = volume.to_array(squeeze=True).astype(np.float32, copy=False)

    if fmt == 'npy':
        np.save(path, data)
    else:
        # One spatial slice per chunk
        chunks = data.shape[:2] + (1,) + data.shape[3:]
        z = zarr.open(
            str(path),
            mode='w',
            shape=data.shape,
            chunks=chunks,
            dtype=np.float32,
            compressor=None,  # No compression for speed
            zarr_format=2
        )
        z[...] = data
        z.attrs['voxel_size'] = list(volume.voxel_size)

    logger.debug(f"Wrote {path}: shape={data.shape}")
    return path
