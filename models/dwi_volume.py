"""
Multi-channel Volume Data Model

Container for 4D volumes (x × y × z × channel), e.g. a stack of co-registered
diffusion-weighted images. Provides positional channel-vector access, bounds
queries and a transient spatial cursor used while scanning local windows.
"""
import copy
import numpy as np
from typing import Optional, Dict, Any, Tuple, Sequence
from dataclasses import dataclass, field


Position = Tuple[int, int, int]


@dataclass
class DWIVolume:
    """
    Container for a 4D multi-channel volume.

    Attributes:
        data: 4D array (nx, ny, nz, n_channels). A 3D array is promoted to a
              single channel.
        voxel_size: Spatial voxel dimensions (dx, dy, dz), informational only
        metadata: Additional metadata (source path, processing history, etc.)
    """
    data: np.ndarray
    voxel_size: Tuple[float, float, float] = (1.0, 1.0, 1.0)
    metadata: Dict[str, Any] = field(default_factory=dict)
    _index: Position = field(default=(0, 0, 0), init=False, repr=False, compare=False)

    def __post_init__(self):
        """Validate data integrity."""
        data = np.asarray(self.data)
        if data.ndim == 3:
            data = data[..., np.newaxis]
        if data.ndim != 4:
            raise ValueError(f"Data must be 3D or 4D array, got shape {data.shape}")

        if data.shape[3] < 1:
            raise ValueError(f"Volume must have at least one channel, got shape {data.shape}")

        if len(self.voxel_size) != 3 or any(v <= 0 for v in self.voxel_size):
            raise ValueError(f"Voxel size must be three positive values, got {self.voxel_size}")

        # Ensure data is float32 for processing
        if data.dtype != np.float32:
            data = data.astype(np.float32)
        self.data = data
        self.voxel_size = tuple(float(v) for v in self.voxel_size)

    @property
    def shape(self) -> Tuple[int, int, int, int]:
        """Full shape (nx, ny, nz, n_channels)."""
        return self.data.shape

    @property
    def spatial_shape(self) -> Position:
        """Spatial shape (nx, ny, nz)."""
        return self.data.shape[:3]

    @property
    def n_channels(self) -> int:
        """Number of channels (4th axis)."""
        return self.data.shape[3]

    @property
    def n_voxels(self) -> int:
        """Number of spatial positions."""
        nx, ny, nz = self.spatial_shape
        return nx * ny * nz

    # =========================================================================
    # Cursor and Positional Access
    # =========================================================================

    @property
    def index(self) -> Position:
        """Current spatial cursor position."""
        return self._index

    def set_index(self, pos: Sequence[int]) -> None:
        """Move the spatial cursor. The cursor may point outside the volume."""
        self._index = (int(pos[0]), int(pos[1]), int(pos[2]))

    def in_bounds(self, pos: Optional[Sequence[int]] = None) -> bool:
        """Check whether *pos* (default: the cursor) lies inside the volume."""
        if pos is None:
            pos = self._index
        return all(0 <= int(p) < n for p, n in zip(pos, self.spatial_shape))

    def is_out_of_bounds(self) -> bool:
        """Check whether the cursor currently lies outside the volume."""
        return not self.in_bounds()

    def read(self, pos: Optional[Sequence[int]] = None) -> np.ndarray:
        """
        Read the channel vector at *pos* (default: the cursor).

        Returns:
            1D array of length n_channels (a view into the volume)
        """
        if pos is None:
            pos = self._index
        if not self.in_bounds(pos):
            raise IndexError(f"Position {tuple(pos)} out of range {self.spatial_shape}")
        x, y, z = pos
        return self.data[x, y, z, :]

    def read_block(self, start: Sequence[int], stop: Sequence[int]) -> np.ndarray:
        """
        Read a rectangular block of channel vectors.

        Args:
            start: Inclusive lower corner (x, y, z)
            stop: Exclusive upper corner (x, y, z)

        Returns:
            4D array (sx, sy, sz, n_channels) (a view into the volume)
        """
        for lo, hi, n in zip(start, stop, self.spatial_shape):
            if not 0 <= lo < hi <= n:
                raise IndexError(
                    f"Block {tuple(start)}:{tuple(stop)} out of range {self.spatial_shape}"
                )
        return self.data[start[0]:stop[0], start[1]:stop[1], start[2]:stop[2], :]

    def write(self, pos: Sequence[int], values) -> None:
        """Write a channel vector (or a scalar broadcast over channels) at *pos*."""
        if not self.in_bounds(pos):
            raise IndexError(f"Position {tuple(pos)} out of range {self.spatial_shape}")
        x, y, z = pos
        self.data[x, y, z, :] = values

    # =========================================================================
    # Construction Helpers
    # =========================================================================

    def create_like(self, n_channels: Optional[int] = None) -> 'DWIVolume':
        """
        Create a zero-filled volume with the same spatial shape.

        Args:
            n_channels: Channel count of the new volume (default: same as this one)
        """
        if n_channels is None:
            n_channels = self.n_channels
        if n_channels < 1:
            raise ValueError(f"n_channels must be >= 1, got {n_channels}")
        data = np.zeros(self.spatial_shape + (n_channels,), dtype=np.float32)
        return DWIVolume(data=data, voxel_size=self.voxel_size, metadata=self.metadata.copy())

    def view(self) -> 'DWIVolume':
        """Return a volume sharing this data but owning an independent cursor."""
        return copy.copy(self)

    def to_array(self, squeeze: bool = True) -> np.ndarray:
        """Return the data, dropping the channel axis for single-channel volumes."""
        if squeeze and self.n_channels == 1:
            return self.data[..., 0]
        return self.data

    def memory_bytes(self) -> int:
        """Return memory size in bytes."""
        return self.data.nbytes

    def memory_mb(self) -> float:
        """Return memory size in megabytes."""
        return self.data.nbytes / (1024 * 1024)

    def copy(self) -> 'DWIVolume':
        """Create a deep copy of this volume."""
        return DWIVolume(
            data=self.data.copy(),
            voxel_size=self.voxel_size,
            metadata=self.metadata.copy()
        )

    def __repr__(self) -> str:
        return (
            f"DWIVolume(shape={self.shape}, "
            f"voxel_size={self.voxel_size}, "
            f"size={self.memory_mb():.1f}MB)"
        )
