"""
Voxel partitioner for parallel scanning.

Divides the flattened spatial domain of a volume into contiguous segments of
near-equal size. Every voxel costs the same (one local SVD), so balancing by
voxel count balances the workload.
"""

from typing import List, Sequence, Tuple
from .config import VoxelSegment


def spatial_position(flat_index: int, spatial_shape: Sequence[int]) -> Tuple[int, int, int]:
    """Convert a flat index (x varying fastest) to an (x, y, z) position."""
    nx, ny, _ = spatial_shape
    x = flat_index % nx
    y = (flat_index // nx) % ny
    z = flat_index // (nx * ny)
    return x, y, z


class VoxelPartitioner:
    """
    Partitions the spatial positions of a volume into segments.

    Segments cover [0, n_voxels) exactly once, in order, and differ in size by
    at most one voxel.
    """

    def __init__(self, spatial_shape: Sequence[int], n_segments: int):
        """
        Initialize partitioner.

        Args:
            spatial_shape: (nx, ny, nz)
            n_segments: Requested number of segments (clamped to n_voxels)
        """
        if n_segments < 1:
            raise ValueError(f"n_segments must be >= 1, got {n_segments}")
        self.spatial_shape = tuple(int(n) for n in spatial_shape)
        nx, ny, nz = self.spatial_shape
        self.n_voxels = nx * ny * nz
        self.n_segments = min(n_segments, self.n_voxels)

    def partition(self) -> List[VoxelSegment]:
        """
        Split [0, n_voxels) into balanced contiguous segments.

        Returns:
            List of VoxelSegment objects
        """
        if self.n_voxels == 0:
            return []

        base, remainder = divmod(self.n_voxels, self.n_segments)
        segments = []
        start = 0
        for i in range(self.n_segments):
            # First `remainder` segments take one extra voxel
            size = base + (1 if i < remainder else 0)
            segments.append(VoxelSegment(segment_id=i, start=start, stop=start + size))
            start += size

        return segments

    def get_partition_stats(self, segments: List[VoxelSegment]) -> dict:
        """
        Get statistics about the partition.

        Args:
            segments: List of segments from partition()

        Returns:
            Dictionary with partition statistics
        """
        if not segments:
            return {
                'n_segments': 0,
                'total_voxels': 0
            }

        sizes = [s.n_voxels for s in segments]
        return {
            'n_segments': len(segments),
            'total_voxels': sum(sizes),
            'min_voxels_per_segment': min(sizes),
            'max_voxels_per_segment': max(sizes),
            'avg_voxels_per_segment': sum(sizes) / len(segments),
        }
