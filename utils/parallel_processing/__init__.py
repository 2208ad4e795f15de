"""
Parallel volume scanning on a worker thread pool.

The spatial domain of a volume is split into contiguous voxel segments that
worker threads denoise independently:

    from utils.parallel_processing import VolumeScanConfig, VolumeScanCoordinator

    coordinator = VolumeScanCoordinator(VolumeScanConfig(window_size=5))
    result = coordinator.run(dwi, denoised, noise)
"""

from .config import (
    VolumeScanConfig,
    VoxelSegment,
    ScanTask,
    ScanWorkerResult,
    ScanProgress,
    ScanResult,
)
from .partitioner import VoxelPartitioner, spatial_position
from .worker import process_voxel_range
from .coordinator import VolumeScanCoordinator, check_scan_memory_budget

__all__ = [
    # Configuration
    'VolumeScanConfig',
    'VoxelSegment',
    'ScanTask',
    'ScanWorkerResult',
    'ScanProgress',
    'ScanResult',
    # Partitioner
    'VoxelPartitioner',
    'spatial_position',
    # Worker
    'process_voxel_range',
    # Coordinator
    'VolumeScanCoordinator',
    'check_scan_memory_budget',
]
