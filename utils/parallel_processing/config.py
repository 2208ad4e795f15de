"""
Configuration dataclasses for parallel volume scanning.
"""

from dataclasses import dataclass
from typing import Optional

from models.dwi_volume import DWIVolume


@dataclass
class VolumeScanConfig:
    """Configuration for a parallel MP-PCA scan."""
    window_size: int = 5                # Odd window edge length in voxels
    n_workers: Optional[int] = None     # Resolve via thread count policy if None
    segments_per_worker: int = 4        # Work units per worker, for load balance
    blas_threads: int = 1               # BLAS threads inside each worker
    report_progress: bool = True        # Print progress through the console channel


@dataclass
class VoxelSegment:
    """A contiguous range of flattened spatial positions (x fastest)."""
    segment_id: int
    start: int              # First flat index (inclusive)
    stop: int               # Last flat index (exclusive)

    @property
    def n_voxels(self) -> int:
        return self.stop - self.start


@dataclass
class ScanTask:
    """Work unit handed to a worker thread."""
    segment: VoxelSegment
    extent: int                             # Half window size
    input_volume: DWIVolume                 # Shared, read-only
    output_volume: DWIVolume                # Written at this segment's positions only
    noise_volume: Optional[DWIVolume] = None


@dataclass
class ScanWorkerResult:
    """Result from one worker task."""
    segment_id: int
    n_voxels_processed: int
    n_degenerate: int       # Voxels where no noise floor was found
    elapsed_time: float


@dataclass
class ScanProgress:
    """Progress information for callbacks."""
    phase: str                  # 'initializing', 'processing', 'finalizing'
    current_voxels: int
    total_voxels: int
    completed_segments: int
    total_segments: int
    active_workers: int
    elapsed_time: float = 0.0
    eta_seconds: float = 0.0
    voxels_per_sec: float = 0.0

    @property
    def percent(self) -> int:
        if self.total_voxels == 0:
            return 100
        return int(100 * self.current_voxels / self.total_voxels)


@dataclass
class ScanResult:
    """Final result of a scan."""
    success: bool
    n_voxels: int
    n_channels: int
    window_size: int
    n_workers_used: int
    n_segments: int
    n_degenerate: int
    elapsed_time: float
    throughput_voxels_per_sec: float
