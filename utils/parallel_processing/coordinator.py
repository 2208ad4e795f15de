"""
Coordinator for parallel MP-PCA volume scanning.

Orchestrates the full scan:
1. Validate window size and output volume shapes
2. Resolve the worker count and partition the spatial domain
3. Hold the thread-safe console backend for the whole run
4. Launch worker threads and monitor their completion
5. Abort on the first worker failure and report progress otherwise

Workers share the read-only input volume and write disjoint positions of the
output volume(s), so the only lock taken is the console lock.
"""

import time
import logging
import numpy as np
import psutil
from typing import Optional, Callable, List, Tuple
from concurrent.futures import ThreadPoolExecutor, as_completed

from threadpoolctl import threadpool_limits

from models.dwi_volume import DWIVolume
from processors.mppca_denoise import validate_window_size
from utils.console import ConsoleBackend, console_print, report_to_user
from utils.errors import ConfigurationError, DenoisingError
from utils.thread_count import number_of_threads
from .config import (
    VolumeScanConfig,
    VoxelSegment,
    ScanTask,
    ScanProgress,
    ScanResult,
)
from .partitioner import VoxelPartitioner
from .worker import process_voxel_range

logger = logging.getLogger(__name__)

PROGRESS_LABEL = "running MP-PCA denoising"


def check_scan_memory_budget(
    volume: DWIVolume,
    with_noise: bool = False,
    safety_factor: float = 0.7
) -> Tuple[bool, float, float]:
    """
    Pre-flight memory check for the output volumes of a scan.

    Args:
        volume: Input volume
        with_noise: Whether a single-channel noise map is also allocated
        safety_factor: Fraction of available memory considered safe

    Returns:
        Tuple of (is_safe, available_mb, required_mb)
    """
    nx, ny, nz = volume.spatial_shape
    n_values = nx * ny * nz * (volume.n_channels + (1 if with_noise else 0))
    required_mb = n_values * np.dtype(np.float32).itemsize / (1024 * 1024)
    available_mb = psutil.virtual_memory().available / (1024 * 1024)
    return required_mb <= available_mb * safety_factor, available_mb, required_mb


class VolumeScanCoordinator:
    """
    Runs the per-voxel MP-PCA procedure over a whole volume on a thread pool.

    Usage:
        config = VolumeScanConfig(window_size=5)
        coordinator = VolumeScanCoordinator(config)
        result = coordinator.run(dwi, denoised, noise)
    """

    def __init__(self, config: VolumeScanConfig):
        self.config = config

    def run(
        self,
        input_volume: DWIVolume,
        output_volume: DWIVolume,
        noise_volume: Optional[DWIVolume] = None,
        progress_callback: Optional[Callable[[ScanProgress], None]] = None
    ) -> ScanResult:
        """
        Denoise *input_volume* into *output_volume* (and *noise_volume*).

        Args:
            input_volume: Volume to denoise (read only)
            output_volume: Pre-allocated output, same shape as the input
            noise_volume: Optional pre-allocated noise map, same spatial
                          shape and a single channel
            progress_callback: Optional callback for progress updates

        Returns:
            ScanResult with outcome

        Raises:
            ConfigurationError: Invalid window size, worker count or shapes
            DenoisingError: A worker failed; remaining work is cancelled.
                Exceptions raised by progress_callback propagate unchanged.
        """
        start_time = time.time()

        window_size = validate_window_size(self.config.window_size)
        extent = window_size // 2
        self._validate_volumes(input_volume, output_volume, noise_volume)

        n_voxels = input_volume.n_voxels
        n_workers = max(1, min(self._resolve_workers(), n_voxels))
        segments = self._partition(input_volume, n_workers)

        logger.info(
            f"MP-PCA scan: shape={input_volume.shape}, window={window_size}, "
            f"workers={n_workers}, segments={len(segments)}"
        )

        self._notify(progress_callback, ScanProgress(
            phase='initializing',
            current_voxels=0,
            total_voxels=n_voxels,
            completed_segments=0,
            total_segments=len(segments),
            active_workers=0
        ))

        tasks = [
            ScanTask(
                segment=segment,
                extent=extent,
                input_volume=input_volume,
                output_volume=output_volume,
                noise_volume=noise_volume
            )
            for segment in segments
        ]

        n_done = 0
        n_degenerate = 0
        last_percent = -1

        with ConsoleBackend():
            with threadpool_limits(limits=self.config.blas_threads):
                with ThreadPoolExecutor(max_workers=n_workers,
                                        thread_name_prefix='mppca') as executor:
                    futures = {executor.submit(process_voxel_range, task): task for task in tasks}
                    try:
                        for completed, future in enumerate(as_completed(futures), start=1):
                            try:
                                worker_result = future.result()
                            except Exception as e:
                                segment_id = futures[future].segment.segment_id
                                report_to_user(f"segment {segment_id} failed: {e!r}", logging.DEBUG)
                                raise DenoisingError(
                                    f"MP-PCA denoising failed in segment {segment_id}: {e}"
                                ) from e

                            n_done += worker_result.n_voxels_processed
                            n_degenerate += worker_result.n_degenerate

                            elapsed = time.time() - start_time
                            rate = n_done / elapsed if elapsed > 0 else 0.0
                            progress = ScanProgress(
                                phase='processing',
                                current_voxels=n_done,
                                total_voxels=n_voxels,
                                completed_segments=completed,
                                total_segments=len(segments),
                                active_workers=min(n_workers, len(segments) - completed),
                                elapsed_time=elapsed,
                                eta_seconds=(n_voxels - n_done) / rate if rate > 0 else 0.0,
                                voxels_per_sec=rate
                            )
                            if self.config.report_progress and progress.percent != last_percent:
                                console_print(f"{PROGRESS_LABEL}... [{progress.percent:3d}%]")
                                last_percent = progress.percent
                            self._notify(progress_callback, progress)

                    except Exception:
                        # Worker or progress callback failure: drop queued segments
                        for pending in futures:
                            pending.cancel()
                        raise

            if n_degenerate:
                report_to_user(
                    f"no noise floor identified in {n_degenerate} voxel(s); "
                    f"those voxels were left unfiltered",
                    logging.WARNING
                )

        elapsed = time.time() - start_time
        self._notify(progress_callback, ScanProgress(
            phase='finalizing',
            current_voxels=n_done,
            total_voxels=n_voxels,
            completed_segments=len(segments),
            total_segments=len(segments),
            active_workers=0,
            elapsed_time=elapsed
        ))

        logger.info(f"MP-PCA scan finished: {n_voxels} voxels in {elapsed:.2f}s")

        return ScanResult(
            success=True,
            n_voxels=n_voxels,
            n_channels=input_volume.n_channels,
            window_size=window_size,
            n_workers_used=n_workers,
            n_segments=len(segments),
            n_degenerate=n_degenerate,
            elapsed_time=elapsed,
            throughput_voxels_per_sec=n_voxels / elapsed if elapsed > 0 else 0.0
        )

    def _resolve_workers(self) -> int:
        """Explicit config value, else the process-wide thread count policy."""
        n_workers = self.config.n_workers
        if n_workers is None:
            return number_of_threads()
        if isinstance(n_workers, bool) or int(n_workers) < 1:
            raise ConfigurationError(f"n_workers must be >= 1, got {n_workers!r}")
        return int(n_workers)

    def _partition(self, volume: DWIVolume, n_workers: int) -> List[VoxelSegment]:
        partitioner = VoxelPartitioner(
            volume.spatial_shape,
            n_workers * max(1, self.config.segments_per_worker)
        )
        segments = partitioner.partition()
        logger.debug(f"Partition stats: {partitioner.get_partition_stats(segments)}")
        return segments

    @staticmethod
    def _validate_volumes(input_volume: DWIVolume,
                          output_volume: DWIVolume,
                          noise_volume: Optional[DWIVolume]) -> None:
        if output_volume.shape != input_volume.shape:
            raise ConfigurationError(
                f"Output shape {output_volume.shape} does not match input {input_volume.shape}"
            )
        if np.shares_memory(input_volume.data, output_volume.data):
            raise ConfigurationError("Output volume must not share memory with the input")
        if noise_volume is not None:
            if (noise_volume.spatial_shape != input_volume.spatial_shape
                    or noise_volume.n_channels != 1):
                raise ConfigurationError(
                    f"Noise map shape {noise_volume.shape} must be "
                    f"{input_volume.spatial_shape + (1,)}"
                )
            if np.shares_memory(input_volume.data, noise_volume.data):
                raise ConfigurationError("Noise volume must not share memory with the input")

    @staticmethod
    def _notify(callback: Optional[Callable[[ScanProgress], None]],
                progress: ScanProgress) -> None:
        if callback is not None:
            callback(progress)
