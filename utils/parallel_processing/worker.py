"""
Worker function for parallel voxel scanning.

Each worker thread reads the shared input volume through its own cursor and
writes results directly to its segment's positions in the output volume(s).
Segments never overlap, so no locking is needed for the outputs. numpy's SVD
releases the GIL, so threads scale across cores.
"""

import logging
import time

from processors.mppca_denoise import denoise_voxel
from utils.console import report_to_user
from .config import ScanTask, ScanWorkerResult
from .partitioner import spatial_position


def process_voxel_range(task: ScanTask) -> ScanWorkerResult:
    """
    Denoise every voxel of one segment.

    Args:
        task: Segment, window extent and the volumes to read / write

    Returns:
        ScanWorkerResult with counts and timing

    Raises:
        Any exception from the per-voxel computation; the coordinator aborts
        the scan on the first failure.
    """
    start_time = time.time()
    segment = task.segment

    # Private cursor over the shared input data
    source = task.input_volume.view()
    spatial_shape = source.spatial_shape

    n_degenerate = 0
    for flat_index in range(segment.start, segment.stop):
        pos = spatial_position(flat_index, spatial_shape)
        source.set_index(pos)

        result = denoise_voxel(source, pos, task.extent)

        task.output_volume.write(pos, result.denoised)
        if task.noise_volume is not None:
            task.noise_volume.write(pos, result.sigma)
        if result.degenerate:
            n_degenerate += 1

    elapsed = time.time() - start_time
    report_to_user(
        f"segment {segment.segment_id}: {segment.n_voxels} voxels in {elapsed:.2f}s"
        + (f" ({n_degenerate} without noise floor)" if n_degenerate else ""),
        logging.DEBUG
    )

    return ScanWorkerResult(
        segment_id=segment.segment_id,
        n_voxels_processed=segment.n_voxels,
        n_degenerate=n_degenerate,
        elapsed_time=elapsed
    )
