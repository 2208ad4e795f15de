"""
MP-PCA Denoising Processor.

Denoises multi-channel volumes with local principal component analysis and a
Marchenko-Pastur threshold on the eigenvalue spectrum:

1. For each voxel, gather the cubic neighbourhood window across all channels
   into an m × n matrix (channels × in-bounds neighbours)
2. Centre each channel, take the thin SVD and convert singular values to
   eigenvalues λ = s² / n
3. Scan the spectrum for the first component whose spread no longer exceeds
   the Marchenko-Pastur width of the remaining noise eigenvalues
4. Zero the noise components, reconstruct, and keep the centre sample

Besides the denoised volume, the estimated noise standard deviation per voxel
(the noise map) can be produced.

Every voxel depends only on its own window of the input, so the scan is run
in parallel by utils.parallel_processing without further synchronization.
"""
import logging
import numpy as np
from dataclasses import dataclass, field
from typing import Any, Optional, Sequence, Tuple

from models.dwi_volume import DWIVolume
from processors.base_processor import BaseProcessor
from utils.errors import ConfigurationError

logger = logging.getLogger(__name__)

DEFAULT_WINDOW_SIZE = 5
MAX_WINDOW_SIZE = 50


@dataclass
class DenoiseResult:
    """Denoised centre voxel of one local window."""
    denoised: np.ndarray    # (m,) float64
    sigma: float            # noise standard deviation, NaN if undefined
    rank: int               # number of retained signal components

    @property
    def degenerate(self) -> bool:
        """True when no noise floor could be identified."""
        return bool(np.isnan(self.sigma))


@dataclass
class DenoiseOutput:
    """Outputs of a full-volume MP-PCA run."""
    denoised: DWIVolume
    noise: Optional[DWIVolume] = None
    scan: Optional[Any] = field(default=None, repr=False)


def validate_window_size(window_size) -> int:
    """
    Validate the window edge length.

    Raises:
        ConfigurationError: Unless window_size is an odd integer in [1, MAX_WINDOW_SIZE]
    """
    if isinstance(window_size, bool) or not isinstance(window_size, (int, np.integer)):
        raise ConfigurationError(f"window_size must be an integer, got {window_size!r}")
    window_size = int(window_size)
    if not 1 <= window_size <= MAX_WINDOW_SIZE:
        raise ConfigurationError(
            f"window_size must be in [1, {MAX_WINDOW_SIZE}], got {window_size}"
        )
    if window_size % 2 == 0:
        raise ConfigurationError(f"window_size must be odd, got {window_size}")
    return window_size


# =============================================================================
# Window extraction
# =============================================================================

def load_window(volume: DWIVolume,
                centre: Optional[Sequence[int]],
                extent: int) -> Tuple[np.ndarray, int]:
    """
    Gather the local data matrix around *centre*.

    Offsets are visited with z outermost and x innermost, each in
    [-extent, extent]. Neighbours outside the volume are skipped rather than
    padded, so the matrix narrows at the volume faces.

    Args:
        volume: Input volume
        centre: Centre position (x, y, z); None uses the volume cursor
        extent: Half window size

    Returns:
        Tuple of (X, centre_column): X is float64 (n_channels, n') and
        centre_column is the column holding the centre sample
    """
    if centre is None:
        centre = volume.index
    centre = tuple(int(c) for c in centre)
    if not volume.in_bounds(centre):
        raise IndexError(f"Window centre {centre} out of range {volume.spatial_shape}")

    try:
        start = tuple(max(0, c - extent) for c in centre)
        stop = tuple(min(n, c + extent + 1) for c, n in zip(centre, volume.spatial_shape))
        block = volume.read_block(start, stop)

        sx, sy, sz, m = block.shape
        # (x, y, z, m) -> columns ordered with x varying fastest
        X = block.transpose(2, 1, 0, 3).reshape(sx * sy * sz, m).T.astype(np.float64)

        cx, cy, cz = (c - s for c, s in zip(centre, start))
        centre_column = (cz * sy + cy) * sx + cx
    finally:
        volume.set_index(centre)

    return X, centre_column


# =============================================================================
# Noise estimation
# =============================================================================

def select_rank(lam: np.ndarray, m: int, n: int) -> Tuple[int, float]:
    """
    Marchenko-Pastur selection of the signal/noise boundary.

    Components are tested in ascending order. For candidate p, the remaining
    eigenvalues λ[p:] are assumed to be noise and two variance estimates are
    compared: their mean (scaled by max(γ, 1)) and their spread divided by the
    Marchenko-Pastur bandwidth 4·sqrt(γ), with γ = (m - p) / n. While the
    spread estimate is larger, component p still carries signal.

    Args:
        lam: Eigenvalues in descending order, length r = min(m, n)
        m: Number of channels
        n: Number of samples

    Returns:
        Tuple of (p, sigma²): p is the number of signal components. If the
        test never fails, p == r and sigma² is NaN.
    """
    lam = np.asarray(lam, dtype=np.float64)
    r = lam.size
    clam = np.cumsum(lam[::-1])[::-1]

    for p in range(r):
        gam = (m - p) / n
        sigsq1 = clam[p] / (r - p) / max(gam, 1.0)
        sigsq2 = (lam[p] - lam[r - 1]) / (4.0 * np.sqrt(gam))
        # signal components have sigsq2 > sigsq1
        if sigsq2 <= sigsq1:
            return p, float(sigsq1)

    return r, float('nan')


def reconstruct(U: np.ndarray, s: np.ndarray, Vt: np.ndarray, keep: int) -> np.ndarray:
    """Rebuild U·diag(s)·Vt from the first *keep* components only."""
    s_kept = s.copy()
    s_kept[keep:] = 0.0
    return (U * s_kept) @ Vt


def denoise_matrix(X: np.ndarray, centre_column: int) -> DenoiseResult:
    """
    Denoise one local data matrix and return its centre sample.

    Args:
        X: Local data matrix (m channels × n samples)
        centre_column: Column index of the window centre

    Returns:
        DenoiseResult with the denoised centre vector, sigma and rank
    """
    X = np.asarray(X, dtype=np.float64)
    if X.ndim != 2 or X.shape[0] < 1 or X.shape[1] < 1:
        raise ValueError(f"Local matrix must be 2D with m, n >= 1, got shape {X.shape}")
    m, n = X.shape
    if not 0 <= centre_column < n:
        raise IndexError(f"centre_column {centre_column} out of range for {n} samples")

    if not np.all(np.isfinite(X)):
        # No usable spectrum: keep every component, i.e. return the input
        return DenoiseResult(X[:, centre_column].copy(), float('nan'), min(m, n))

    Xm = X.mean(axis=1, keepdims=True)
    Xc = X - Xm

    U, s, Vt = np.linalg.svd(Xc, full_matrices=False)
    lam = s ** 2 / n
    p, sigsq = select_rank(lam, m, n)

    centre = reconstruct(U, s, Vt[:, [centre_column]], p)[:, 0] + Xm[:, 0]

    sigma = float('nan') if p == s.size else float(np.sqrt(sigsq))
    return DenoiseResult(centre, sigma, p)


def denoise_voxel(volume: DWIVolume, centre: Sequence[int], extent: int) -> DenoiseResult:
    """Extract the window around *centre* and denoise it."""
    X, centre_column = load_window(volume, centre, extent)
    return denoise_matrix(X, centre_column)


# =============================================================================
# Processor
# =============================================================================

class MPPCADenoise(BaseProcessor):
    """
    MP-PCA denoising of a multi-channel volume.

    Parameters:
        window_size: Odd window edge length in voxels (default 5)
        return_noise: Also produce the single-channel noise map (default False)
        n_workers: Worker thread count; None resolves it from the
                   --nthreads / DWIDENOISE_NTHREADS / NumberOfThreads chain
    """

    def __init__(self, window_size: int = DEFAULT_WINDOW_SIZE,
                 return_noise: bool = False,
                 n_workers: Optional[int] = None):
        super().__init__(window_size=window_size,
                         return_noise=return_noise,
                         n_workers=n_workers)

    def _validate_params(self):
        self.window_size = validate_window_size(self.params['window_size'])
        self.extent = self.window_size // 2
        self.return_noise = bool(self.params['return_noise'])

        n_workers = self.params['n_workers']
        if n_workers is not None and (isinstance(n_workers, bool) or int(n_workers) < 1):
            raise ConfigurationError(f"n_workers must be >= 1, got {n_workers!r}")
        self.n_workers = None if n_workers is None else int(n_workers)

    def get_description(self) -> str:
        noise = ", noise map" if self.return_noise else ""
        return f"MP-PCA denoise (window {self.window_size}^3{noise})"

    def process(self, volume: DWIVolume) -> DenoiseOutput:
        """
        Denoise *volume*.

        Returns:
            DenoiseOutput with a float32 volume of identical shape and, when
            return_noise is set, the noise map (same spatial shape, 1 channel)
        """
        from utils.parallel_processing import (
            VolumeScanConfig,
            VolumeScanCoordinator,
            check_scan_memory_budget,
        )

        is_safe, available_mb, required_mb = check_scan_memory_budget(volume, self.return_noise)
        if not is_safe:
            logger.warning(
                f"Output volumes need {required_mb:.0f}MB but only "
                f"{available_mb:.0f}MB is available"
            )

        denoised = volume.create_like(volume.n_channels)
        noise = volume.create_like(1) if self.return_noise else None

        config = VolumeScanConfig(window_size=self.window_size, n_workers=self.n_workers)
        coordinator = VolumeScanCoordinator(config)

        def _on_progress(progress):
            self._report_progress(progress.current_voxels, progress.total_voxels, progress.phase)

        result = coordinator.run(volume, denoised, noise, progress_callback=_on_progress)

        history = list(denoised.metadata.get('processing_history', []))
        denoised.metadata['processing_history'] = history + [self.to_dict()]
        return DenoiseOutput(denoised=denoised, noise=noise, scan=result)
