"""
Synthetic multi-channel volume generator for testing.
Creates low-rank signal across channels with additive Gaussian noise.
"""
import numpy as np
from typing import Tuple, Sequence
from models.dwi_volume import DWIVolume


def generate_sample_dwi_volume(
    spatial_shape: Sequence[int] = (8, 8, 8),
    n_channels: int = 30,
    rank: int = 2,
    signal_level: float = 1.0,
    noise_level: float = 0.1,
    seed: int = 42
) -> Tuple[DWIVolume, np.ndarray]:
    """
    Generate a noisy volume whose clean signal spans *rank* channel patterns.

    Each voxel's clean channel vector is a baseline plus a random mixture of
    *rank* fixed channel profiles, so every local window holds exactly *rank*
    signal components after centring.

    Args:
        spatial_shape: (nx, ny, nz)
        n_channels: Number of channels
        rank: Number of signal components
        signal_level: Standard deviation of the mixing coefficients
        noise_level: Standard deviation of the additive Gaussian noise
        seed: Random seed for reproducibility

    Returns:
        Tuple of (noisy DWIVolume, clean float32 array of the same shape)
    """
    np.random.seed(seed)

    nx, ny, nz = spatial_shape
    n_voxels = nx * ny * nz

    # Smooth decaying profiles, like signal attenuation across acquisitions
    channel_axis = np.linspace(0.0, 1.0, n_channels)
    profiles = np.stack([
        np.cos(np.pi * (k + 1) * channel_axis) * np.exp(-k * channel_axis)
        for k in range(rank)
    ]) if rank > 0 else np.zeros((0, n_channels))

    coefficients = np.random.randn(n_voxels, rank) * signal_level
    baseline = 2.0 * np.exp(-channel_axis)
    clean = baseline[np.newaxis, :] + coefficients @ profiles

    noisy = clean + np.random.randn(n_voxels, n_channels) * noise_level

    shape = (nx, ny, nz, n_channels)
    clean = clean.reshape(shape).astype(np.float32)
    noisy = noisy.reshape(shape).astype(np.float32)

    volume = DWIVolume(data=noisy, metadata={'source': 'synthetic', 'noise_level': noise_level})
    return volume, clean
