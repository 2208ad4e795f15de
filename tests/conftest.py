"""
Pytest configuration and fixtures for dwidenoise tests.
"""
import numpy as np
import pytest
import tempfile
import shutil
from pathlib import Path

# Add project root to path
import sys
sys.path.insert(0, str(Path(__file__).parent.parent))


@pytest.fixture
def temp_dir():
    """Create a temporary directory for test files."""
    tmpdir = tempfile.mkdtemp()
    yield Path(tmpdir)
    # Cleanup
    shutil.rmtree(tmpdir, ignore_errors=True)


@pytest.fixture(autouse=True)
def isolated_settings(monkeypatch, temp_dir):
    """Point the settings store at a temporary directory for every test."""
    from models.app_settings import AppSettings, SETTINGS_DIR_ENV

    monkeypatch.setenv(SETTINGS_DIR_ENV, str(temp_dir / 'settings'))
    AppSettings.reset_instance()
    yield temp_dir / 'settings'
    AppSettings.reset_instance()


@pytest.fixture(autouse=True)
def fresh_thread_policy(monkeypatch):
    """Start every test with an unresolved process-wide thread count."""
    from utils.thread_count import ENV_VARIABLE, get_thread_count_policy

    monkeypatch.delenv(ENV_VARIABLE, raising=False)
    policy = get_thread_count_policy()
    policy.reset()
    yield policy
    policy.reset()


@pytest.fixture
def sample_volume():
    """Noisy rank-2 volume with 30 channels and its clean signal."""
    from utils.sample_data import generate_sample_dwi_volume

    return generate_sample_dwi_volume(
        spatial_shape=(8, 8, 8),
        n_channels=30,
        rank=2,
        noise_level=0.1,
        seed=42
    )


@pytest.fixture
def mixed_coherence_volume():
    """
    3-channel 7x7x7 volume: channel 0 is noisy, channels 1 and 2 are an
    identical noise-free pattern.
    """
    from models.dwi_volume import DWIVolume

    np.random.seed(7)
    shape = (7, 7, 7)
    x, y, z = np.meshgrid(*(np.arange(n) for n in shape), indexing='ij')
    coherent = (10.0 + 0.5 * x + 0.25 * y - 0.3 * z).astype(np.float32)
    noisy = (5.0 + np.random.randn(*shape)).astype(np.float32)

    data = np.stack([noisy, coherent, coherent], axis=-1)
    return DWIVolume(data=data)
