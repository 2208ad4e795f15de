"""
Tests for the MP-PCA per-voxel procedure: window extraction, rank selection,
truncated reconstruction and the MPPCADenoise processor.
"""
import pytest
import numpy as np

from models.dwi_volume import DWIVolume
from processors import BaseProcessor, get_processor_class
from processors.mppca_denoise import (
    MPPCADenoise,
    validate_window_size,
    load_window,
    select_rank,
    reconstruct,
    denoise_matrix,
    denoise_voxel,
)
from utils.errors import ConfigurationError


class BoundsCheckingVolume(DWIVolume):
    """Volume that records every block read and fails on out-of-range access."""

    def __post_init__(self):
        super().__post_init__()
        self.block_reads = []

    def read_block(self, start, stop):
        for lo, hi, n in zip(start, stop, self.spatial_shape):
            assert 0 <= lo < hi <= n, f"out-of-bounds read {start}:{stop}"
        self.block_reads.append((tuple(start), tuple(stop)))
        return super().read_block(start, stop)


def _index_volume(shape=(5, 5, 5)):
    """Single-channel volume whose value encodes its position as x + 10y + 100z."""
    x, y, z = np.meshgrid(*(np.arange(n) for n in shape), indexing='ij')
    return DWIVolume(data=(x + 10 * y + 100 * z).astype(np.float32))


class TestValidateWindowSize:
    """Window size option validation."""

    @pytest.mark.parametrize('size', [1, 3, 5, 49])
    def test_valid_sizes(self, size):
        assert validate_window_size(size) == size

    @pytest.mark.parametrize('size', [0, -3, 51, 4, 2])
    def test_invalid_sizes(self, size):
        with pytest.raises(ConfigurationError):
            validate_window_size(size)

    @pytest.mark.parametrize('size', [5.0, '5', True, None])
    def test_non_integer_rejected(self, size):
        with pytest.raises(ConfigurationError, match="integer"):
            validate_window_size(size)


class TestLoadWindow:
    """Local data matrix extraction."""

    def test_interior_window_is_full(self):
        """Interior voxels get all window_size³ columns."""
        volume = DWIVolume(data=np.random.rand(7, 7, 7, 4))
        X, centre_column = load_window(volume, (3, 3, 3), 2)

        assert X.shape == (4, 125)
        assert X.dtype == np.float64
        assert centre_column == 62
        np.testing.assert_array_equal(X[:, centre_column], volume.read((3, 3, 3)))

    def test_column_order_x_fastest(self):
        """Columns follow z outermost, then y, then x innermost."""
        volume = _index_volume()
        X, centre_column = load_window(volume, (1, 1, 1), 1)

        expected = [x + 10 * y + 100 * z
                    for z in range(3) for y in range(3) for x in range(3)]
        np.testing.assert_array_equal(X[0], expected)
        assert X[0, centre_column] == 111

    def test_corner_window_excludes_outside(self):
        """At a corner only the in-volume octant remains."""
        volume = BoundsCheckingVolume(data=np.random.rand(6, 6, 6, 3))
        X, centre_column = load_window(volume, (0, 0, 0), 2)

        assert X.shape == (3, 27)
        assert X.shape[1] < 5 ** 3
        assert centre_column == 0
        assert volume.block_reads == [((0, 0, 0), (3, 3, 3))]

    def test_face_window_excludes_outside(self):
        volume = BoundsCheckingVolume(data=np.random.rand(6, 6, 6, 3))
        X, centre_column = load_window(volume, (5, 3, 2), 2)

        assert X.shape == (3, 3 * 5 * 5)
        np.testing.assert_array_equal(X[:, centre_column], volume.read((5, 3, 2)))

    def test_centre_identified_by_position_not_value(self):
        """Duplicate values elsewhere in the window do not move the centre column."""
        data = np.zeros((3, 3, 3, 1), dtype=np.float32)
        data[1, 1, 1, 0] = 5.0
        data[0, 0, 0, 0] = 5.0
        volume = DWIVolume(data=data)

        _, centre_column = load_window(volume, (1, 1, 1), 1)
        assert centre_column == 13

    def test_cursor_restored_to_centre(self):
        volume = _index_volume()
        volume.set_index((2, 2, 2))

        load_window(volume, None, 1)
        assert volume.index == (2, 2, 2)

        load_window(volume, (0, 4, 1), 2)
        assert volume.index == (0, 4, 1)

    def test_cursor_restored_on_failed_read(self):
        class FailingVolume(DWIVolume):
            def read_block(self, start, stop):
                raise RuntimeError("read failed")

        volume = FailingVolume(data=np.zeros((3, 3, 3, 2)))
        with pytest.raises(RuntimeError):
            load_window(volume, (1, 2, 0), 1)
        assert volume.index == (1, 2, 0)

    def test_centre_out_of_bounds(self):
        volume = _index_volume()
        with pytest.raises(IndexError):
            load_window(volume, (5, 0, 0), 1)


class TestSelectRank:
    """Marchenko-Pastur threshold selection."""

    def test_single_signal_component(self):
        lam = np.array([10.0, 0.01, 0.01, 0.01])
        p, sigsq = select_rank(lam, m=4, n=100)

        assert p == 1
        assert sigsq == pytest.approx(0.01)

    def test_zero_spectrum_stops_immediately(self):
        p, sigsq = select_rank(np.zeros(3), m=3, n=27)

        assert p == 0
        assert sigsq == 0.0

    def test_single_eigenvalue(self):
        """With r = 1 the first candidate always ends the scan."""
        p, sigsq = select_rank(np.array([2.5]), m=1, n=27)

        assert p == 0
        assert sigsq == pytest.approx(2.5)

    def test_no_noise_floor_is_undefined(self):
        """If the test never fails, every component is signal and sigma is NaN."""
        lam = np.array([np.nan, np.nan, np.nan])
        p, sigsq = select_rank(lam, m=3, n=27)

        assert p == 3
        assert np.isnan(sigsq)

    def test_wide_matrix_scaling(self):
        """When m > n the mean estimate is divided by gamma."""
        lam = np.array([1.0, 1.0])
        p, sigsq = select_rank(lam, m=4, n=2)

        assert p == 0
        # gamma = 4 / 2 = 2
        assert sigsq == pytest.approx(2.0 / 2 / 2.0)


class TestReconstruct:
    """Truncated reconstruction."""

    def test_keep_all_is_identity(self):
        np.random.seed(0)
        Xc = np.random.randn(6, 20)
        Xc -= Xc.mean(axis=1, keepdims=True)
        U, s, Vt = np.linalg.svd(Xc, full_matrices=False)

        np.testing.assert_allclose(reconstruct(U, s, Vt, len(s)), Xc, atol=1e-12)

    def test_keep_none_is_zero(self):
        np.random.seed(1)
        U, s, Vt = np.linalg.svd(np.random.randn(4, 9), full_matrices=False)

        np.testing.assert_array_equal(reconstruct(U, s, Vt, 0), np.zeros((4, 9)))

    def test_does_not_modify_singular_values(self):
        np.random.seed(2)
        U, s, Vt = np.linalg.svd(np.random.randn(3, 5), full_matrices=False)
        s_before = s.copy()

        reconstruct(U, s, Vt, 1)
        np.testing.assert_array_equal(s, s_before)


class TestDenoiseMatrix:
    """Per-window denoising."""

    def test_homogeneous_window_is_exact(self):
        """Identical samples reconstruct exactly, with zero noise."""
        column = np.array([3.7, 120.25, 0.1], dtype=np.float32)
        X = np.tile(column[:, np.newaxis], (1, 125))

        result = denoise_matrix(X, 62)

        np.testing.assert_array_equal(result.denoised.astype(np.float32), column)
        assert result.sigma == 0.0
        assert not result.degenerate

    def test_single_channel(self):
        """m = 1 gives r = 1 and a defined rank in {0, 1}."""
        np.random.seed(3)
        X = np.random.randn(1, 27)

        result = denoise_matrix(X, 13)

        assert result.rank in (0, 1)
        assert np.isfinite(result.sigma)
        assert result.denoised.shape == (1,)

    def test_single_sample(self):
        X = np.array([[1.0], [2.0], [3.0]])
        result = denoise_matrix(X, 0)

        np.testing.assert_allclose(result.denoised, [1.0, 2.0, 3.0])

    def test_non_finite_window_is_degenerate(self):
        """Non-finite samples leave the centre unfiltered with undefined noise."""
        np.random.seed(4)
        X = np.random.randn(4, 27)
        X[2, 5] = np.nan

        result = denoise_matrix(X, 13)

        assert result.degenerate
        assert result.rank == 4
        np.testing.assert_array_equal(result.denoised, X[:, 13])

    def test_low_rank_signal_is_recovered(self):
        """Noise is removed from a rank-1 signal in many channels."""
        np.random.seed(5)
        m, n = 40, 125
        profile = np.linspace(1.0, 2.0, m)
        coefficients = np.random.randn(n)
        clean = 5.0 + np.outer(profile, coefficients)
        noisy = clean + np.random.randn(m, n) * 0.1

        result = denoise_matrix(noisy, 62)

        assert result.rank >= 1
        assert 0.05 < result.sigma < 0.2
        error_before = np.sqrt(np.mean((noisy[:, 62] - clean[:, 62]) ** 2))
        error_after = np.sqrt(np.mean((result.denoised - clean[:, 62]) ** 2))
        assert error_after < error_before

    def test_invalid_inputs(self):
        with pytest.raises(ValueError):
            denoise_matrix(np.zeros((0, 5)), 0)
        with pytest.raises(IndexError):
            denoise_matrix(np.zeros((2, 5)), 5)

    def test_denoise_voxel_matches_matrix_path(self):
        np.random.seed(6)
        volume = DWIVolume(data=np.random.rand(5, 5, 5, 6))

        via_voxel = denoise_voxel(volume, (2, 1, 3), 1)
        X, centre_column = load_window(volume, (2, 1, 3), 1)
        via_matrix = denoise_matrix(X, centre_column)

        np.testing.assert_allclose(via_voxel.denoised, via_matrix.denoised, rtol=1e-12)
        assert via_voxel.rank == via_matrix.rank


class TestMPPCADenoiseProcessor:
    """Processor wrapper around the parallel scan."""

    def test_defaults(self):
        processor = MPPCADenoise()

        assert processor.window_size == 5
        assert processor.extent == 2
        assert not processor.return_noise
        assert "5^3" in processor.get_description()

    def test_invalid_params(self):
        with pytest.raises(ConfigurationError):
            MPPCADenoise(window_size=4)
        with pytest.raises(ConfigurationError):
            MPPCADenoise(n_workers=0)

    def test_serialization_roundtrip(self):
        original = MPPCADenoise(window_size=3, return_noise=True, n_workers=2)
        config = original.to_dict()

        assert config['class_name'] == 'MPPCADenoise'
        reconstructed = BaseProcessor.from_dict(config)

        assert isinstance(reconstructed, MPPCADenoise)
        assert reconstructed.params == original.params
        assert get_processor_class('MPPCADenoise') is MPPCADenoise

    def test_from_dict_unknown_class(self):
        with pytest.raises(ValueError):
            BaseProcessor.from_dict({'class_name': 'Nope', 'params': {}})

    def test_process_shapes(self, sample_volume):
        volume, _ = sample_volume
        output = MPPCADenoise(window_size=3, return_noise=True, n_workers=2).process(volume)

        assert output.denoised.shape == volume.shape
        assert output.denoised.data.dtype == np.float32
        assert output.noise.shape == volume.spatial_shape + (1,)
        assert output.scan.n_voxels == volume.n_voxels

    def test_process_leaves_input_unchanged(self, sample_volume):
        volume, _ = sample_volume
        before = volume.data.copy()

        MPPCADenoise(window_size=3, n_workers=2).process(volume)
        np.testing.assert_array_equal(volume.data, before)

    def test_processing_history(self, sample_volume):
        volume, _ = sample_volume
        output = MPPCADenoise(window_size=3, n_workers=1).process(volume)

        history = output.denoised.metadata['processing_history']
        assert history[-1]['class_name'] == 'MPPCADenoise'
        assert 'processing_history' not in volume.metadata

    def test_progress_callback(self, sample_volume):
        volume, _ = sample_volume
        calls = []
        processor = MPPCADenoise(window_size=3, n_workers=2)
        processor.set_progress_callback(lambda cur, tot, msg: calls.append((cur, tot, msg)))

        processor.process(volume)

        assert calls[0][2] == 'initializing'
        assert calls[-1] == (volume.n_voxels, volume.n_voxels, 'finalizing')
