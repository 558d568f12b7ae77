"""Normalization range selection, stats and log interpolation."""

import math

import numpy as np
import pytest

from conftest import make_buffer
from tiff_visualizer.normalization import (
    effective_visualization_range,
    inverse_range,
    log_interpolate,
    normalize,
    resolve_range,
)
from tiff_visualizer.settings import NormalizationSettings, ToneSettings
from tiff_visualizer.stats import Stats, StatsCache, compute_packed_rgb_stats, compute_stats


class TestResolveRange:
    """Precedence: auto, gamma mode, manual, full range."""

    def test_auto_uses_stats(self):
        norm = NormalizationSettings(auto_normalize=True, gamma_mode=True, min=5, max=6)
        assert resolve_range(norm, Stats(2.0, 9.0), 255.0, False) == (2.0, 9.0)

    def test_auto_without_stats_falls_back_per_bound(self):
        norm = NormalizationSettings(auto_normalize=True)
        assert resolve_range(norm, None, 255.0, False) == (0.0, 255.0)
        assert resolve_range(norm, Stats(3.0, math.inf), 255.0, False) == (3.0, 255.0)

    def test_gamma_mode_uses_type_range(self):
        norm = NormalizationSettings(gamma_mode=True, min=10, max=20)
        assert resolve_range(norm, Stats(2.0, 9.0), 65535.0, False) == (0.0, 65535.0)

    def test_manual_range(self):
        norm = NormalizationSettings(min=-1.0, max=3.0)
        assert resolve_range(norm, None, 1.0, True) == (-1.0, 3.0)

    def test_normalized_float_mode_scales_integer_bounds(self):
        norm = NormalizationSettings(min=0.25, max=0.5, normalized_float_mode=True)
        assert resolve_range(norm, None, 1000.0, False) == (250.0, 500.0)
        assert resolve_range(norm, None, 1.0, True) == (0.25, 0.5)

    def test_default_full_range(self):
        assert resolve_range(NormalizationSettings(), None, 255.0, False) == (0.0, 255.0)

    def test_non_finite_manual_bound_rejected(self):
        with pytest.raises(ValueError):
            NormalizationSettings(min=float("nan"), max=1.0)


def test_inverse_range_degenerate():
    """Zero or negative spans map everything to the minimum."""
    assert inverse_range(5.0, 5.0) == 0.0
    assert inverse_range(5.0, 1.0) == 0.0
    np.testing.assert_array_equal(normalize([5.0, 9.0], 5.0, 0.0), [0.0, 0.0])


class TestLogInterpolate:
    """Log-space interpolation used by colormap conversion."""

    def test_positive_range(self):
        np.testing.assert_allclose(log_interpolate([0.0, 0.5, 1.0], 1.0, 100.0), [1.0, 10.0, 100.0])

    def test_negative_range_is_mirrored(self):
        np.testing.assert_allclose(log_interpolate([0.0, 0.5, 1.0], -1.0, -100.0), [-1.0, -10.0, -100.0])

    def test_mixed_sign_is_linear(self):
        np.testing.assert_allclose(log_interpolate([0.0, 0.5, 1.0], -1.0, 1.0), [-1.0, 0.0, 1.0])

    def test_zero_is_clamped(self):
        assert log_interpolate(0.0, 0.0, 1.0) == pytest.approx(1e-10)


def test_effective_visualization_range():
    """One stop of exposure halves the unsaturated input range."""
    tone = ToneSettings(exposure_stops=1.0)
    assert effective_visualization_range(tone, 0.0, 100.0) == pytest.approx((0.0, 50.0))
    assert effective_visualization_range(ToneSettings(), 0.0, 100.0) == (0.0, 100.0)


class TestStats:
    """Finite min/max and the stats cache."""

    def test_ignores_non_finite(self):
        buffer = make_buffer(np.array([[np.nan, 2.0], [np.inf, -3.0]], dtype=np.float32))
        assert compute_stats(buffer) == Stats(-3.0, 2.0)

    def test_all_nan_is_none(self):
        buffer = make_buffer(np.full((2, 2), np.nan, dtype=np.float32))
        assert compute_stats(buffer) is None

    def test_alpha_channel_excluded_for_rgba(self):
        array = np.array([[[10, 20, 30, 255]]], dtype=np.uint8)
        assert compute_stats(make_buffer(array)) == Stats(10.0, 30.0)

    def test_packed_rgb_stats(self):
        array = np.array([[[1, 0, 0], [0, 0, 2]]], dtype=np.uint8)
        assert compute_packed_rgb_stats(make_buffer(array), 255.0) == Stats(2.0, 65536.0)

    def test_cache_reuses_and_invalidates(self):
        buffer = make_buffer(np.array([[1.0, 2.0]], dtype=np.float32))
        cache = StatsCache()
        first = cache.get(buffer, 1.0)
        assert cache.get(buffer, 1.0) is first
        assert len(cache) == 1
        cache.invalidate(buffer)
        assert len(cache) == 0
