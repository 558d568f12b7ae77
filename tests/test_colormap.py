"""Colormap-to-float conversion."""

import tracemalloc

import numpy as np
import pytest

from conftest import make_buffer
from tiff_visualizer.buffers import DecodedImage
from tiff_visualizer.colormap import (
    colormap_image_to_buffer,
    colormap_names,
    colormap_table,
    colormap_to_float,
    nearest_colormap_index,
)


def _gray_pixels(levels):
    levels = np.asarray(levels, dtype=np.uint8)
    return np.repeat(levels[np.newaxis, :, np.newaxis], 3, axis=2)


class TestColormapTable:
    """Tables built from matplotlib colormaps."""

    def test_names(self):
        assert {"viridis", "jet", "gray"} <= set(colormap_names())

    def test_table_shape(self):
        table = colormap_table("viridis")
        assert table.shape == (256, 3)
        assert table.min() >= 0
        assert table.max() <= 255

    def test_gray_is_identity_ramp(self):
        table = colormap_table("gray")
        np.testing.assert_array_equal(table[:, 0], np.arange(256))

    def test_unknown(self):
        with pytest.raises(ValueError):
            colormap_table("rainbow-unicorn")

    def test_nearest_index(self):
        table = colormap_table("gray")
        index = nearest_colormap_index(np.array([[10, 10, 10], [11, 9, 10], [250, 250, 255]]), table)
        np.testing.assert_array_equal(index, [10, 10, 252])

    def test_nearest_index_matches_exhaustive_search(self):
        rng = np.random.default_rng(7)
        colors = rng.integers(0, 256, size=(3000, 3))
        table = colormap_table("viridis")
        dist = ((colors[:, np.newaxis, :].astype(np.float64) - table[np.newaxis]) ** 2).sum(axis=2)
        np.testing.assert_array_equal(nearest_colormap_index(colors, table), np.argmin(dist, axis=1))

    def test_noisy_image_peak_memory(self):
        """Many distinct colors are matched in blocks, not one large distance table."""
        rng = np.random.default_rng(0)
        rgb = rng.integers(0, 256, size=(200, 200, 3), dtype=np.uint8)
        colormap_table("viridis")
        tracemalloc.start()
        try:
            values = colormap_to_float(rgb, "viridis", 0.0, 1.0)
            _, peak = tracemalloc.get_traced_memory()
        finally:
            tracemalloc.stop()
        assert values.shape == (200, 200)
        assert peak < 64 * 1024 * 1024


class TestColormapToFloat:
    """Linear, inverted and logarithmic recovery."""

    def test_linear(self):
        values = colormap_to_float(_gray_pixels([0, 51, 255]), "gray", 0.0, 10.0)
        assert values.shape == (1, 3)
        assert values.dtype == np.float32
        np.testing.assert_allclose(values[0], [0.0, 2.0, 10.0], rtol=1e-6)

    def test_inverted(self):
        values = colormap_to_float(_gray_pixels([0, 255]), "gray", 0.0, 10.0, inverted=True)
        np.testing.assert_allclose(values[0], [10.0, 0.0])

    def test_logarithmic(self):
        values = colormap_to_float(_gray_pixels([0, 255]), "gray", 1.0, 100.0, logarithmic=True)
        np.testing.assert_allclose(values[0], [1.0, 100.0], rtol=1e-6)

    def test_alpha_is_ignored(self):
        rgba = np.concatenate([_gray_pixels([255]), np.zeros((1, 1, 1), np.uint8)], axis=2)
        assert colormap_to_float(rgba, "gray", 0.0, 1.0)[0, 0] == pytest.approx(1.0)

    def test_bad_shape(self):
        with pytest.raises(ValueError):
            colormap_to_float(np.zeros((2, 2)), "gray", 0.0, 1.0)


def test_colormap_image_to_buffer():
    decoded = DecodedImage(make_buffer(_gray_pixels([0, 255])), 255.0, {"format": "png"})
    converted = colormap_image_to_buffer(decoded, "gray", -1.0, 1.0)

    assert converted.buffer.channels == 1
    assert converted.buffer.is_float
    assert converted.type_max == 1.0
    assert converted.metadata["colormap"] == "gray"
    np.testing.assert_allclose(converted.buffer.samples, [-1.0, 1.0])


def test_colormap_image_to_buffer_needs_rgb(gray_u8_buffer):
    with pytest.raises(ValueError):
        colormap_image_to_buffer(DecodedImage(gray_u8_buffer, 255.0), "gray", 0.0, 1.0)
