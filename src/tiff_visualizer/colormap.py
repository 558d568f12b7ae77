"""Recover float values from images rendered with a known colormap."""

from __future__ import annotations

from dataclasses import dataclass
from typing import List

import matplotlib
import numpy as np

from tiff_visualizer.buffers import DecodedImage, ElementKind, RawSampleBuffer, scale_to_8bit
from tiff_visualizer.logger import get_logger
from tiff_visualizer.normalization import log_interpolate

LOGGER = get_logger(__name__)

MATCH_BLOCK_ROWS = 1024


@dataclass(frozen=True)
class ColormapSpec:
    """Colormap offered for conversion, backed by a matplotlib colormap."""

    name: str
    matplotlib_cmap_name: str


COLORMAPS: List[ColormapSpec] = [
    ColormapSpec("viridis", "viridis"),
    ColormapSpec("plasma", "plasma"),
    ColormapSpec("inferno", "inferno"),
    ColormapSpec("magma", "magma"),
    ColormapSpec("jet", "jet"),
    ColormapSpec("hot", "hot"),
    ColormapSpec("cool", "cool"),
    ColormapSpec("turbo", "turbo"),
    ColormapSpec("gray", "gray"),
]


def colormap_names() -> List[str]:
    return [spec.name for spec in COLORMAPS]


def colormap_table(name: str) -> np.ndarray:
    """Return the colormap as a ``(256, 3)`` array of 0-255 RGB values."""
    specs = {spec.name: spec for spec in COLORMAPS}
    if name not in specs:
        raise ValueError(f"Unknown colormap: {name}")
    cmap = matplotlib.colormaps[specs[name].matplotlib_cmap_name].resampled(256)
    rgba = cmap(np.linspace(0.0, 1.0, 256))
    return np.floor(rgba[:, :3] * 255.0 + 0.5)


def nearest_colormap_index(rgb: np.ndarray, table: np.ndarray) -> np.ndarray:
    """Index of the closest table entry (Euclidean RGB distance) for each color.

    Colors are 8-bit RGB triples. Ties resolve to the lowest index. Each
    distinct color is matched once, in blocks of ``MATCH_BLOCK_ROWS``, so the
    distance table never exceeds ``MATCH_BLOCK_ROWS x 256`` entries.
    """
    colors = np.clip(np.asarray(rgb).reshape(-1, 3), 0, 255).astype(np.uint32)
    packed = (colors[:, 0] << 16) | (colors[:, 1] << 8) | colors[:, 2]
    unique, inverse = np.unique(packed, return_inverse=True)
    unique_rgb = np.stack([(unique >> 16) & 0xFF, (unique >> 8) & 0xFF, unique & 0xFF], axis=1).astype(np.float64)
    table = np.asarray(table, dtype=np.float64)
    nearest = np.empty(unique.size, dtype=np.intp)
    for start in range(0, unique.size, MATCH_BLOCK_ROWS):
        block = unique_rgb[start : start + MATCH_BLOCK_ROWS]
        dist = ((block[:, np.newaxis, :] - table[np.newaxis, :, :]) ** 2).sum(axis=2)
        nearest[start : start + block.shape[0]] = np.argmin(dist, axis=1)
    return nearest[inverse.reshape(-1)]


def colormap_to_float(
    rgb: np.ndarray,
    colormap: str,
    min_value: float,
    max_value: float,
    inverted: bool = False,
    logarithmic: bool = False,
) -> np.ndarray:
    """Convert colormapped RGB pixels back to float values.

    Parameters
    ----------
    rgb : numpy.ndarray
        ``(H, W, 3)`` or ``(H, W, 4)`` 8-bit pixels; alpha is ignored.
    colormap : str
        One of ``colormap_names()``.
    min_value, max_value : float
        Values assigned to the first and last colormap entries.
    inverted : bool
        Treat the colormap as reversed.
    logarithmic : bool
        Interpolate in log10 space (see ``log_interpolate``).

    Returns
    -------
    numpy.ndarray
        ``(H, W)`` float32 values.
    """
    rgb = np.asarray(rgb)
    if rgb.ndim != 3 or rgb.shape[2] not in (3, 4):
        raise ValueError(f"Expected an (H, W, 3|4) image, got shape {rgb.shape}")
    height, width = rgb.shape[:2]
    index = nearest_colormap_index(rgb[:, :, :3], colormap_table(colormap))
    if inverted:
        index = 255 - index
    t = index / 255.0
    if logarithmic:
        values = log_interpolate(t, min_value, max_value)
    else:
        values = min_value + t * (max_value - min_value)
    LOGGER.debug("Converted %dx%d %s image to float", width, height, colormap)
    return np.asarray(values, dtype=np.float32).reshape(height, width)


def colormap_image_to_buffer(
    decoded: DecodedImage,
    colormap: str,
    min_value: float,
    max_value: float,
    inverted: bool = False,
    logarithmic: bool = False,
) -> DecodedImage:
    """Replace an 8-bit RGB(A) image with its float reconstruction."""
    buffer = decoded.buffer
    if buffer.channels < 3:
        raise ValueError("Colormap conversion needs an RGB image")
    rgb = scale_to_8bit(buffer.as_image()[:, :, :3], decoded.type_max)
    values = colormap_to_float(rgb, colormap, min_value, max_value, inverted, logarithmic)
    float_buffer = RawSampleBuffer(
        width=buffer.width,
        height=buffer.height,
        channels=1,
        element_kind=ElementKind.F32,
        is_float=True,
        samples=values,
    )
    metadata = dict(decoded.metadata)
    metadata.update({"colormap": colormap, "colormap_inverted": inverted, "colormap_logarithmic": logarithmic})
    return DecodedImage(buffer=float_buffer, type_max=1.0, metadata=metadata)
