"""Render raw sample buffers into 8-bit RGBA rasters.

Path selection
--------------
- Gamma mode off: direct normalization, no tone mapping at all.
- Gamma mode on with identity tone: direct normalization.
- Gamma mode on otherwise: LUT lookup (see ``tiff_visualizer.lut``).

Channel handling
----------------
1 = gray, 2 = gray + alpha, 3 = RGB, 4 = RGB + alpha. A pixel with any
non-finite color channel is painted with the NaN color. Alpha is scaled
linearly by the type maximum and never tone mapped; non-finite alpha is
opaque.
"""

from __future__ import annotations

from typing import Optional, Tuple

import numpy as np

from tiff_visualizer.buffers import PACKED_RGB24_MAX, RawSampleBuffer, default_type_max, pack_rgb24
from tiff_visualizer.logger import get_logger
from tiff_visualizer.lut import LutCache, lookup, to_display_byte
from tiff_visualizer.normalization import inverse_range, resolve_range
from tiff_visualizer.settings import NormalizationSettings, RenderOptions, ToneSettings
from tiff_visualizer.stats import Stats

LOGGER = get_logger(__name__)


def resolve_type_max(buffer: RawSampleBuffer, options: RenderOptions) -> float:
    """Explicit option first, then 1.0 for float, 65535 for uint16, 255 otherwise."""
    if options.type_max is not None:
        return float(options.type_max)
    return default_type_max(buffer.element_kind, buffer.is_float)


def uses_lut_path(norm: NormalizationSettings, tone: ToneSettings) -> bool:
    return bool(norm.gamma_mode) and not tone.is_identity


def prepare_buffer(buffer: RawSampleBuffer, options: RenderOptions) -> Tuple[RawSampleBuffer, float]:
    """Return the buffer to render and its type max, packing RGB in 24-bit mode."""
    type_max = resolve_type_max(buffer, options)
    if options.rgb_as_24bit_grayscale and buffer.channels >= 3:
        return pack_rgb24(buffer, type_max), PACKED_RGB24_MAX
    return buffer, type_max


def map_channels(
    values: np.ndarray,
    is_float: bool,
    type_max: float,
    norm_range: Tuple[float, float],
    norm: NormalizationSettings,
    tone: ToneSettings,
    lut_cache: Optional[LutCache] = None,
) -> np.ndarray:
    """Map raw color samples to display bytes using the selected path."""
    if uses_lut_path(norm, tone):
        return lookup(values, is_float, type_max, norm_range, tone, cache=lut_cache)
    norm_min, norm_max = norm_range
    inv = inverse_range(norm_min, norm_max)
    with np.errstate(invalid="ignore", over="ignore"):
        normalized = (values.astype(np.float64) - norm_min) * inv
    return to_display_byte(normalized)


def _alpha_bytes(alpha: np.ndarray, type_max: float) -> np.ndarray:
    alpha = alpha.astype(np.float64)
    finite = np.isfinite(alpha)
    out = to_display_byte(np.where(finite, alpha, 0.0) / type_max)
    out[~finite] = 255
    return out


def render(
    buffer: RawSampleBuffer,
    stats: Optional[Stats],
    norm: NormalizationSettings,
    tone: ToneSettings,
    options: Optional[RenderOptions] = None,
    lut_cache: Optional[LutCache] = None,
) -> np.ndarray:
    """Render a buffer to an ``(height, width, 4)`` uint8 RGBA array.

    Parameters
    ----------
    buffer : RawSampleBuffer
        Decoded samples.
    stats : Stats, optional
        Finite min/max used by auto-normalize. In 24-bit grayscale mode these
        must describe the packed values (see ``compute_packed_rgb_stats``).
    norm : NormalizationSettings
        Range selection.
    tone : ToneSettings
        Gamma/exposure; only applied in gamma mode.
    options : RenderOptions, optional
        Type max override, NaN color, vertical flip and 24-bit mode.
    lut_cache : LutCache, optional
        Reuse LUTs across renders.

    Returns
    -------
    numpy.ndarray
        RGBA bytes, top row first (unless ``flip_y``).
    """
    if options is None:
        options = RenderOptions()
    source_channels = buffer.channels
    source, type_max = prepare_buffer(buffer, options)
    norm_range = resolve_range(norm, stats, type_max, source.is_float)
    pixels = source.samples.reshape(-1, source.channels)
    n_pixels = pixels.shape[0]

    color_count = 1 if source.channels <= 2 else 3
    color = pixels[:, :color_count]
    mapped = map_channels(color, source.is_float, type_max, norm_range, norm, tone, lut_cache)

    rgba = np.empty((n_pixels, 4), dtype=np.uint8)
    rgba[:, :3] = mapped
    if color.dtype.kind == "f":
        bad = ~np.all(np.isfinite(color), axis=1)
        if bad.any():
            rgba[bad, :3] = options.nan_color
    if source.channels in (2, 4):
        rgba[:, 3] = _alpha_bytes(pixels[:, -1], type_max)
    else:
        rgba[:, 3] = 255

    LOGGER.debug(
        "Rendered %dx%d channels=%d range=%s lut=%s",
        source.width,
        source.height,
        source_channels,
        norm_range,
        uses_lut_path(norm, tone),
    )
    image = rgba.reshape(source.height, source.width, 4)
    if options.flip_y:
        image = np.ascontiguousarray(image[::-1])
    return image
