"""Display range selection shared by the renderer and the histogram.

The range decides which raw values map to black and white. Precedence is
strict: auto-normalize, then gamma mode, then a manual range, then the full
native range of the data type.
"""

from __future__ import annotations

import math
from typing import Optional, Tuple

import numpy as np

from tiff_visualizer.settings import NormalizationSettings, ToneSettings
from tiff_visualizer.stats import Stats

LOG_EPSILON = 1e-10


def resolve_range(
    settings: NormalizationSettings,
    stats: Optional[Stats],
    type_max: float,
    is_float: bool,
) -> Tuple[float, float]:
    """Return the ``(min, max)`` raw values that map to 0 and 1.

    Parameters
    ----------
    settings : NormalizationSettings
        Current normalization settings.
    stats : Stats, optional
        Finite min/max of the image; unused unless auto-normalizing.
    type_max : float
        Full-scale value of the source data.
    is_float : bool
        Whether the source data is floating point. Normalized-float manual
        bounds are only rescaled for integer data.

    Notes
    -----
    With auto-normalize and missing or non-finite stats, each bound falls
    back to ``0`` or ``type_max`` on its own.
    """
    if settings.auto_normalize:
        norm_min = stats.min if stats is not None and math.isfinite(stats.min) else 0.0
        norm_max = stats.max if stats is not None and math.isfinite(stats.max) else float(type_max)
        return float(norm_min), float(norm_max)
    if settings.gamma_mode:
        return 0.0, float(type_max)
    if settings.has_manual_range:
        norm_min, norm_max = float(settings.min), float(settings.max)
        if settings.normalized_float_mode and not is_float:
            norm_min *= type_max
            norm_max *= type_max
        return norm_min, norm_max
    return 0.0, float(type_max)


def inverse_range(norm_min: float, norm_max: float) -> float:
    """``1 / (max - min)`` for a positive range, otherwise 0."""
    span = norm_max - norm_min
    return 1.0 / span if span > 0 else 0.0


def normalize(values, norm_min: float, inv_range: float):
    """Map raw values to normalized values (not clamped)."""
    return (np.asarray(values, dtype=np.float64) - norm_min) * inv_range


def log_interpolate(t, lo: float, hi: float):
    """Interpolate between ``lo`` and ``hi`` in log10 space.

    Magnitudes below 1e-10 are clamped before taking the log. A fully
    negative range interpolates the magnitudes and flips the sign. A range
    whose low end is negative and high end is not falls back to linear
    interpolation.
    """
    t = np.asarray(t, dtype=np.float64)
    if lo < 0 <= hi:
        return lo + t * (hi - lo)
    log_lo = math.log10(max(abs(lo), LOG_EPSILON))
    log_hi = math.log10(max(abs(hi), LOG_EPSILON))
    value = np.power(10.0, log_lo + t * (log_hi - log_lo))
    if lo < 0 and hi < 0:
        value = -value
    return value


def effective_visualization_range(tone: ToneSettings, norm_min: float, norm_max: float) -> Tuple[float, float]:
    """Raw input range that maps below full white after tone mapping.

    Values above the returned max saturate once exposure and gamma-in are
    applied. Identity tone returns the normalization range unchanged.
    """
    if tone.is_identity:
        return norm_min, norm_max
    exposure_factor = 2.0**tone.exposure_stops
    normalized_threshold = (1.0 / exposure_factor) ** (1.0 / tone.gamma_in)
    return norm_min, normalized_threshold * (norm_max - norm_min) + norm_min
