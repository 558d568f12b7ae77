"""Gamma and exposure correction of normalized values."""

from __future__ import annotations

import numpy as np

from tiff_visualizer.settings import ToneSettings


def apply_tone(normalized, tone: ToneSettings):
    """Apply gamma-in, exposure and gamma-out.

    ``linear = normalized ** gamma_in * 2 ** exposure_stops`` followed by
    ``linear ** (1 / gamma_out)``. Results are not clamped. Identity settings
    return the input unchanged. Negative inputs with a fractional gamma give
    NaN, matching ``pow`` semantics.

    Parameters
    ----------
    normalized : float or numpy.ndarray
        Normalized values, nominally in [0, 1].
    tone : ToneSettings
        Gamma and exposure settings.
    """
    if tone.is_identity:
        return normalized
    scalar = np.isscalar(normalized)
    values = np.asarray(normalized, dtype=np.float64)
    with np.errstate(invalid="ignore", divide="ignore", over="ignore"):
        linear = np.power(values, tone.gamma_in)
        if tone.exposure_stops != 0:
            linear = linear * (2.0**tone.exposure_stops)
        out = np.power(linear, 1.0 / tone.gamma_out)
    return float(out) if scalar else out
