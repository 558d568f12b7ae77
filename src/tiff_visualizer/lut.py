"""Lookup tables mapping raw sample values to display bytes.

A LUT folds normalization, clamping and tone mapping into one ``uint8``
array so every pixel costs a single indexed read. Integer sources index the
table with the raw sample. Float sources are first quantized into a 16-bit
index over the normalization range; the quantization error is accepted.
"""

from __future__ import annotations

from collections import OrderedDict
from dataclasses import dataclass
from typing import Optional, Tuple

import numpy as np

from tiff_visualizer.logger import get_logger
from tiff_visualizer.normalization import inverse_range
from tiff_visualizer.settings import ToneSettings
from tiff_visualizer.tone import apply_tone

LOGGER = get_logger(__name__)

FLOAT_LUT_SIZE = 65536
MAX_INTEGER_LUT_DOMAIN = 65535


def round_half_up(values):
    """Round halves upwards (``floor(x + 0.5)``), unlike numpy's banker's rounding."""
    return np.floor(np.asarray(values, dtype=np.float64) + 0.5)


def to_display_byte(values) -> np.ndarray:
    """Clamp to [0, 1] and scale to 0-255 bytes. NaN maps to 0."""
    clamped = np.clip(np.nan_to_num(np.asarray(values, dtype=np.float64), nan=0.0), 0.0, 1.0)
    return round_half_up(clamped * 255.0).astype(np.uint8)


def build_lut(tone: ToneSettings, norm_range: Tuple[float, float], domain_size: int) -> np.ndarray:
    """Build a read-only LUT of ``domain_size`` entries.

    ``lut[i] = round(clamp01(tone(clamp01((i - min) * inv_range))) * 255)``.

    Parameters
    ----------
    tone : ToneSettings
        Gamma/exposure applied after normalization.
    norm_range : tuple of float
        ``(min, max)`` in index units.
    domain_size : int
        Number of entries, ``type_max + 1`` for integer data.
    """
    if domain_size <= 0:
        raise ValueError(f"LUT domain must be positive, got {domain_size}")
    norm_min, norm_max = norm_range
    inv = inverse_range(norm_min, norm_max)
    index = np.arange(domain_size, dtype=np.float64)
    normalized = np.clip((index - norm_min) * inv, 0.0, 1.0)
    lut = to_display_byte(apply_tone(normalized, tone))
    lut.setflags(write=False)
    return lut


def quantize_float_indices(values: np.ndarray, norm_min: float, norm_max: float) -> np.ndarray:
    """Map float samples to 16-bit LUT indices over ``[norm_min, norm_max]``.

    Non-finite values are mapped to index 0; callers mask them separately.
    """
    inv = inverse_range(norm_min, norm_max)
    values = np.asarray(values, dtype=np.float64)
    with np.errstate(invalid="ignore"):
        scaled = round_half_up((values - norm_min) * (FLOAT_LUT_SIZE - 1) * inv)
    scaled = np.nan_to_num(scaled, nan=0.0, posinf=FLOAT_LUT_SIZE - 1, neginf=0.0)
    return np.clip(scaled, 0, FLOAT_LUT_SIZE - 1).astype(np.intp)


def integer_lut_indices(values: np.ndarray, type_max: int) -> np.ndarray:
    """Index an integer LUT with raw samples (float-promoted samples are rounded)."""
    values = np.asarray(values)
    if values.dtype.kind == "f":
        values = np.nan_to_num(np.rint(values), nan=0.0, posinf=type_max, neginf=0.0)
    return np.clip(values, 0, type_max).astype(np.intp)


def uses_integer_lut(is_float: bool, type_max: float) -> bool:
    """Integer sources with a domain up to 16 bits get an exact per-value LUT."""
    return not is_float and float(type_max).is_integer() and type_max <= MAX_INTEGER_LUT_DOMAIN


def lookup(
    values: np.ndarray,
    is_float: bool,
    type_max: float,
    norm_range: Tuple[float, float],
    tone: ToneSettings,
    cache: Optional["LutCache"] = None,
) -> np.ndarray:
    """Map raw samples to display bytes through the tone-mapping LUT.

    Integer data up to 16 bits indexes a ``type_max + 1`` LUT directly. Float
    data goes through the 65536-entry quantized LUT. Wider integer domains
    (packed 24-bit values, 32/64-bit NPY) apply the tone curve per sample.
    Non-finite samples produce arbitrary bytes; callers overwrite them.
    """
    norm_min, norm_max = norm_range
    if uses_integer_lut(is_float, type_max):
        domain = int(type_max) + 1
        lut = cache.get(tone, norm_range, domain) if cache is not None else build_lut(tone, norm_range, domain)
        return lut[integer_lut_indices(values, int(type_max))]
    if is_float:
        float_range = (0.0, float(FLOAT_LUT_SIZE - 1))
        if cache is not None:
            lut = cache.get(tone, float_range, FLOAT_LUT_SIZE)
        else:
            lut = build_lut(tone, float_range, FLOAT_LUT_SIZE)
        return lut[quantize_float_indices(values, norm_min, norm_max)]
    inv = inverse_range(norm_min, norm_max)
    with np.errstate(invalid="ignore"):
        normalized = np.clip((np.asarray(values, dtype=np.float64) - norm_min) * inv, 0.0, 1.0)
    return to_display_byte(apply_tone(normalized, tone))


LutKey = Tuple[float, float, float, float, float, int]


@dataclass
class LutTelemetry:
    """Hit/miss counters for diagnostics."""

    hits: int = 0
    misses: int = 0

    def hit_ratio(self) -> float:
        total = self.hits + self.misses
        return self.hits / total if total > 0 else 0.0


class LutCache:
    """Small LRU cache of LUTs keyed by tone settings, range and domain size.

    Notes
    -----
    - A LUT depends only on its key, so entries never need invalidation when
      the image changes; stale keys simply age out.
    """

    def __init__(self, max_items: int = 8) -> None:
        self._items: "OrderedDict[LutKey, np.ndarray]" = OrderedDict()
        self._max_items = max(1, int(max_items))
        self._telemetry = LutTelemetry()

    @staticmethod
    def key(tone: ToneSettings, norm_range: Tuple[float, float], domain_size: int) -> LutKey:
        return (
            float(tone.gamma_in),
            float(tone.gamma_out),
            float(tone.exposure_stops),
            float(norm_range[0]),
            float(norm_range[1]),
            int(domain_size),
        )

    def get(self, tone: ToneSettings, norm_range: Tuple[float, float], domain_size: int) -> np.ndarray:
        """Return a cached LUT, building it on a miss."""
        key = self.key(tone, norm_range, domain_size)
        lut: Optional[np.ndarray] = self._items.get(key)
        if lut is not None:
            self._telemetry.hits += 1
            self._items.move_to_end(key)
            return lut
        self._telemetry.misses += 1
        lut = build_lut(tone, norm_range, domain_size)
        self._items[key] = lut
        while len(self._items) > self._max_items:
            self._items.popitem(last=False)
        LOGGER.debug("Built LUT domain=%d range=%s", domain_size, norm_range)
        return lut

    def clear(self) -> None:
        self._items.clear()

    def telemetry(self) -> LutTelemetry:
        return self._telemetry

    def __len__(self) -> int:
        return len(self._items)
