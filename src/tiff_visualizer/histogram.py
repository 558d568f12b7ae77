"""256-bin histograms computed from raw samples under the display transform.

Bins follow the renderer: the direct path bins ``floor(normalized * 255)``
and the LUT path bins the LUT output byte, so a histogram always describes
what is on screen. Raw value statistics are tracked separately so tooltips
can show true data values.
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, Iterable, Optional, Tuple

import numpy as np
import pandas as pd

from tiff_visualizer.buffers import RawSampleBuffer
from tiff_visualizer.logger import get_logger
from tiff_visualizer.lut import (
    FLOAT_LUT_SIZE,
    LutCache,
    build_lut,
    lookup,
    round_half_up,
    uses_integer_lut,
)
from tiff_visualizer.normalization import inverse_range, resolve_range
from tiff_visualizer.render import prepare_buffer, uses_lut_path
from tiff_visualizer.settings import NormalizationSettings, RenderOptions, ToneSettings
from tiff_visualizer.stats import Stats

LOGGER = get_logger(__name__)

NUM_BINS = 256
CHANNELS = ("r", "g", "b", "luminance")
LUMA_WEIGHTS = (0.299, 0.587, 0.114)
HEIGHT_FRACTION = 0.95


@dataclass(frozen=True)
class BinStats:
    """Occupied-bin summary of one channel (defaults 0/255 when empty)."""

    min_bin: int = 0
    max_bin: int = NUM_BINS - 1
    mean_bin: float = 0.0
    total: int = 0


@dataclass(frozen=True)
class ValueStats:
    """Raw-value summary of one channel; None when no finite sample was binned."""

    min: Optional[float] = None
    max: Optional[float] = None
    mean: Optional[float] = None


@dataclass(frozen=True)
class ValueRange:
    """Raw range mapped onto bins 0..255."""

    min: float
    max: float
    is_float: bool


@dataclass(frozen=True)
class _BinMapping:
    norm_range: Tuple[float, float]
    tone: ToneSettings
    use_lut: bool
    is_float: bool
    type_max: float


@dataclass(frozen=True, eq=False)
class Histogram:
    """Per-channel counts plus statistics.

    Attributes
    ----------
    r, g, b, luminance : numpy.ndarray
        256 counts each.
    nan_count : int
        Pixels skipped because a color channel was NaN or infinite.
    value_range : ValueRange
        Normalization range that maps onto the bins.
    stats : dict
        ``BinStats`` per channel name.
    value_stats : dict
        ``ValueStats`` per color channel (r, g, b).
    """

    r: np.ndarray
    g: np.ndarray
    b: np.ndarray
    luminance: np.ndarray
    nan_count: int
    value_range: ValueRange
    stats: Dict[str, BinStats] = field(default_factory=dict)
    value_stats: Dict[str, ValueStats] = field(default_factory=dict)
    _mapping: Optional[_BinMapping] = field(default=None, repr=False, compare=False)

    def channel(self, name: str) -> np.ndarray:
        if name not in CHANNELS:
            raise KeyError(f"Unknown histogram channel: {name}")
        return getattr(self, name)

    @property
    def total(self) -> int:
        """Number of binned pixels."""
        return int(self.r.sum())

    def original_value_range(self, bin_index: int) -> Optional[Tuple[float, float]]:
        """Raw value range that lands in ``bin_index``.

        Returns None when no raw value maps to the bin (possible on the LUT
        path, where the tone curve can skip output bytes).
        """
        if not 0 <= bin_index < NUM_BINS:
            raise IndexError(f"Bin index out of range: {bin_index}")
        mapping = self._mapping
        if mapping is None:
            return None
        norm_min, norm_max = mapping.norm_range
        span = norm_max - norm_min
        if not mapping.use_lut:
            if span <= 0:
                return (norm_min, norm_min) if bin_index == 0 else None
            lo = norm_min + bin_index / (NUM_BINS - 1) * span
            hi = norm_min + min(bin_index + 1, NUM_BINS - 1) / (NUM_BINS - 1) * span
            return float(lo), float(hi)
        if uses_integer_lut(mapping.is_float, mapping.type_max):
            lut = build_lut(mapping.tone, mapping.norm_range, int(mapping.type_max) + 1)
            positions = np.flatnonzero(lut == bin_index)
            if positions.size == 0:
                return None
            return float(positions[0]), float(positions[-1])
        lut = build_lut(mapping.tone, (0.0, float(FLOAT_LUT_SIZE - 1)), FLOAT_LUT_SIZE)
        positions = np.flatnonzero(lut == bin_index)
        if positions.size == 0:
            return None
        scale = span / (FLOAT_LUT_SIZE - 1)
        return float(norm_min + positions[0] * scale), float(norm_min + positions[-1] * scale)


def _bin_stats(counts: np.ndarray) -> BinStats:
    total = int(counts.sum())
    if total == 0:
        return BinStats()
    occupied = np.flatnonzero(counts)
    mean = float(np.dot(np.arange(NUM_BINS), counts) / total)
    return BinStats(min_bin=int(occupied[0]), max_bin=int(occupied[-1]), mean_bin=mean, total=total)


def _value_stats(values: np.ndarray) -> ValueStats:
    if values.size == 0:
        return ValueStats()
    values = values.astype(np.float64)
    return ValueStats(min=float(values.min()), max=float(values.max()), mean=float(values.mean()))


def compute_histogram(
    buffer: RawSampleBuffer,
    norm: NormalizationSettings,
    tone: ToneSettings,
    stats: Optional[Stats],
    options: Optional[RenderOptions] = None,
    lut_cache: Optional[LutCache] = None,
) -> Histogram:
    """Build a fresh histogram for ``buffer``.

    Uses the same range, path selection and 24-bit packing as ``render``.
    Gray sources contribute the same bin to R, G and B. Luminance is computed
    from the already-binned R, G, B indices.
    """
    if options is None:
        options = RenderOptions()
    source, type_max = prepare_buffer(buffer, options)
    norm_range = resolve_range(norm, stats, type_max, source.is_float)
    use_lut = uses_lut_path(norm, tone)

    pixels = source.samples.reshape(-1, source.channels)
    color = pixels[:, : (1 if source.channels <= 2 else 3)]
    if color.dtype.kind == "f":
        finite = np.all(np.isfinite(color), axis=1)
        valid = color[finite]
    else:
        finite = None
        valid = color
    nan_count = 0 if finite is None else int((~finite).sum())

    if use_lut:
        bins = lookup(valid, source.is_float, type_max, norm_range, tone, cache=lut_cache).astype(np.intp)
    else:
        inv = inverse_range(*norm_range)
        scaled = np.floor((valid.astype(np.float64) - norm_range[0]) * inv * (NUM_BINS - 1))
        bins = np.clip(scaled, 0, NUM_BINS - 1).astype(np.intp)
    if bins.shape[1] == 1:
        bins = np.repeat(bins, 3, axis=1)
        valid = np.repeat(valid, 3, axis=1)

    counts = {
        name: np.bincount(bins[:, idx], minlength=NUM_BINS).astype(np.int64)
        for idx, name in enumerate(("r", "g", "b"))
    }
    weights = np.asarray(LUMA_WEIGHTS)
    lum_bins = np.clip(round_half_up(bins @ weights), 0, NUM_BINS - 1).astype(np.intp)
    counts["luminance"] = np.bincount(lum_bins, minlength=NUM_BINS).astype(np.int64)

    LOGGER.debug("Histogram of %d pixels (%d non-finite), lut=%s", bins.shape[0], nan_count, use_lut)
    return Histogram(
        r=counts["r"],
        g=counts["g"],
        b=counts["b"],
        luminance=counts["luminance"],
        nan_count=nan_count,
        value_range=ValueRange(min=norm_range[0], max=norm_range[1], is_float=source.is_float),
        stats={name: _bin_stats(counts[name]) for name in CHANNELS},
        value_stats={name: _value_stats(valid[:, idx]) for idx, name in enumerate(("r", "g", "b"))},
        _mapping=_BinMapping(
            norm_range=norm_range,
            tone=tone,
            use_lut=use_lut,
            is_float=source.is_float,
            type_max=type_max,
        ),
    )


def scaled_heights(
    hist: Histogram,
    mode: str = "sqrt",
    height: float = 1.0,
    channels: Iterable[str] = CHANNELS,
) -> Dict[str, np.ndarray]:
    """Bar heights for display, sharing one scale across channels.

    The tallest bar reaches 95% of ``height``. ``mode`` is ``"linear"`` or
    ``"sqrt"``.
    """
    if mode not in ("linear", "sqrt"):
        raise ValueError(f"Unknown histogram scale mode: {mode}")
    names = list(channels)
    scale = np.sqrt if mode == "sqrt" else (lambda v: v)
    scaled = {name: scale(hist.channel(name).astype(np.float64)) for name in names}
    peak = max((float(v.max()) for v in scaled.values()), default=0.0)
    if peak <= 0:
        return {name: np.zeros(NUM_BINS) for name in names}
    return {name: values / peak * height * HEIGHT_FRACTION for name, values in scaled.items()}


def histogram_to_dataframe(hist: Histogram) -> pd.DataFrame:
    """One row per bin with counts for every channel."""
    return pd.DataFrame(
        {
            "bin": np.arange(NUM_BINS),
            "r": hist.r,
            "g": hist.g,
            "b": hist.b,
            "luminance": hist.luminance,
        },
        columns=["bin", *CHANNELS],
    )


def save_histogram_csv(hist: Histogram, path: Path, meta: Optional[dict] = None) -> None:
    """Write histogram counts to CSV, with an optional ``#`` metadata line."""
    df = histogram_to_dataframe(hist)
    with Path(path).open("w", encoding="utf-8") as handle:
        if meta:
            handle.write(f"# tiff_visualizer: {json.dumps(meta)}\n")
        df.to_csv(handle, index=False)


def plot_histogram(ax, hist: Histogram, mode: str = "sqrt", show_luminance: bool = False) -> None:
    """Draw the histogram curves onto a matplotlib Axes."""
    colors = {"r": "#ff0000", "g": "#00ff00", "b": "#0000ff", "luminance": "#888888"}
    names = ["r", "g", "b"] + (["luminance"] if show_luminance else [])
    heights = scaled_heights(hist, mode=mode, channels=names)
    xs = np.arange(NUM_BINS)
    for name in names:
        ax.fill_between(xs, heights[name], color=colors[name], alpha=0.35, linewidth=0)
        ax.plot(xs, heights[name], color=colors[name], linewidth=1.5, label=name)
    ax.set_xlim(0, NUM_BINS - 1)
    ax.set_ylim(0, 1.0)
    if hist.nan_count:
        ax.set_title(f"NaN: {hist.nan_count}")
