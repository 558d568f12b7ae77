"""Finite min/max statistics and their cache."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, Optional, Tuple

import numpy as np

from tiff_visualizer.buffers import RawSampleBuffer, pack_rgb24
from tiff_visualizer.logger import get_logger

LOGGER = get_logger(__name__)


@dataclass(frozen=True)
class Stats:
    """Observed finite range of an image."""

    min: float
    max: float


def compute_stats(buffer: RawSampleBuffer) -> Optional[Stats]:
    """Return the finite min/max over the first three channels.

    Returns None when the image holds no finite sample (empty, or all NaN/Inf).
    A 2-channel image includes its second channel.
    """
    if buffer.pixel_count == 0:
        return None
    values = buffer.samples.reshape(-1, buffer.channels)[:, : min(buffer.channels, 3)]
    if values.dtype.kind == "f":
        values = values[np.isfinite(values)]
        if values.size == 0:
            return None
    return Stats(min=float(values.min()), max=float(values.max()))


def compute_packed_rgb_stats(buffer: RawSampleBuffer, type_max: float) -> Optional[Stats]:
    """Stats of the packed 24-bit values used by 24-bit grayscale mode."""
    return compute_stats(pack_rgb24(buffer, type_max))


StatsKey = Tuple[int, bool]


class StatsCache:
    """Caches stats per buffer and per packing mode.

    Notes
    -----
    - Keys use buffer identity; a reload produces a new buffer, so stale
      entries are never hit, but ``invalidate`` drops them explicitly.
    """

    def __init__(self) -> None:
        self._items: Dict[StatsKey, Optional[Stats]] = {}
        self._buffers: Dict[int, RawSampleBuffer] = {}

    def get(self, buffer: RawSampleBuffer, type_max: float, packed_rgb24: bool = False) -> Optional[Stats]:
        """Return cached stats, computing them on first use."""
        packed_rgb24 = bool(packed_rgb24 and buffer.channels >= 3)
        key = (id(buffer), packed_rgb24)
        if key in self._items and self._buffers.get(id(buffer)) is buffer:
            return self._items[key]
        if packed_rgb24:
            stats = compute_packed_rgb_stats(buffer, type_max)
        else:
            stats = compute_stats(buffer)
        LOGGER.debug("Computed stats %s (packed=%s)", stats, packed_rgb24)
        self._items[key] = stats
        self._buffers[id(buffer)] = buffer
        return stats

    def invalidate(self, buffer: Optional[RawSampleBuffer] = None) -> None:
        """Drop entries for one buffer, or everything when ``buffer`` is None."""
        if buffer is None:
            self._items.clear()
            self._buffers.clear()
            LOGGER.debug("Stats cache cleared")
            return
        for key in [k for k in self._items if k[0] == id(buffer)]:
            self._items.pop(key, None)
        self._buffers.pop(id(buffer), None)

    def __len__(self) -> int:
        return len(self._items)
