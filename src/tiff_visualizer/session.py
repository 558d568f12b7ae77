"""Per-image state: decoded buffer, settings, caches and pixel inspection.

An ``ImageSession`` owns exactly one decoded image. Settings updates are
classified with ``diff_settings`` so cached statistics are only dropped when
they can actually change; a reload replaces the buffer wholesale.
"""

from __future__ import annotations

import math
from pathlib import Path
from typing import Callable, Dict, Optional, Union

import numpy as np

from tiff_visualizer.buffers import DecodedImage, RawSampleBuffer, scale_to_8bit
from tiff_visualizer.histogram import Histogram, compute_histogram
from tiff_visualizer.io import decode_bytes, load_image
from tiff_visualizer.logger import get_logger
from tiff_visualizer.lut import LutCache
from tiff_visualizer.masks import apply_mask_filters
from tiff_visualizer.render import render
from tiff_visualizer.settings import RenderOptions, SettingsChange, ViewSettings, diff_settings
from tiff_visualizer.stats import Stats, StatsCache

LOGGER = get_logger(__name__)

MaskLoader = Callable[[str], DecodedImage]


def format_value(value: float, is_float: bool) -> str:
    """Format one raw sample for display.

    Floats use four significant digits, integers are printed exactly, and
    non-finite values become ``NaN``, ``Inf`` or ``-Inf``.
    """
    value = float(value)
    if math.isnan(value):
        return "NaN"
    if math.isinf(value):
        return "Inf" if value > 0 else "-Inf"
    if is_float:
        return f"{value:.4g}"
    return str(int(round(value)))


class ImageSession:
    """Render and inspect one decoded image under changing view settings.

    Parameters
    ----------
    decoded : DecodedImage
        The image to display.
    settings : ViewSettings, optional
        Initial settings; defaults are used when omitted.
    name : str
        Label used in log records.
    flip_y : bool
        Flip rendered rasters vertically.
    mask_loader : callable, optional
        Resolves ``MaskFilter.mask_path`` to a decoded mask image.
    """

    def __init__(
        self,
        decoded: DecodedImage,
        settings: Optional[ViewSettings] = None,
        name: str = "-",
        flip_y: bool = False,
        mask_loader: Optional[MaskLoader] = None,
    ) -> None:
        self._decoded = decoded
        self._settings = settings or ViewSettings()
        self.name = name
        self.flip_y = flip_y
        self._mask_loader = mask_loader or load_image
        self._mask_buffers: Dict[str, RawSampleBuffer] = {}
        self._stats_cache = StatsCache()
        self._lut_cache = LutCache()
        self._display_buffer = self._apply_masks()

    @classmethod
    def from_path(cls, path: Union[str, Path], settings: Optional[ViewSettings] = None, **kwargs) -> "ImageSession":
        path = Path(path)
        return cls(load_image(path), settings=settings, name=path.name, **kwargs)

    @property
    def decoded(self) -> DecodedImage:
        return self._decoded

    @property
    def buffer(self) -> RawSampleBuffer:
        """Buffer used for display, with mask filters applied."""
        return self._display_buffer

    @property
    def settings(self) -> ViewSettings:
        return self._settings

    @property
    def type_max(self) -> float:
        return float(self._decoded.type_max)

    def _log_extra(self) -> dict:
        return {"image": self.name}

    def _mask_buffer(self, path: str) -> RawSampleBuffer:
        if path not in self._mask_buffers:
            self._mask_buffers[path] = self._mask_loader(path).buffer
        return self._mask_buffers[path]

    def _apply_masks(self) -> RawSampleBuffer:
        filters = [m for m in self._settings.mask_filters if m.enabled]
        if not filters:
            return self._decoded.buffer
        pairs = [(m, self._mask_buffer(m.mask_path)) for m in filters]
        return apply_mask_filters(self._decoded.buffer, pairs)

    def _packed(self) -> bool:
        return bool(self._settings.rgb_as_24bit_grayscale and self._display_buffer.channels >= 3)

    def render_options(self) -> RenderOptions:
        return self._settings.render_options(type_max=self.type_max, flip_y=self.flip_y)

    def update_settings(self, settings: ViewSettings) -> SettingsChange:
        """Apply new settings and drop only the caches they affect."""
        change = diff_settings(self._settings, settings)
        old = self._settings
        self._settings = settings
        if change.masks_changed:
            self._stats_cache.invalidate()
            self._display_buffer = self._apply_masks()
        if (
            change.structural
            or old.normalization.auto_normalize != settings.normalization.auto_normalize
        ):
            self._stats_cache.invalidate()
        LOGGER.debug("Settings updated: %s", change, extra=self._log_extra())
        return change

    def reload(self, source: Union[DecodedImage, bytes]) -> None:
        """Replace the image with a freshly decoded one."""
        decoded = source if isinstance(source, DecodedImage) else decode_bytes(source, name=self.name)
        self._stats_cache.invalidate()
        self._decoded = decoded
        self._display_buffer = self._apply_masks()
        LOGGER.debug("Reloaded %s", decoded.format, extra=self._log_extra())

    def stats(self) -> Optional[Stats]:
        """Finite min/max of the displayed values (packed values in 24-bit mode)."""
        return self._stats_cache.get(self._display_buffer, self.type_max, packed_rgb24=self._packed())

    def render(self) -> np.ndarray:
        """Render the current image to an ``(H, W, 4)`` uint8 array."""
        return render(
            self._display_buffer,
            self.stats(),
            self._settings.normalization,
            self._settings.tone,
            self.render_options(),
            lut_cache=self._lut_cache,
        )

    def histogram(self) -> Histogram:
        """Compute a fresh histogram under the current settings."""
        return compute_histogram(
            self._display_buffer,
            self._settings.normalization,
            self._settings.tone,
            self.stats(),
            self.render_options(),
            lut_cache=self._lut_cache,
        )

    def pixel_text(self, x: int, y: int) -> str:
        """Raw value(s) at pixel ``(x, y)`` for a status bar.

        Returns an empty string outside the image. ``y`` counts from the top
        row of the decoded data.
        """
        buffer = self._display_buffer
        if not (0 <= x < buffer.width and 0 <= y < buffer.height):
            return ""
        pixel = buffer.as_image()[y, x]
        is_float = buffer.is_float
        settings = self._settings
        if settings.rgb_as_24bit_grayscale and buffer.channels >= 3:
            rgb = pixel[:3].astype(np.float64)
            if not np.all(np.isfinite(rgb)):
                return "NaN"
            r, g, b = (int(v) for v in scale_to_8bit(rgb, self.type_max))
            packed = (r << 16) | (g << 8) | b
            return f"{packed / settings.scale_24bit_factor:.3f}"
        if buffer.channels == 1:
            value = float(pixel[0])
            if settings.normalization.normalized_float_mode and not is_float and math.isfinite(value):
                return f"{value / self.type_max:.4g}"
            return format_value(value, is_float)
        if buffer.channels == 2:
            return f"{format_value(pixel[0], is_float)} A:{format_value(pixel[1], is_float)}"
        text = " ".join(format_value(v, is_float) for v in pixel[:3])
        if buffer.channels == 4:
            text += f" A:{format_value(pixel[3], is_float)}"
        return text
