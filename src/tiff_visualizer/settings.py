"""Display settings: normalization, tone mapping and render options.

Settings arrive from the host application as a nested JSON object
(``normalization``/``gamma``/``brightness`` blocks plus a few flags). They are
validated once here and passed around as frozen dataclasses.

Example
-------
{
  "normalization": {"min": 0.0, "max": 1.0, "autoNormalize": true, "gammaMode": false},
  "gamma": {"in": 1.0, "out": 1.0},
  "brightness": {"offset": 0.0},
  "nanColor": "fuchsia",
  "rgbAs24BitGrayscale": false,
  "scale24BitFactor": 1000,
  "normalizedFloatMode": false,
  "maskFilters": []
}
"""

from __future__ import annotations

import json
import math
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Optional, Tuple

from tiff_visualizer.masks import MaskFilter, mask_filter_from_dict, mask_filter_to_dict

IDENTITY_TOLERANCE = 1e-3

NAN_COLORS = {
    "black": (0, 0, 0),
    "fuchsia": (255, 0, 255),
}


def _require_finite(name: str, value: float) -> float:
    value = float(value)
    if not math.isfinite(value):
        raise ValueError(f"{name} must be finite, got {value}")
    return value


@dataclass(frozen=True)
class NormalizationSettings:
    """How the display range is chosen.

    Parameters
    ----------
    auto_normalize : bool
        Stretch the observed finite min/max to the output range.
    gamma_mode : bool
        Use the full native range and enable gamma/exposure correction.
    min, max : float, optional
        Manual range; used only when neither mode flag is set.
    normalized_float_mode : bool
        Manual bounds are fractions of full scale for integer images.
    """

    auto_normalize: bool = False
    gamma_mode: bool = False
    min: Optional[float] = None
    max: Optional[float] = None
    normalized_float_mode: bool = False

    def __post_init__(self) -> None:
        if self.min is not None:
            object.__setattr__(self, "min", _require_finite("min", self.min))
        if self.max is not None:
            object.__setattr__(self, "max", _require_finite("max", self.max))

    @property
    def has_manual_range(self) -> bool:
        return self.min is not None and self.max is not None


@dataclass(frozen=True)
class ToneSettings:
    """Gamma-in, exposure and gamma-out applied to normalized values."""

    gamma_in: float = 1.0
    gamma_out: float = 1.0
    exposure_stops: float = 0.0

    def __post_init__(self) -> None:
        for name in ("gamma_in", "gamma_out"):
            value = _require_finite(name, getattr(self, name))
            if value <= 0:
                raise ValueError(f"{name} must be > 0, got {value}")
            object.__setattr__(self, name, value)
        object.__setattr__(self, "exposure_stops", _require_finite("exposure_stops", self.exposure_stops))

    @property
    def is_identity(self) -> bool:
        return (
            abs(self.gamma_in - 1.0) < IDENTITY_TOLERANCE
            and abs(self.gamma_out - 1.0) < IDENTITY_TOLERANCE
            and abs(self.exposure_stops) < IDENTITY_TOLERANCE
        )


@dataclass(frozen=True)
class RenderOptions:
    """Per-render switches that do not affect the normalization range."""

    type_max: Optional[float] = None
    nan_color: Tuple[int, int, int] = NAN_COLORS["black"]
    flip_y: bool = False
    rgb_as_24bit_grayscale: bool = False

    def __post_init__(self) -> None:
        color = tuple(int(c) for c in self.nan_color)
        if len(color) != 3 or any(c < 0 or c > 255 for c in color):
            raise ValueError(f"nan_color must be three 0-255 values, got {self.nan_color}")
        object.__setattr__(self, "nan_color", color)
        if self.type_max is not None:
            type_max = _require_finite("type_max", self.type_max)
            if type_max <= 0:
                raise ValueError(f"type_max must be > 0, got {type_max}")
            object.__setattr__(self, "type_max", type_max)


@dataclass(frozen=True)
class ViewSettings:
    """Everything the host sends for one image view."""

    normalization: NormalizationSettings = field(default_factory=NormalizationSettings)
    tone: ToneSettings = field(default_factory=ToneSettings)
    nan_color: str = "black"
    rgb_as_24bit_grayscale: bool = False
    scale_24bit_factor: float = 1000.0
    mask_filters: Tuple[MaskFilter, ...] = ()

    def __post_init__(self) -> None:
        if self.nan_color not in NAN_COLORS:
            raise ValueError(f"Unknown nan color: {self.nan_color}")
        factor = _require_finite("scale_24bit_factor", self.scale_24bit_factor)
        if factor == 0:
            raise ValueError("scale_24bit_factor must be non-zero")
        object.__setattr__(self, "scale_24bit_factor", factor)
        object.__setattr__(self, "mask_filters", tuple(self.mask_filters))

    def render_options(self, type_max: Optional[float] = None, flip_y: bool = False) -> RenderOptions:
        """Build RenderOptions for a specific image."""
        return RenderOptions(
            type_max=type_max,
            nan_color=NAN_COLORS[self.nan_color],
            flip_y=flip_y,
            rgb_as_24bit_grayscale=self.rgb_as_24bit_grayscale,
        )

    def with_normalization(self, **changes) -> "ViewSettings":
        return replace(self, normalization=replace(self.normalization, **changes))

    def with_tone(self, **changes) -> "ViewSettings":
        return replace(self, tone=replace(self.tone, **changes))


@dataclass(frozen=True)
class SettingsChange:
    """Classification of a settings update.

    ``parameters_only`` updates can reuse decoded data and cached stats;
    ``structural`` updates change how samples are interpreted.
    """

    parameters_only: bool
    structural: bool
    masks_changed: bool


def diff_settings(old: ViewSettings, new: ViewSettings) -> SettingsChange:
    """Compare two settings snapshots."""
    masks_changed = old.mask_filters != new.mask_filters
    structural = (
        old.rgb_as_24bit_grayscale != new.rgb_as_24bit_grayscale
        or old.scale_24bit_factor != new.scale_24bit_factor
        or old.normalization.normalized_float_mode != new.normalization.normalized_float_mode
    )
    return SettingsChange(
        parameters_only=not masks_changed and not structural,
        structural=structural,
        masks_changed=masks_changed,
    )


def _opt_float(value) -> Optional[float]:
    return None if value is None else float(value)


def view_settings_from_dict(data: dict, fallback: Optional[ViewSettings] = None) -> ViewSettings:
    """Deserialize host settings, keeping fallback values for missing keys."""
    if fallback is None:
        fallback = ViewSettings()
    norm_in = data.get("normalization") or {}
    gamma_in = data.get("gamma") or {}
    brightness_in = data.get("brightness") or {}
    fb_norm = fallback.normalization
    fb_tone = fallback.tone
    normalization = NormalizationSettings(
        auto_normalize=bool(norm_in.get("autoNormalize", fb_norm.auto_normalize)),
        gamma_mode=bool(norm_in.get("gammaMode", fb_norm.gamma_mode)),
        min=_opt_float(norm_in.get("min", fb_norm.min)),
        max=_opt_float(norm_in.get("max", fb_norm.max)),
        normalized_float_mode=bool(data.get("normalizedFloatMode", fb_norm.normalized_float_mode)),
    )
    tone = ToneSettings(
        gamma_in=float(gamma_in.get("in", fb_tone.gamma_in)),
        gamma_out=float(gamma_in.get("out", fb_tone.gamma_out)),
        exposure_stops=float(brightness_in.get("offset", fb_tone.exposure_stops)),
    )
    masks = data.get("maskFilters")
    return ViewSettings(
        normalization=normalization,
        tone=tone,
        nan_color=str(data.get("nanColor", fallback.nan_color)),
        rgb_as_24bit_grayscale=bool(data.get("rgbAs24BitGrayscale", fallback.rgb_as_24bit_grayscale)),
        scale_24bit_factor=float(data.get("scale24BitFactor", fallback.scale_24bit_factor)),
        mask_filters=tuple(mask_filter_from_dict(m) for m in masks) if masks is not None else fallback.mask_filters,
    )


def view_settings_to_dict(settings: ViewSettings) -> dict:
    """Serialize settings in the host's nested schema."""
    norm = settings.normalization
    payload = {
        "normalization": {
            "autoNormalize": bool(norm.auto_normalize),
            "gammaMode": bool(norm.gamma_mode),
        },
        "gamma": {"in": float(settings.tone.gamma_in), "out": float(settings.tone.gamma_out)},
        "brightness": {"offset": float(settings.tone.exposure_stops)},
        "nanColor": settings.nan_color,
        "rgbAs24BitGrayscale": bool(settings.rgb_as_24bit_grayscale),
        "scale24BitFactor": float(settings.scale_24bit_factor),
        "normalizedFloatMode": bool(norm.normalized_float_mode),
        "maskFilters": [mask_filter_to_dict(m) for m in settings.mask_filters],
    }
    if norm.min is not None:
        payload["normalization"]["min"] = float(norm.min)
    if norm.max is not None:
        payload["normalization"]["max"] = float(norm.max)
    return payload


def load_settings(path: Path) -> ViewSettings:
    """Load settings from a JSON file."""
    data = json.loads(Path(path).read_text(encoding="utf-8"))
    if not isinstance(data, dict):
        raise ValueError(f"Settings file must contain a JSON object: {path}")
    return view_settings_from_dict(data)


def save_settings(settings: ViewSettings, path: Path) -> None:
    """Write settings to a JSON file."""
    Path(path).write_text(json.dumps(view_settings_to_dict(settings), indent=2), encoding="utf-8")
