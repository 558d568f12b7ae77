"""Mask filtering: hide samples where a companion mask crosses a threshold."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable, Optional, Tuple

import numpy as np

from tiff_visualizer.buffers import RawSampleBuffer
from tiff_visualizer.logger import get_logger

LOGGER = get_logger(__name__)


@dataclass(frozen=True)
class MaskFilter:
    """One mask applied on top of an image.

    Parameters
    ----------
    mask_path : str
        Location of the mask image (resolved by the caller).
    threshold : float
        Mask values strictly beyond this threshold hide the pixel.
    filter_higher : bool
        If True, hide where ``mask > threshold``; otherwise where ``mask < threshold``.
    enabled : bool
        Disabled filters are kept in settings but skipped.
    """

    mask_path: str
    threshold: float = 0.5
    filter_higher: bool = True
    enabled: bool = True


def mask_filter_from_dict(data: dict) -> MaskFilter:
    return MaskFilter(
        mask_path=str(data.get("maskUri", data.get("mask_path", ""))),
        threshold=float(data.get("threshold", 0.5)),
        filter_higher=bool(data.get("filterHigher", data.get("filter_higher", True))),
        enabled=bool(data.get("enabled", True)),
    )


def mask_filter_to_dict(mask: MaskFilter) -> dict:
    return {
        "maskUri": mask.mask_path,
        "threshold": float(mask.threshold),
        "filterHigher": bool(mask.filter_higher),
        "enabled": bool(mask.enabled),
    }


def apply_mask_filter(
    samples: np.ndarray,
    mask: np.ndarray,
    threshold: float,
    filter_higher: bool,
    channels: int = 1,
) -> np.ndarray:
    """Return a float32 copy of ``samples`` with masked pixels set to NaN.

    Parameters
    ----------
    samples : numpy.ndarray
        Flat interleaved samples of the image.
    mask : numpy.ndarray
        One value per pixel (only its first channel is used if it has more).
    threshold : float
        Comparison threshold.
    filter_higher : bool
        Hide ``mask > threshold`` when True, ``mask < threshold`` otherwise.
    channels : int
        Channel count of ``samples``; every channel of a hidden pixel becomes NaN.
    """
    out = np.array(samples, dtype=np.float32, copy=True).reshape(-1, channels)
    mask_values = np.asarray(mask, dtype=np.float64).reshape(-1)
    if mask_values.size != out.shape[0]:
        if mask_values.size % out.shape[0] == 0:
            mask_values = mask_values.reshape(out.shape[0], -1)[:, 0]
        else:
            raise ValueError(f"Mask has {mask_values.size} values for {out.shape[0]} pixels")
    if filter_higher:
        hidden = mask_values > threshold
    else:
        hidden = mask_values < threshold
    out[hidden, :] = np.nan
    return out.reshape(-1)


def apply_mask_filters(
    buffer: RawSampleBuffer,
    masks: Iterable[Tuple[MaskFilter, RawSampleBuffer]],
) -> RawSampleBuffer:
    """Apply enabled filters in order and return a new float buffer.

    Masks whose size differs from the image are skipped with a warning.
    Integer images become float32 so hidden pixels can hold NaN; ``is_float``
    keeps its original value so normalization treats the data the same way.
    """
    samples: Optional[np.ndarray] = None
    for mask_filter, mask_buffer in masks:
        if not mask_filter.enabled:
            continue
        if (mask_buffer.width, mask_buffer.height) != (buffer.width, buffer.height):
            LOGGER.warning(
                "Skipping mask %s: size %dx%d does not match image %dx%d",
                mask_filter.mask_path,
                mask_buffer.width,
                mask_buffer.height,
                buffer.width,
                buffer.height,
            )
            continue
        mask_values = mask_buffer.samples.reshape(-1, mask_buffer.channels)[:, 0]
        samples = apply_mask_filter(
            buffer.samples if samples is None else samples,
            mask_values,
            mask_filter.threshold,
            mask_filter.filter_higher,
            channels=buffer.channels,
        )
    if samples is None:
        return buffer
    return RawSampleBuffer(
        width=buffer.width,
        height=buffer.height,
        channels=buffer.channels,
        element_kind=buffer.element_kind,
        is_float=buffer.is_float,
        samples=samples,
    )
