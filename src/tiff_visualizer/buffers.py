"""Raw sample containers shared by decoders, renderers and histograms.

Conventions
-----------
- ``samples`` is a flat array, row-major, top row first, channel-interleaved.
- Buffers are read-only once built; a reload produces a new buffer.
"""

from __future__ import annotations

import enum
from dataclasses import dataclass, field
from typing import Any, Dict, Tuple

import numpy as np


class ElementKind(enum.Enum):
    """Storage type of the source samples before any promotion."""

    U8 = ("u", 8)
    U16 = ("u", 16)
    U32 = ("u", 32)
    U64 = ("u", 64)
    I8 = ("i", 8)
    I16 = ("i", 16)
    I32 = ("i", 32)
    I64 = ("i", 64)
    F16 = ("f", 16)
    F32 = ("f", 32)
    F64 = ("f", 64)

    @property
    def bits(self) -> int:
        return self.value[1]

    @property
    def is_float(self) -> bool:
        return self.value[0] == "f"

    @property
    def is_signed(self) -> bool:
        return self.value[0] in ("i", "f")

    @property
    def full_scale(self) -> float:
        """Full-scale value: 1.0 for floats, the largest representable integer otherwise."""
        if self.is_float:
            return 1.0
        if self.is_signed:
            return float(2 ** (self.bits - 1) - 1)
        return float(2**self.bits - 1)


_KIND_BY_DTYPE = {
    np.dtype(np.uint8): ElementKind.U8,
    np.dtype(np.uint16): ElementKind.U16,
    np.dtype(np.uint32): ElementKind.U32,
    np.dtype(np.uint64): ElementKind.U64,
    np.dtype(np.int8): ElementKind.I8,
    np.dtype(np.int16): ElementKind.I16,
    np.dtype(np.int32): ElementKind.I32,
    np.dtype(np.int64): ElementKind.I64,
    np.dtype(np.float16): ElementKind.F16,
    np.dtype(np.float32): ElementKind.F32,
    np.dtype(np.float64): ElementKind.F64,
}


def element_kind_for_dtype(dtype: np.dtype) -> ElementKind:
    """Map a numpy dtype (any byte order) to its ElementKind."""
    key = np.dtype(dtype).newbyteorder("=")
    try:
        return _KIND_BY_DTYPE[key]
    except KeyError:
        raise ValueError(f"No element kind for dtype {dtype}") from None


@dataclass(frozen=True)
class RawSampleBuffer:
    """Flat, interleaved raw samples for one decoded image.

    Parameters
    ----------
    width, height : int
        Image size in pixels.
    channels : int
        Samples per pixel, 1 to 4.
    element_kind : ElementKind
        Type of the samples as stored in the source file.
    is_float : bool
        Whether the source data is floating point. Integer sources that were
        promoted to float32 (NPY) keep ``is_float=False``.
    samples : numpy.ndarray
        Flat array of ``width * height * channels`` values.
    """

    width: int
    height: int
    channels: int
    element_kind: ElementKind
    is_float: bool
    samples: np.ndarray = field(repr=False)

    def __post_init__(self) -> None:
        if self.channels not in (1, 2, 3, 4):
            raise ValueError(f"Unsupported channel count: {self.channels}")
        if self.width < 0 or self.height < 0:
            raise ValueError(f"Invalid size {self.width}x{self.height}")
        flat = np.ascontiguousarray(self.samples).reshape(-1)
        expected = self.width * self.height * self.channels
        if flat.size != expected:
            raise ValueError(f"Expected {expected} samples for {self.width}x{self.height}x{self.channels}, got {flat.size}")
        if flat is self.samples:
            flat = flat.view()
        flat.setflags(write=False)
        object.__setattr__(self, "samples", flat)

    @property
    def pixel_count(self) -> int:
        return self.width * self.height

    @property
    def shape(self) -> Tuple[int, int, int]:
        return (self.height, self.width, self.channels)

    def as_image(self) -> np.ndarray:
        """Return a read-only (H, W, C) view of the samples."""
        return self.samples.reshape(self.shape)


def default_type_max(element_kind: ElementKind, is_float: bool) -> float:
    """Renderer fallback when no explicit TypeMax is known.

    Decided from the source kind, not the sample dtype, since NPY and masked
    integer images carry float32 samples.
    """
    if is_float:
        return 1.0
    if element_kind == ElementKind.U16:
        return 65535.0
    return 255.0


@dataclass(frozen=True)
class DecodedImage:
    """Output of a FormatDecoder: samples, their full-scale value and metadata."""

    buffer: RawSampleBuffer
    type_max: float
    metadata: Dict[str, Any] = field(default_factory=dict)

    @property
    def format(self) -> str:
        return str(self.metadata.get("format", "unknown"))


PACKED_RGB24_MAX = 16777215.0


def scale_to_8bit(samples: np.ndarray, type_max: float) -> np.ndarray:
    """Scale samples to 0-255 integers; uint8 data is returned unchanged."""
    if samples.dtype == np.uint8:
        return samples.astype(np.float64)
    values = np.clip(samples.astype(np.float64), 0.0, type_max)
    return np.floor(values * (255.0 / type_max) + 0.5)


def pack_rgb24(buffer: RawSampleBuffer, type_max: float) -> RawSampleBuffer:
    """Pack the first three channels into one ``(R<<16)|(G<<8)|B`` sample per pixel.

    Pixels with a non-finite R, G or B become NaN so they still render with
    the NaN color.
    """
    if buffer.channels < 3:
        raise ValueError("24-bit packing needs at least three channels")
    rgb = buffer.samples.reshape(-1, buffer.channels)[:, :3]
    finite = np.all(np.isfinite(rgb), axis=1)
    if not finite.all():
        rgb = np.where(np.isfinite(rgb), rgb, 0)
    scaled = scale_to_8bit(rgb, type_max)
    packed = scaled[:, 0] * 65536.0 + scaled[:, 1] * 256.0 + scaled[:, 2]
    packed = np.where(finite, packed, np.nan)
    return RawSampleBuffer(
        width=buffer.width,
        height=buffer.height,
        channels=1,
        element_kind=ElementKind.U32,
        is_float=False,
        samples=packed.astype(np.float32),
    )
