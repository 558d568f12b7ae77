"""Portable Float Map (PFM) decoding."""

from __future__ import annotations

import math
from typing import Tuple

import numpy as np

from tiff_visualizer.buffers import DecodedImage, ElementKind, RawSampleBuffer
from tiff_visualizer.errors import BadMagicError, MalformedHeaderError, TruncatedError
from tiff_visualizer.logger import get_logger

LOGGER = get_logger(__name__)

PFM_MAGICS = (b"Pf", b"PF")


def _next_line(data: bytes, offset: int, skip_comments: bool) -> Tuple[bytes, int]:
    """Return the next stripped header line and the offset just past its newline."""
    while offset < len(data):
        end = data.find(b"\n", offset)
        if end < 0:
            end = len(data)
        line = data[offset:end].strip()
        offset = end + 1
        if not line or (skip_comments and line.startswith(b"#")):
            continue
        return line, offset
    raise MalformedHeaderError("Unexpected end of PFM header")


def decode_pfm(data: bytes) -> DecodedImage:
    """Decode a PFM payload into top-down float32 samples.

    The header is three text lines: ``Pf`` (gray) or ``PF`` (RGB), then
    ``width height``, then a scale whose sign selects the byte order
    (negative means little-endian). Rows are stored bottom-up and flipped
    here exactly once.
    """
    magic, offset = _next_line(data, 0, skip_comments=False)
    if magic not in PFM_MAGICS:
        raise BadMagicError("Invalid PFM magic", token=magic.decode("ascii", errors="replace"))
    channels = 3 if magic == b"PF" else 1

    dims_line, offset = _next_line(data, offset, skip_comments=True)
    dims = dims_line.split()
    try:
        width, height = int(dims[0]), int(dims[1])
    except (IndexError, ValueError):
        raise MalformedHeaderError(f"Invalid PFM dimensions: {dims_line!r}", token=dims_line) from None
    if width <= 0 or height <= 0:
        raise MalformedHeaderError(f"Invalid PFM dimensions {width}x{height}", token=(width, height))

    scale_line, offset = _next_line(data, offset, skip_comments=True)
    try:
        scale = float(scale_line)
    except ValueError:
        raise MalformedHeaderError(f"Invalid PFM scale: {scale_line!r}", token=scale_line) from None
    if not math.isfinite(scale):
        raise MalformedHeaderError(f"Invalid PFM scale: {scale}", token=scale)
    little_endian = scale < 0

    count = width * height * channels
    needed = count * 4
    if len(data) - offset < needed:
        raise TruncatedError(f"PFM payload has {len(data) - offset} bytes, expected {needed}", token=needed)
    dtype = np.dtype("<f4" if little_endian else ">f4")
    raw = np.frombuffer(data, dtype=dtype, count=count, offset=offset)
    image = raw.reshape(height, width, channels)[::-1]
    samples = np.ascontiguousarray(image, dtype=np.float32)

    buffer = RawSampleBuffer(
        width=width,
        height=height,
        channels=channels,
        element_kind=ElementKind.F32,
        is_float=True,
        samples=samples,
    )
    LOGGER.debug("Decoded PFM %dx%d channels=%d little_endian=%s", width, height, channels, little_endian)
    return DecodedImage(
        buffer=buffer,
        type_max=1.0,
        metadata={
            "format": "pfm",
            "scale": abs(scale),
            "little_endian": little_endian,
            "bits_per_sample": 32,
            "sample_format": "float",
        },
    )
