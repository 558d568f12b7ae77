"""Netpbm decoding: PBM (P1/P4), PGM (P2/P5) and PPM (P3/P6).

Conventions
-----------
- ``maxval`` is the full-scale value; PBM is expanded to 0/255 with
  ``type_max`` 255 (bit 1 is black).
- Binary samples with ``maxval > 255`` are 16-bit big-endian.
- Exactly one whitespace byte separates the header from binary data.
"""

from __future__ import annotations

from typing import List, Optional, Tuple

import numpy as np

from tiff_visualizer.buffers import DecodedImage, ElementKind, RawSampleBuffer
from tiff_visualizer.errors import BadMagicError, FormatError, MalformedHeaderError, TruncatedError, UnsupportedFormatError
from tiff_visualizer.logger import get_logger

LOGGER = get_logger(__name__)

PNM_MAGICS = ("P1", "P2", "P3", "P4", "P5", "P6")
_WHITESPACE = b" \t\n\r\x0b\x0c"
_FORMAT_NAMES = {
    "P1": "PBM (ASCII)",
    "P2": "PGM (ASCII)",
    "P3": "PPM (ASCII)",
    "P4": "PBM (Binary)",
    "P5": "PGM (Binary)",
    "P6": "PPM (Binary)",
}


class _Tokenizer:
    """Whitespace separated tokens with ``#`` comments running to end of line."""

    def __init__(self, data: bytes) -> None:
        self.data = data
        self.offset = 0

    def _skip_space(self) -> None:
        data = self.data
        while self.offset < len(data):
            char = data[self.offset]
            if char == ord("#"):
                end = data.find(b"\n", self.offset)
                self.offset = len(data) if end < 0 else end + 1
            elif char in _WHITESPACE:
                self.offset += 1
            else:
                break

    def next(self) -> Optional[str]:
        self._skip_space()
        start = self.offset
        data = self.data
        while self.offset < len(data) and data[self.offset] not in _WHITESPACE and data[self.offset] != ord("#"):
            self.offset += 1
        if start == self.offset:
            return None
        return data[start : self.offset].decode("ascii", errors="replace")

    def next_int(self, field: str) -> int:
        token = self.next()
        if token is None:
            raise MalformedHeaderError(f"Missing {field}")
        try:
            return int(token, 10)
        except ValueError:
            raise MalformedHeaderError(f"Invalid {field}: {token}", token=token) from None


def _read_ascii_values(tok: _Tokenizer, count: int, maxval: int, split_digits: bool) -> List[int]:
    values: List[int] = []
    while len(values) < count:
        token = tok.next()
        if token is None:
            raise TruncatedError(f"Expected {count} samples, found {len(values)}", token=len(values))
        parts = list(token) if split_digits else [token]
        for part in parts:
            try:
                value = int(part, 10)
            except ValueError:
                raise FormatError(f"Invalid pixel value: {part}", token=part) from None
            if value < 0 or value > maxval:
                raise FormatError(f"Pixel value {value} outside [0, {maxval}]", token=part)
            values.append(value)
            if len(values) == count:
                break
    return values


def _parse_header(data: bytes) -> Tuple[_Tokenizer, str, int, int, int]:
    tok = _Tokenizer(data)
    magic = tok.next()
    if magic not in PNM_MAGICS:
        raise BadMagicError(f"Invalid PPM/PGM/PBM magic number: {magic}", token=magic)
    width = tok.next_int("width")
    height = tok.next_int("height")
    is_pbm = magic in ("P1", "P4")
    maxval = 1 if is_pbm else tok.next_int("maxval")
    if width <= 0 or height <= 0:
        raise MalformedHeaderError(f"Invalid dimensions {width}x{height}", token=(width, height))
    if maxval <= 0:
        raise MalformedHeaderError(f"Invalid maxval {maxval}", token=maxval)
    if maxval > 65535:
        raise UnsupportedFormatError(f"maxval {maxval} exceeds 16 bits", token=maxval)
    return tok, magic, width, height, maxval


def decode_ppm(data: bytes) -> DecodedImage:
    """Decode any of the six Netpbm variants.

    Raises
    ------
    BadMagicError
        Magic is not P1..P6.
    MalformedHeaderError
        Width, height or maxval missing or not a positive integer.
    TruncatedError
        Fewer samples than the header requires.
    FormatError
        An ASCII sample outside ``[0, maxval]``.
    """
    tok, magic, width, height, maxval = _parse_header(data)
    is_pbm = magic in ("P1", "P4")
    channels = 3 if magic in ("P3", "P6") else 1
    count = width * height * channels

    if magic == "P1":
        bits = np.asarray(_read_ascii_values(tok, count, 1, split_digits=True), dtype=np.uint8)
        samples = np.where(bits == 1, 0, 255).astype(np.uint8)
    elif magic == "P4":
        # Header and bitmap are separated by one whitespace byte.
        offset = tok.offset + 1
        bytes_per_row = (width + 7) // 8
        needed = bytes_per_row * height
        if offset + needed > len(data):
            raise TruncatedError("Insufficient data for binary PBM", token=needed)
        packed = np.frombuffer(data, dtype=np.uint8, count=needed, offset=offset).reshape(height, bytes_per_row)
        bits = np.unpackbits(packed, axis=1)[:, :width]
        samples = np.where(bits == 1, 0, 255).astype(np.uint8)
    elif magic in ("P2", "P3"):
        dtype = np.uint16 if maxval > 255 else np.uint8
        samples = np.asarray(_read_ascii_values(tok, count, maxval, split_digits=False), dtype=dtype)
    else:
        offset = tok.offset
        if offset < len(data) and data[offset] in _WHITESPACE:
            offset += 1
        dtype = np.dtype(">u2") if maxval > 255 else np.dtype(np.uint8)
        needed = count * dtype.itemsize
        if offset + needed > len(data):
            raise TruncatedError("Insufficient data for binary PPM/PGM", token=needed)
        samples = np.frombuffer(data, dtype=dtype, count=count, offset=offset)
        if dtype.itemsize == 2:
            samples = samples.astype(np.uint16)

    kind = ElementKind.U16 if samples.dtype == np.uint16 else ElementKind.U8
    buffer = RawSampleBuffer(
        width=width,
        height=height,
        channels=channels,
        element_kind=kind,
        is_float=False,
        samples=samples,
    )
    LOGGER.debug("Decoded %s %dx%d maxval=%d", magic, width, height, maxval)
    return DecodedImage(
        buffer=buffer,
        type_max=255.0 if is_pbm else float(maxval),
        metadata={
            "format": "ppm",
            "variant": _FORMAT_NAMES[magic],
            "magic": magic,
            "maxval": maxval,
            "bits_per_sample": kind.bits,
            "sample_format": "uint",
        },
    )
