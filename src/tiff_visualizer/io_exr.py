"""OpenEXR decoding through OpenImageIO.

OpenImageIO reads from a path, so the payload is spooled to a temporary
file. Pixels come back top row first and are always exposed as float32;
the on-disk storage (half or float) is kept in the metadata.
"""

from __future__ import annotations

import os
import tempfile
from typing import List, Sequence

import numpy as np
import OpenImageIO as oiio

from tiff_visualizer.buffers import DecodedImage, ElementKind, RawSampleBuffer
from tiff_visualizer.errors import BadMagicError, FormatError, UnsupportedFormatError
from tiff_visualizer.logger import get_logger

LOGGER = get_logger(__name__)

EXR_MAGIC = b"\x76\x2f\x31\x01"
_RGBA = ("R", "G", "B", "A")


def channel_order(names: Sequence[str]) -> List[int]:
    """Indices of the channels to keep, in display order.

    ``R, G, B, A`` in any order become RGBA; ``R, G, B`` become RGB; a single
    channel stays gray. Any other layout keeps the channels as stored.
    """
    upper = [name.upper() for name in names]
    if all(c in upper for c in _RGBA):
        return [upper.index(c) for c in _RGBA]
    if all(c in upper for c in _RGBA[:3]):
        return [upper.index(c) for c in _RGBA[:3]]
    return list(range(len(names)))


def _storage_name(spec) -> str:
    formats = list(spec.channelformats) or [spec.format]
    names = {str(f) for f in formats}
    if names == {"half"}:
        return "half"
    if names == {"float"}:
        return "float"
    return "mixed" if len(names) > 1 else names.pop()


def decode_exr(data: bytes) -> DecodedImage:
    """Decode the first subimage of an OpenEXR payload."""
    if not data.startswith(EXR_MAGIC):
        raise BadMagicError("Invalid EXR magic", token=bytes(data[:4]))
    handle = tempfile.NamedTemporaryFile(suffix=".exr", delete=False)
    try:
        with handle:
            handle.write(data)
        inp = oiio.ImageInput.open(handle.name)
        if inp is None:
            raise FormatError(f"OpenImageIO could not open EXR: {oiio.geterror()}")
        try:
            spec = inp.spec()
            pixels = inp.read_image("float")
            if pixels is None:
                raise FormatError(f"OpenImageIO could not read EXR: {inp.geterror()}")
        finally:
            inp.close()
    finally:
        os.unlink(handle.name)

    width, height = int(spec.width), int(spec.height)
    names = list(spec.channelnames)
    pixels = np.asarray(pixels, dtype=np.float32).reshape(height, width, -1)
    order = channel_order(names)
    pixels = pixels[:, :, order]
    channels = pixels.shape[2]
    if channels > 4:
        raise UnsupportedFormatError(f"EXR with {channels} channels is not supported", token=names)

    buffer = RawSampleBuffer(
        width=width,
        height=height,
        channels=channels,
        element_kind=ElementKind.F32,
        is_float=True,
        samples=pixels,
    )
    storage = _storage_name(spec)
    LOGGER.debug("Decoded EXR %dx%d channels=%s storage=%s", width, height, names, storage)
    return DecodedImage(
        buffer=buffer,
        type_max=1.0,
        metadata={
            "format": "exr",
            "channel_names": [names[i] for i in order],
            "storage": storage,
            "bits_per_sample": 16 if storage == "half" else 32,
            "sample_format": "float",
            "compression": spec.get_string_attribute("compression"),
        },
    )
