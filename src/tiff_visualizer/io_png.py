"""PNG decoding through OpenCV, keeping 16-bit depth."""

from __future__ import annotations

import cv2
import numpy as np

from tiff_visualizer.buffers import DecodedImage, ElementKind, RawSampleBuffer
from tiff_visualizer.errors import BadMagicError, FormatError, UnsupportedFormatError
from tiff_visualizer.logger import get_logger

LOGGER = get_logger(__name__)

PNG_MAGIC = b"\x89PNG\r\n\x1a\n"


def decode_png(data: bytes) -> DecodedImage:
    """Decode a PNG payload to uint8 or uint16 samples.

    Gray, RGB and RGBA layouts are preserved. OpenCV returns BGR/BGRA, which
    is reordered to RGB/RGBA. Palette and gray+alpha images are expanded by
    OpenCV to RGB/RGBA.
    """
    if not data.startswith(PNG_MAGIC):
        raise BadMagicError("Invalid PNG signature", token=bytes(data[:8]))
    img = cv2.imdecode(np.frombuffer(data, dtype=np.uint8), cv2.IMREAD_UNCHANGED)
    if img is None:
        raise FormatError("OpenCV could not decode PNG payload")
    if img.dtype not in (np.uint8, np.uint16):
        raise UnsupportedFormatError(f"Unsupported PNG sample type {img.dtype}", token=str(img.dtype))

    if img.ndim == 2:
        img = img[:, :, np.newaxis]
    elif img.shape[2] == 3:
        img = cv2.cvtColor(img, cv2.COLOR_BGR2RGB)
    elif img.shape[2] == 4:
        img = cv2.cvtColor(img, cv2.COLOR_BGRA2RGBA)
    height, width, channels = img.shape

    is_16bit = img.dtype == np.uint16
    buffer = RawSampleBuffer(
        width=width,
        height=height,
        channels=channels,
        element_kind=ElementKind.U16 if is_16bit else ElementKind.U8,
        is_float=False,
        samples=img,
    )
    LOGGER.debug("Decoded PNG %dx%d channels=%d bits=%d", width, height, channels, 16 if is_16bit else 8)
    return DecodedImage(
        buffer=buffer,
        type_max=65535.0 if is_16bit else 255.0,
        metadata={
            "format": "png",
            "bits_per_sample": 16 if is_16bit else 8,
            "sample_format": "uint",
        },
    )
