"""TIFF decoding through tifffile.

Conventions
-----------
- Only the first page is decoded.
- SampleFormat 3 (IEEE float) is exposed as float32 with ``type_max`` 1.0.
- Unsigned 8/16-bit integers keep their dtype.
- Signed integers (SampleFormat 2) and unsigned samples wider than 16 bits
  raise UnsupportedFormatError.
- Planar (band separate) rasters are interleaved into one buffer.
"""

from __future__ import annotations

import io

import numpy as np
import tifffile as tif

from tiff_visualizer.buffers import DecodedImage, ElementKind, RawSampleBuffer
from tiff_visualizer.errors import BadMagicError, FormatError, UnsupportedFormatError
from tiff_visualizer.logger import get_logger

LOGGER = get_logger(__name__)

TIFF_MAGICS = (b"II*\x00", b"MM\x00*", b"II+\x00", b"MM\x00+")
SAMPLE_FORMAT_UINT = 1
SAMPLE_FORMAT_INT = 2
SAMPLE_FORMAT_FLOAT = 3


def _first_value(value) -> int:
    if isinstance(value, (tuple, list)):
        return int(value[0])
    return int(value)


def decode_tiff(data: bytes) -> DecodedImage:
    """Decode the first page of a TIFF payload.

    Raises
    ------
    BadMagicError
        Not a classic or BigTIFF header.
    UnsupportedFormatError
        Signed integers, bit depths other than 8/16 for integers, or more
        than four samples per pixel.
    FormatError
        tifffile failed to parse the IFD or decode strips/tiles.
    """
    if data[:4] not in TIFF_MAGICS:
        raise BadMagicError("Invalid TIFF magic", token=bytes(data[:4]))
    try:
        with tif.TiffFile(io.BytesIO(data)) as tiff:
            page = tiff.pages.first if hasattr(tiff.pages, "first") else tiff.pages[0]
            sample_format = _first_value(page.sampleformat)
            bits = _first_value(page.bitspersample)
            spp = int(page.samplesperpixel)
            planar = int(page.planarconfig) == int(tif.PLANARCONFIG.SEPARATE)
            width, height = int(page.imagewidth), int(page.imagelength)
            compression = str(tif.COMPRESSION(page.compression).name)
            arr = page.asarray()
    except (tif.TiffFileError, OSError, ValueError, KeyError, IndexError, NotImplementedError) as exc:
        raise FormatError(f"Could not decode TIFF: {exc}") from exc

    if spp < 1 or spp > 4:
        raise UnsupportedFormatError(f"TIFF with {spp} samples per pixel is not supported", token=spp)
    if sample_format == SAMPLE_FORMAT_FLOAT:
        dtype = np.float32
        kind = ElementKind.F32
        type_max = 1.0
    elif sample_format == SAMPLE_FORMAT_INT:
        raise UnsupportedFormatError("Signed integer TIFF is not supported", token=sample_format)
    elif bits == 16:
        dtype = np.uint16
        kind = ElementKind.U16
        type_max = 65535.0
    elif bits == 8:
        dtype = np.uint8
        kind = ElementKind.U8
        type_max = 255.0
    else:
        raise UnsupportedFormatError(f"TIFF with {bits} bits per sample is not supported", token=bits)

    if arr.size != height * width * spp:
        raise UnsupportedFormatError(f"Unexpected TIFF raster shape {arr.shape}", token=arr.shape)
    if planar and spp > 1:
        arr = np.moveaxis(arr.reshape(spp, height, width), 0, -1)
    else:
        arr = arr.reshape(height, width, spp)
    samples = np.ascontiguousarray(arr, dtype=dtype)

    buffer = RawSampleBuffer(
        width=width,
        height=height,
        channels=spp,
        element_kind=kind,
        is_float=sample_format == SAMPLE_FORMAT_FLOAT,
        samples=samples,
    )
    LOGGER.debug(
        "Decoded TIFF %dx%d spp=%d bits=%d sample_format=%d planar=%s",
        width,
        height,
        spp,
        bits,
        sample_format,
        planar,
    )
    return DecodedImage(
        buffer=buffer,
        type_max=type_max,
        metadata={
            "format": "tiff",
            "bits_per_sample": bits,
            "sample_format": sample_format,
            "samples_per_pixel": spp,
            "planar_configuration": 2 if planar else 1,
            "compression": compression,
        },
    )
