"""NumPy ``.npy`` and ``.npz`` decoding.

Samples are always promoted to float32. ``is_float`` reflects the stored
dtype so that integer arrays keep integer normalization semantics.

Conventions
-----------
- Supported header versions are 1.0 and 2.0.
- Shapes are ``(H, W)`` or ``(H, W, C)``; more than four channels keep only
  the first one.
- NPZ archives are read with :mod:`zipfile`; only stored (uncompressed)
  ``.npy`` members are considered.
"""

from __future__ import annotations

import io
import re
import zipfile
from typing import Dict, Tuple

import numpy as np

from tiff_visualizer.buffers import DecodedImage, RawSampleBuffer, element_kind_for_dtype
from tiff_visualizer.errors import (
    BadMagicError,
    MalformedHeaderError,
    TruncatedError,
    UnsupportedFormatError,
)
from tiff_visualizer.logger import get_logger

LOGGER = get_logger(__name__)

NPY_MAGIC = b"\x93NUMPY"
ZIP_MAGIC = b"PK\x03\x04"
PREFERRED_MEMBER = re.compile(r"depth|dispar|inv|z|range", re.IGNORECASE)
_SUPPORTED_CODES = {"f2", "f4", "f8", "u1", "u2", "u4", "u8", "i1", "i2", "i4", "i8"}


def npy_type_max(dtype: np.dtype, values: np.ndarray) -> float:
    """Full-scale value for a NumPy dtype.

    Floats use 1.0 and 8/16/32-bit integers their own maximum. 64-bit
    integers cannot be represented in float32 exactly, so the observed
    finite maximum is used instead.
    """
    dtype = np.dtype(dtype)
    if dtype.kind == "f":
        return 1.0
    if dtype.itemsize >= 8:
        finite = values[np.isfinite(values)]
        peak = float(finite.max()) if finite.size else 0.0
        return peak if peak > 0 else 1.0
    return float(np.iinfo(dtype).max)


def _read_header(fp: io.BytesIO) -> Tuple[Tuple[int, ...], bool, np.dtype]:
    try:
        version = np.lib.format.read_magic(fp)
    except ValueError as exc:
        raise BadMagicError("Not a NPY payload", token=NPY_MAGIC) from exc
    if version not in ((1, 0), (2, 0)):
        raise UnsupportedFormatError(f"Unsupported NPY version {version[0]}.{version[1]}", token=version)
    try:
        if version == (1, 0):
            shape, fortran_order, dtype = np.lib.format.read_array_header_1_0(fp)
        else:
            shape, fortran_order, dtype = np.lib.format.read_array_header_2_0(fp)
    except ValueError as exc:
        raise MalformedHeaderError(f"Invalid NPY header: {exc}") from exc
    return tuple(int(d) for d in shape), bool(fortran_order), dtype


def decode_npy(data: bytes) -> DecodedImage:
    """Decode a single ``.npy`` payload.

    Raises
    ------
    BadMagicError
        The payload does not start with ``\\x93NUMPY``.
    UnsupportedFormatError
        Unknown version, dtype or dimensionality.
    TruncatedError
        Fewer payload bytes than the header shape requires.
    """
    if not data.startswith(NPY_MAGIC):
        raise BadMagicError("Not a NPY payload", token=bytes(data[:6]))
    fp = io.BytesIO(data)
    shape, fortran_order, dtype = _read_header(fp)
    code = f"{dtype.kind}{dtype.itemsize}"
    if dtype.hasobject or code not in _SUPPORTED_CODES:
        raise UnsupportedFormatError(f"Unsupported NPY dtype {dtype.str}", token=dtype.str)
    if len(shape) == 2:
        height, width = shape
        channels = 1
    elif len(shape) == 3:
        height, width, channels = shape
    else:
        raise UnsupportedFormatError(f"Unsupported NPY dims {len(shape)}", token=shape)

    count = height * width * channels
    offset = fp.tell()
    needed = count * dtype.itemsize
    if len(data) - offset < needed:
        raise TruncatedError(f"NPY payload has {len(data) - offset} bytes, expected {needed}", token=needed)
    raw = np.frombuffer(data, dtype=dtype, count=count, offset=offset)
    raw = raw.reshape(shape, order="F" if fortran_order else "C")
    samples = raw.astype(np.float32)
    if samples.ndim == 3 and channels > 4:
        LOGGER.warning("NPY has %d channels; keeping the first", channels)
        samples = samples[:, :, 0]
        channels = 1

    type_max = npy_type_max(dtype, samples)
    buffer = RawSampleBuffer(
        width=width,
        height=height,
        channels=channels,
        element_kind=element_kind_for_dtype(dtype),
        is_float=dtype.kind == "f",
        samples=samples,
    )
    LOGGER.debug("Decoded NPY %s shape=%s", dtype.str, shape)
    return DecodedImage(
        buffer=buffer,
        type_max=type_max,
        metadata={
            "format": "npy",
            "dtype": dtype.str,
            "bits_per_sample": dtype.itemsize * 8,
            "sample_format": "float" if dtype.kind == "f" else ("int" if dtype.kind == "i" else "uint"),
            "fortran_order": fortran_order,
        },
    )


def _pick_member(names) -> str:
    for name in names:
        stem = name.rsplit("/", 1)[-1][: -len(".npy")]
        if PREFERRED_MEMBER.search(stem):
            return name
    return names[0]


def decode_npz(data: bytes) -> DecodedImage:
    """Decode the preferred array of an ``.npz`` archive.

    The first member whose name matches depth/disparity/inverse/z/range is
    chosen, else the first member.
    """
    if not data.startswith(ZIP_MAGIC):
        raise BadMagicError("Not a ZIP payload", token=bytes(data[:4]))
    try:
        archive = zipfile.ZipFile(io.BytesIO(data))
    except zipfile.BadZipFile as exc:
        raise MalformedHeaderError(f"Invalid NPZ archive: {exc}") from exc
    with archive:
        members: Dict[str, zipfile.ZipInfo] = {}
        for info in archive.infolist():
            if not info.filename.endswith(".npy"):
                continue
            if info.compress_type != zipfile.ZIP_STORED:
                LOGGER.warning("Skipping compressed NPZ member %s", info.filename)
                continue
            members[info.filename] = info
        if not members:
            raise UnsupportedFormatError("NPZ contains no uncompressed .npy arrays")
        name = _pick_member(list(members))
        try:
            payload = archive.read(members[name])
        except (zipfile.BadZipFile, OSError) as exc:
            raise TruncatedError(f"Could not read NPZ member {name}: {exc}", token=name) from exc
    decoded = decode_npy(payload)
    metadata = dict(decoded.metadata)
    metadata.update({"format": "npz", "member": name, "members": sorted(members)})
    return DecodedImage(buffer=decoded.buffer, type_max=decoded.type_max, metadata=metadata)


def decode_npy_or_npz(data: bytes) -> DecodedImage:
    """Decode either container, chosen by magic bytes."""
    if data.startswith(ZIP_MAGIC):
        return decode_npz(data)
    if data.startswith(NPY_MAGIC):
        return decode_npy(data)
    raise BadMagicError("Neither NPY nor NPZ magic", token=bytes(data[:6]))


