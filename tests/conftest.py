import io
import os

import matplotlib
import numpy as np
import pytest

from tiff_visualizer.buffers import RawSampleBuffer, element_kind_for_dtype

# Histogram plotting tests run headless
os.environ.setdefault("MPLBACKEND", "Agg")
matplotlib.use(os.environ.get("MPLBACKEND", "Agg"), force=True)


def make_buffer(array, is_float=None, kind=None):
    """Build a RawSampleBuffer from an (H, W) or (H, W, C) array."""
    array = np.asarray(array)
    if array.ndim == 2:
        array = array[:, :, np.newaxis]
    height, width, channels = array.shape
    return RawSampleBuffer(
        width=width,
        height=height,
        channels=channels,
        element_kind=kind if kind is not None else element_kind_for_dtype(array.dtype),
        is_float=array.dtype.kind == "f" if is_float is None else is_float,
        samples=array,
    )


def pfm_bytes(rows_as_stored, little_endian=True):
    """Serialize float rows (bottom row first, as stored) to a PFM payload."""
    rows = np.asarray(rows_as_stored, dtype=np.float32)
    if rows.ndim == 2:
        rows = rows[:, :, np.newaxis]
    height, width, channels = rows.shape
    magic = b"PF" if channels == 3 else b"Pf"
    scale = b"-1.0" if little_endian else b"1.0"
    header = magic + b"\n" + f"{width} {height}".encode() + b"\n" + scale + b"\n"
    return header + rows.astype("<f4" if little_endian else ">f4").tobytes()


def npy_bytes(array):
    """Serialize an array with numpy's NPY writer (keeps Fortran order)."""
    handle = io.BytesIO()
    np.lib.format.write_array(handle, array, allow_pickle=False)
    return handle.getvalue()


@pytest.fixture
def gray_u8_buffer():
    return make_buffer(np.array([[0, 64], [128, 255]], dtype=np.uint8))


@pytest.fixture
def float_ramp_buffer():
    return make_buffer(np.array([[0.0, 0.25], [0.5, 1.0]], dtype=np.float32))
