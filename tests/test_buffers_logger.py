"""Sample buffers, 24-bit packing and the package logger."""

import logging

import numpy as np
import pytest

from conftest import make_buffer
from tiff_visualizer.buffers import (
    ElementKind,
    RawSampleBuffer,
    default_type_max,
    element_kind_for_dtype,
    pack_rgb24,
    scale_to_8bit,
)
from tiff_visualizer.logger import attach_handler, get_logger, set_level


class TestElementKind:
    """Dtype mapping and full-scale values."""

    @pytest.mark.parametrize(
        "dtype,kind",
        [("<u2", ElementKind.U16), (">f4", ElementKind.F32), ("i1", ElementKind.I8), ("f2", ElementKind.F16)],
    )
    def test_for_dtype(self, dtype, kind):
        assert element_kind_for_dtype(np.dtype(dtype)) is kind

    def test_unknown_dtype(self):
        with pytest.raises(ValueError):
            element_kind_for_dtype(np.dtype(np.complex64))

    def test_full_scale(self):
        assert ElementKind.U8.full_scale == 255.0
        assert ElementKind.I16.full_scale == 32767.0
        assert ElementKind.F64.full_scale == 1.0
        assert ElementKind.I32.is_signed
        assert not ElementKind.U32.is_signed


class TestRawSampleBuffer:
    """Validation and read-only samples."""

    def test_samples_are_read_only(self, gray_u8_buffer):
        with pytest.raises(ValueError):
            gray_u8_buffer.samples[0] = 1
        assert gray_u8_buffer.shape == (2, 2, 1)
        assert gray_u8_buffer.pixel_count == 4

    def test_source_array_stays_writable(self):
        array = np.zeros(4, dtype=np.uint8)
        RawSampleBuffer(2, 2, 1, ElementKind.U8, False, array)
        array[0] = 1

    def test_wrong_sample_count(self):
        with pytest.raises(ValueError):
            RawSampleBuffer(2, 2, 1, ElementKind.U8, False, np.zeros(3, dtype=np.uint8))

    def test_wrong_channel_count(self):
        with pytest.raises(ValueError):
            RawSampleBuffer(1, 1, 5, ElementKind.U8, False, np.zeros(5, dtype=np.uint8))

    def test_default_type_max(self):
        assert default_type_max(ElementKind.F32, True) == 1.0
        assert default_type_max(ElementKind.U16, False) == 65535.0
        assert default_type_max(ElementKind.U8, False) == 255.0
        assert default_type_max(ElementKind.I32, False) == 255.0


class TestPackRgb24:
    """8-bit scaling and packing."""

    def test_scale_to_8bit(self):
        np.testing.assert_array_equal(scale_to_8bit(np.array([0, 32768, 65535], np.uint16), 65535.0), [0, 128, 255])

    def test_pack(self):
        buffer = make_buffer(np.array([[[1, 2, 3, 255], [np.nan, 0, 0, 255]]], dtype=np.float32))
        packed = pack_rgb24(buffer, 255.0)
        assert packed.channels == 1
        assert packed.element_kind == ElementKind.U32
        assert not packed.is_float
        assert packed.samples[0] == 1 * 65536 + 2 * 256 + 3
        assert np.isnan(packed.samples[1])

    def test_pack_needs_rgb(self, gray_u8_buffer):
        with pytest.raises(ValueError):
            pack_rgb24(gray_u8_buffer, 255.0)


class TestLogger:
    """Package logger configuration."""

    def test_child_of_package_logger(self):
        logger = get_logger("tiff_visualizer.render")
        assert logger.name == "tiff_visualizer.render"
        assert get_logger("custom").name == "tiff_visualizer.custom"

    def test_attach_handler_receives_image_field(self):
        records = []

        class _Collect(logging.Handler):
            def emit(self, record):
                records.append(record)

        handler = _Collect(level=logging.DEBUG)
        attach_handler(handler)
        set_level(logging.DEBUG)
        try:
            get_logger("test").debug("hello")
            get_logger("test").warning("with image", extra={"image": "a.tif"})
        finally:
            set_level(logging.WARNING)
            logging.getLogger("tiff_visualizer").removeHandler(handler)
        assert [r.image for r in records] == ["-", "a.tif"]
