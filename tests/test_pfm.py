"""PFM decoding tests."""

import numpy as np
import pytest

from conftest import pfm_bytes
from tiff_visualizer.errors import BadMagicError, MalformedHeaderError, TruncatedError
from tiff_visualizer.io_pfm import decode_pfm


class TestDecodePfm:
    """Header parsing, byte order and the bottom-up flip."""

    def test_gray_little_endian_is_flipped(self):
        """Stored bottom row becomes the last row of the decoded buffer."""
        data = pfm_bytes([[1.0, 2.0], [3.0, 4.0]], little_endian=True)
        decoded = decode_pfm(data)
        image = decoded.buffer.as_image()

        assert decoded.buffer.channels == 1
        assert decoded.buffer.is_float
        assert decoded.type_max == 1.0
        np.testing.assert_array_equal(image[:, :, 0], [[3.0, 4.0], [1.0, 2.0]])
        assert decoded.metadata["little_endian"] is True

    def test_big_endian_rgb(self):
        """Positive scale selects big-endian; PF carries three channels."""
        rows = np.arange(12, dtype=np.float32).reshape(2, 2, 3)
        decoded = decode_pfm(pfm_bytes(rows, little_endian=False))

        assert decoded.buffer.channels == 3
        np.testing.assert_array_equal(decoded.buffer.as_image(), rows[::-1])
        assert decoded.metadata["scale"] == 1.0

    def test_single_pixel_top_row(self):
        """A 1x2 image stored [0, 1] bottom-up decodes top row 1."""
        data = pfm_bytes([[0.0], [1.0]])
        image = decode_pfm(data).buffer.as_image()
        assert image[0, 0, 0] == 1.0
        assert image[1, 0, 0] == 0.0

    def test_comment_lines_are_skipped(self):
        """Comments between header lines are ignored."""
        payload = b"Pf\n# made by a test\n1 1\n-1.0\n" + np.float32(0.5).astype("<f4").tobytes()
        assert decode_pfm(payload).buffer.samples[0] == pytest.approx(0.5)

    def test_bad_magic(self):
        """Anything but Pf/PF is rejected."""
        with pytest.raises(BadMagicError):
            decode_pfm(b"P6\n1 1\n-1.0\n\x00\x00\x00\x00")

    @pytest.mark.parametrize("dims", [b"x 1", b"0 1", b"1"])
    def test_malformed_dimensions(self, dims):
        """Dimensions must be two positive integers."""
        with pytest.raises(MalformedHeaderError):
            decode_pfm(b"Pf\n" + dims + b"\n-1.0\n" + b"\x00" * 4)

    def test_malformed_scale(self):
        """The scale line must be a number."""
        with pytest.raises(MalformedHeaderError):
            decode_pfm(b"Pf\n1 1\nabc\n\x00\x00\x00\x00")

    def test_truncated(self):
        """Missing pixel bytes raise TruncatedError."""
        data = pfm_bytes([[1.0, 2.0]])
        with pytest.raises(TruncatedError):
            decode_pfm(data[:-1])
