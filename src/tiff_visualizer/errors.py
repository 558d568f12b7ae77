"""Exceptions raised while decoding image payloads."""

from __future__ import annotations

from typing import Optional


class FormatError(ValueError):
    """A payload could not be decoded.

    Parameters
    ----------
    message : str
        Human readable description.
    token : object, optional
        The offending header token or value, when one exists.
    """

    def __init__(self, message: str, token: Optional[object] = None) -> None:
        super().__init__(message)
        self.token = token


class BadMagicError(FormatError):
    """The leading magic bytes do not identify the expected format."""


class MalformedHeaderError(FormatError):
    """Dimensions, maxval, dtype or another header field could not be parsed."""


class TruncatedError(FormatError):
    """The payload is shorter than the header dimensions require."""


class UnsupportedFormatError(FormatError):
    """A valid but unsupported layout (version, dtype, channel count, compression)."""
