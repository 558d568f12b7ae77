"""TIFF Visualizer core: decode scientific images and map them to display bytes."""

from tiff_visualizer.buffers import DecodedImage, ElementKind, RawSampleBuffer
from tiff_visualizer.errors import (
    BadMagicError,
    FormatError,
    MalformedHeaderError,
    TruncatedError,
    UnsupportedFormatError,
)
from tiff_visualizer.histogram import Histogram, compute_histogram, save_histogram_csv
from tiff_visualizer.io import decode_bytes, load_image, sniff_format
from tiff_visualizer.render import render
from tiff_visualizer.session import ImageSession
from tiff_visualizer.settings import NormalizationSettings, RenderOptions, ToneSettings, ViewSettings
from tiff_visualizer.stats import Stats, compute_stats

__all__ = [
    "__version__",
    "DecodedImage",
    "ElementKind",
    "RawSampleBuffer",
    "FormatError",
    "BadMagicError",
    "MalformedHeaderError",
    "TruncatedError",
    "UnsupportedFormatError",
    "Histogram",
    "compute_histogram",
    "save_histogram_csv",
    "decode_bytes",
    "load_image",
    "sniff_format",
    "render",
    "ImageSession",
    "NormalizationSettings",
    "RenderOptions",
    "ToneSettings",
    "ViewSettings",
    "Stats",
    "compute_stats",
]

__version__ = "1.0.0"
