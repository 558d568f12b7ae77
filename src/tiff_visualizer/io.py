"""Format detection and decoder dispatch.

Payloads are identified by their magic bytes first and by file extension
second. Every decoder takes the raw ``bytes`` and returns a
``DecodedImage`` or raises ``FormatError``.

Conventions
-----------
- Extra decoders can be registered with a priority; higher priorities are
  tried first and built-in decoders use priority 0.
- Decoding is all-or-nothing: no partial buffer is returned on failure.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, Dict, List, Optional, Tuple, Union

from tiff_visualizer.buffers import DecodedImage
from tiff_visualizer.errors import UnsupportedFormatError
from tiff_visualizer.io_exr import EXR_MAGIC, decode_exr
from tiff_visualizer.io_npy import NPY_MAGIC, ZIP_MAGIC, decode_npy, decode_npz
from tiff_visualizer.io_pfm import decode_pfm
from tiff_visualizer.io_png import PNG_MAGIC, decode_png
from tiff_visualizer.io_ppm import decode_ppm
from tiff_visualizer.io_tiff import TIFF_MAGICS, decode_tiff
from tiff_visualizer.logger import get_logger

LOGGER = get_logger(__name__)

Decoder = Callable[[bytes], DecodedImage]
_PNM_SEPARATORS = b" \t\r\n"


@dataclass(frozen=True)
class DecoderSpec:
    """A decoder and how to recognize its payloads.

    Parameters
    ----------
    name : str
        Short format name (``"tiff"``, ``"npy"``...).
    decode : callable
        ``bytes -> DecodedImage``.
    matches : callable, optional
        Magic-byte test on the payload.
    extensions : tuple of str
        Lower-case extensions including the dot.
    priority : int
        Higher values are tried first.
    """

    name: str
    decode: Decoder
    matches: Optional[Callable[[bytes], bool]] = None
    extensions: Tuple[str, ...] = field(default_factory=tuple)
    priority: int = 0


def _starts_with(*magics: bytes) -> Callable[[bytes], bool]:
    return lambda data: any(data.startswith(m) for m in magics)


def _is_pfm(data: bytes) -> bool:
    return data[:2] in (b"Pf", b"PF") and len(data) > 2 and data[2:3] in (b"\n", b"\r", b" ")


def _is_pnm(data: bytes) -> bool:
    return len(data) > 2 and data[:1] == b"P" and data[1:2] in b"123456" and data[2] in _PNM_SEPARATORS


class DecoderRegistry:
    """Ordered collection of decoders."""

    def __init__(self) -> None:
        self._specs: List[DecoderSpec] = []

    def register(self, spec: DecoderSpec) -> None:
        """Add a decoder; stable ordering by descending priority."""
        self._specs.append(spec)
        self._specs.sort(key=lambda s: -s.priority)

    def unregister(self, name: str) -> None:
        self._specs = [s for s in self._specs if s.name != name]

    @property
    def names(self) -> List[str]:
        return [s.name for s in self._specs]

    def sniff(self, data: bytes) -> Optional[DecoderSpec]:
        for spec in self._specs:
            if spec.matches is not None and spec.matches(data):
                return spec
        return None

    def for_extension(self, ext: str) -> Optional[DecoderSpec]:
        ext = ext.lower()
        for spec in self._specs:
            if ext in spec.extensions:
                return spec
        return None

    def extensions(self) -> Dict[str, str]:
        """Map of extension to format name."""
        out: Dict[str, str] = {}
        for spec in reversed(self._specs):
            for ext in spec.extensions:
                out[ext] = spec.name
        return out


def _build_default_registry() -> DecoderRegistry:
    registry = DecoderRegistry()
    registry.register(DecoderSpec("tiff", decode_tiff, _starts_with(*TIFF_MAGICS), (".tif", ".tiff")))
    registry.register(DecoderSpec("exr", decode_exr, _starts_with(EXR_MAGIC), (".exr",)))
    registry.register(DecoderSpec("npy", decode_npy, _starts_with(NPY_MAGIC), (".npy",)))
    registry.register(DecoderSpec("npz", decode_npz, _starts_with(ZIP_MAGIC), (".npz",)))
    registry.register(DecoderSpec("png", decode_png, _starts_with(PNG_MAGIC), (".png",)))
    registry.register(DecoderSpec("pfm", decode_pfm, _is_pfm, (".pfm",)))
    registry.register(DecoderSpec("ppm", decode_ppm, _is_pnm, (".ppm", ".pgm", ".pbm", ".pnm")))
    return registry


default_registry = _build_default_registry()


def sniff_format(data: bytes, registry: Optional[DecoderRegistry] = None) -> Optional[str]:
    """Return the format name identified by magic bytes, or None."""
    spec = (registry or default_registry).sniff(bytes(data[:16]))
    return spec.name if spec is not None else None


def decode_bytes(
    data: bytes,
    name: Optional[str] = None,
    registry: Optional[DecoderRegistry] = None,
) -> DecodedImage:
    """Decode a payload, choosing the decoder by magic bytes then extension.

    Parameters
    ----------
    data : bytes
        Raw file contents.
    name : str, optional
        File name used for the extension fallback and log context.
    registry : DecoderRegistry, optional
        Defaults to the built-in registry.

    Raises
    ------
    UnsupportedFormatError
        No decoder recognizes the payload.
    FormatError
        The selected decoder rejected the payload.
    """
    registry = registry or default_registry
    data = bytes(data)
    spec = registry.sniff(data)
    if spec is None and name:
        spec = registry.for_extension(Path(name).suffix)
    if spec is None:
        raise UnsupportedFormatError(f"Unrecognized image format: {name or 'payload'}", token=data[:8])
    LOGGER.debug("Decoding %d bytes as %s", len(data), spec.name, extra={"image": name or "-"})
    return spec.decode(data)


def load_image(path: Union[str, Path], registry: Optional[DecoderRegistry] = None) -> DecodedImage:
    """Read a file and decode it."""
    path = Path(path)
    decoded = decode_bytes(path.read_bytes(), name=path.name, registry=registry)
    decoded.metadata.setdefault("path", str(path))
    return decoded
