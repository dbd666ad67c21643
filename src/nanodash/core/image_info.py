"""Pixel dimensions for PNG and JPEG files without an image decoder.

Only the headers are parsed:

- **PNG**: the IHDR chunk always directly follows the 8-byte signature, so
  width and height sit at fixed offsets 16 and 20 of the file.
- **JPEG**: the file is scanned marker by marker until the first
  start-of-frame (SOFn) segment, which carries height and width.

Anything else yields ``ImageDimensions(None, None)``.  Unknown dimensions are
a normal outcome, not an error, so :func:`image_dimensions` never raises.
"""

from __future__ import annotations

import logging
import struct
from pathlib import Path
from typing import NamedTuple

logger = logging.getLogger(__name__)

PNG_SIGNATURE = b"\x89PNG\r\n\x1a\n"
HEADER_SIZE = 64

# SOF0-3, SOF5-7, SOF9-11, SOF13-15.  0xC4 (DHT), 0xC8 (JPG) and 0xCC (DAC)
# share the range but are not frame headers.
SOF_MARKERS = frozenset(
    [0xC0, 0xC1, 0xC2, 0xC3, 0xC5, 0xC6, 0xC7, 0xC9, 0xCA, 0xCB, 0xCD, 0xCE, 0xCF]
)

ADOBE_MIN_PIXELS = 4_000_000


class ImageDimensions(NamedTuple):
    width: int | None
    height: int | None


class Readiness(NamedTuple):
    pixels: int | None
    meets_adobe_min: bool


UNKNOWN = ImageDimensions(None, None)


def image_dimensions(path: str | Path) -> ImageDimensions:
    """Return the pixel dimensions of a PNG or JPEG file.

    Args:
        path: File to inspect.

    Returns:
        ``ImageDimensions(width, height)``, or ``ImageDimensions(None, None)``
        when the format is unsupported, the header is truncated, or the file
        cannot be read.
    """
    try:
        with open(path, "rb") as handle:
            header = handle.read(HEADER_SIZE)
            if header.startswith(PNG_SIGNATURE):
                return _png_dimensions(header)
            if header[:2] == b"\xff\xd8":
                handle.seek(0)
                return _jpeg_dimensions(handle.read())
    except OSError as e:
        logger.warning(f"Unable to read image header from {path}: {e}")
    return UNKNOWN


def _png_dimensions(header: bytes) -> ImageDimensions:
    if len(header) < 24:
        return UNKNOWN
    width, height = struct.unpack(">II", header[16:24])
    return ImageDimensions(width, height)


def _jpeg_dimensions(data: bytes) -> ImageDimensions:
    offset = 2
    size = len(data)
    while offset < size:
        if data[offset] != 0xFF:
            offset += 1
            continue
        if offset + 1 >= size:
            break
        marker = data[offset + 1]
        if marker == 0xFF:
            # Fill byte before the real marker.
            offset += 1
            continue
        if offset + 4 > size:
            break
        (length,) = struct.unpack(">H", data[offset + 2 : offset + 4])
        if marker in SOF_MARKERS:
            if offset + 9 > size:
                break
            height, width = struct.unpack(">HH", data[offset + 5 : offset + 9])
            return ImageDimensions(width, height)
        offset += 2 + length
    return UNKNOWN


def adobe_readiness(width: int | None, height: int | None) -> Readiness:
    """Classify an image against the stock-upload minimum pixel count.

    Args:
        width: Image width, or ``None`` when unknown.
        height: Image height, or ``None`` when unknown.

    Returns:
        ``Readiness(pixels, meets_adobe_min)``.  Unknown (or zero) dimensions
        give ``Readiness(None, False)``.
    """
    if not width or not height:
        return Readiness(None, False)
    pixels = width * height
    return Readiness(pixels, pixels >= ADOBE_MIN_PIXELS)
