"""Save BGR888 frames as PNG files."""

from __future__ import annotations

import io
import logging
import sys
from typing import Sequence

from PIL import Image

from .stream import PixelFormat, StillOptions, StreamInfo

log = logging.getLogger(__name__)


def png_save(mem: Sequence, info: StreamInfo, filename: str, options: StillOptions | None) -> None:
    """Write the first plane of a BGR888 frame as an 8-bit RGB PNG ("-" for stdout)."""
    if info.pixel_format != PixelFormat.BGR888:
        raise ValueError("pixel format for png should be BGR")

    data = memoryview(mem[0]).cast("B")
    line = info.width * 3
    if info.height and len(data) < (info.height - 1) * info.stride + line:
        raise ValueError("image buffer too small for stream geometry")
    pixels = b"".join(data[row * info.stride : row * info.stride + line] for row in range(info.height))

    image = Image.frombytes("RGB", (info.width, info.height), pixels)
    encoded = io.BytesIO()
    # A low compression level gets most of the saving at a fraction of the cost.
    image.save(encoded, format="PNG", compress_level=1)
    payload = encoded.getvalue()

    if filename == "-":
        sys.stdout.buffer.write(payload)
        sys.stdout.buffer.flush()
    else:
        with open(filename, "wb") as fp:
            fp.write(payload)
    log.debug("Wrote PNG file of %d bytes", len(payload))