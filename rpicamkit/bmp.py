"""Save RGB frames as uncompressed 24-bit BMP files."""

from __future__ import annotations

import contextlib
import logging
import struct
import sys
from typing import BinaryIO, Iterator, Sequence

from .stream import PixelFormat, StillOptions, StreamInfo

log = logging.getLogger(__name__)

_FILE_HEADER = struct.Struct("<2sIHHI")
_IMAGE_HEADER = struct.Struct("<IIiHHIIIIII")
_HEADERS_SIZE = _FILE_HEADER.size + _IMAGE_HEADER.size


@contextlib.contextmanager
def _open_output(filename: str) -> Iterator[BinaryIO]:
    if filename == "-":
        out = sys.stdout.buffer
        yield out
        out.flush()
    else:
        with open(filename, "wb") as fp:
            yield fp


def bmp_save(mem: Sequence, info: StreamInfo, filename: str, options: StillOptions | None) -> None:
    """Write the first plane of an RGB888 frame to ``filename`` ("-" for stdout)."""
    if info.pixel_format != PixelFormat.RGB888:
        raise ValueError("pixel format for bmp should be RGB")

    line = info.width * 3
    pitch = (line + 3) & ~3
    padding = bytes(pitch - line)
    data = memoryview(mem[0]).cast("B")
    if info.height and len(data) < (info.height - 1) * info.stride + line:
        raise ValueError("image buffer too small for stream geometry")

    filesize = _HEADERS_SIZE + info.height * pitch
    file_header = _FILE_HEADER.pack(b"BM", filesize, 0, 0, _HEADERS_SIZE)
    # A negative height makes the rows come out top-down.
    image_header = _IMAGE_HEADER.pack(
        _IMAGE_HEADER.size, info.width, -info.height, 1, 24, 0, 0, 100000, 100000, 0, 0
    )

    with _open_output(filename) as fp:
        fp.write(file_header)
        fp.write(image_header)
        for row in range(info.height):
            start = row * info.stride
            fp.write(data[start : start + line])
            if padding:
                fp.write(padding)

    log.debug("Wrote %d bytes to BMP file", filesize)