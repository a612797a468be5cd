"""Save uncompressed YUV and RGB frames as raw files."""

from __future__ import annotations

import contextlib
import sys
from typing import BinaryIO, Iterator, Sequence

from .stream import PixelFormat, StillOptions, StreamInfo

_RGB_FORMATS = {
    PixelFormat.BGR888,
    PixelFormat.RGB888,
    PixelFormat.BGR161616,
    PixelFormat.RGB161616,
}


@contextlib.contextmanager
def _open_output(filename: str) -> Iterator[BinaryIO]:
    if filename == "-":
        out = sys.stdout.buffer
        yield out
        out.flush()
    else:
        with open(filename, "wb") as fp:
            yield fp


def _require_even(info: StreamInfo) -> None:
    if info.width & 1 or info.height & 1:
        raise ValueError("both width and height must be even")


def _rows(data: memoryview, offset: int, count: int, stride: int, length: int) -> Iterator[memoryview]:
    for row in range(count):
        start = offset + row * stride
        yield data[start : start + length]


def _yuv420_save(mem: Sequence, info: StreamInfo, filename: str, options: StillOptions) -> None:
    if options.encoding != "yuv420":
        raise ValueError(f"output format {options.encoding} not supported")
    _require_even(info)
    if len(mem) != 1:
        raise ValueError("incorrect number of planes in YUV420 data")

    data = memoryview(mem[0]).cast("B")
    w, h, stride = info.width, info.height, info.stride
    u_offset = stride * h
    v_offset = u_offset + (stride // 2) * (h // 2)
    with _open_output(filename) as fp:
        fp.writelines(_rows(data, 0, h, stride, w))
        fp.writelines(_rows(data, u_offset, h // 2, stride // 2, w // 2))
        fp.writelines(_rows(data, v_offset, h // 2, stride // 2, w // 2))


def _yuyv_save(mem: Sequence, info: StreamInfo, filename: str, options: StillOptions) -> None:
    if options.encoding != "yuv420":
        raise ValueError(f"output format {options.encoding} not supported")
    _require_even(info)

    data = memoryview(mem[0]).cast("B")
    w, h, stride = info.width, info.height, info.stride
    with _open_output(filename) as fp:
        for row in _rows(data, 0, h, stride, 2 * w):
            fp.write(row[0 : 2 * w : 2])
        for row in _rows(data, 0, h // 2, 2 * stride, 2 * w):
            fp.write(row[1 : 2 * w : 4])
        for row in _rows(data, 0, h // 2, 2 * stride, 2 * w):
            fp.write(row[3 : 2 * w : 4])


def _rgb_save(mem: Sequence, info: StreamInfo, filename: str, options: StillOptions) -> None:
    if options.encoding not in ("rgb24", "rgb48"):
        raise ValueError("encoding should be set to rgb")
    data = memoryview(mem[0]).cast("B")
    length = 3 * info.width
    if options.encoding == "rgb48":
        length *= 2
    with _open_output(filename) as fp:
        fp.writelines(_rows(data, 0, info.height, info.stride, length))


def yuv_save(mem: Sequence, info: StreamInfo, filename: str, options: StillOptions) -> None:
    """Write a YUV or RGB frame without compression, planar YUV420 for YUV sources."""
    if info.pixel_format == PixelFormat.YUYV:
        _yuyv_save(mem, info, filename, options)
    elif info.pixel_format == PixelFormat.YUV420:
        _yuv420_save(mem, info, filename, options)
    elif info.pixel_format in _RGB_FORMATS:
        _rgb_save(mem, info, filename, options)
    else:
        raise ValueError("unrecognised YUV/RGB save format")