import pytest

from rpicamkit.stream import PixelFormat, StillOptions, StreamInfo
from rpicamkit.yuv import yuv_save


def _info(width, height, stride, fmt):
    return StreamInfo(width=width, height=height, stride=stride, pixel_format=fmt)


def test_yuv420_planes_without_stride_padding(tmp_path):
    y0, y1 = b"\x01\x02\x03\x04", b"\x05\x06\x07\x08"
    u, v = b"\x10\x11", b"\x20\x21"
    pad = b"\xee"
    data = y0 + pad * 2 + y1 + pad * 2 + u + pad + v + pad
    path = tmp_path / "out.yuv"
    yuv_save([data], _info(4, 2, 6, PixelFormat.YUV420), str(path), StillOptions(encoding="yuv420"))
    assert path.read_bytes() == y0 + y1 + u + v


def test_yuv420_requires_even_dimensions(tmp_path):
    with pytest.raises(ValueError, match="even"):
        yuv_save([bytes(64)], _info(3, 2, 4, PixelFormat.YUV420), str(tmp_path / "x"),
                 StillOptions(encoding="yuv420"))


def test_yuv420_requires_single_plane(tmp_path):
    with pytest.raises(ValueError, match="planes"):
        yuv_save([bytes(16), bytes(8)], _info(4, 2, 4, PixelFormat.YUV420), str(tmp_path / "x"),
                 StillOptions(encoding="yuv420"))


def test_yuv420_rejects_other_encodings(tmp_path):
    with pytest.raises(ValueError, match="not supported"):
        yuv_save([bytes(16)], _info(4, 2, 4, PixelFormat.YUV420), str(tmp_path / "x"),
                 StillOptions(encoding="jpg"))


def test_yuyv_is_converted_to_planar(tmp_path):
    row0 = bytes([1, 50, 2, 60, 3, 51, 4, 61])
    row1 = bytes([5, 52, 6, 62, 7, 53, 8, 63])
    pad = b"\x00\x00"
    path = tmp_path / "out.yuv"
    yuv_save([row0 + pad + row1 + pad], _info(4, 2, 10, PixelFormat.YUYV), str(path),
             StillOptions(encoding="yuv420"))
    assert path.read_bytes() == bytes([1, 2, 3, 4, 5, 6, 7, 8]) + bytes([50, 51]) + bytes([60, 61])


def test_rgb24_rows(tmp_path):
    data = b"\x01\x02\x03\xff" + b"\x04\x05\x06\xff"
    path = tmp_path / "out.rgb"
    yuv_save([data], _info(1, 2, 4, PixelFormat.RGB888), str(path), StillOptions(encoding="rgb24"))
    assert path.read_bytes() == b"\x01\x02\x03\x04\x05\x06"


def test_rgb48_rows(tmp_path):
    row = bytes(range(6))
    data = row + b"\xff\xff" + row + b"\xff\xff"
    path = tmp_path / "out.rgb"
    yuv_save([data], _info(1, 2, 8, PixelFormat.RGB161616), str(path), StillOptions(encoding="rgb48"))
    assert path.read_bytes() == row + row


def test_rgb_requires_rgb_encoding(tmp_path):
    with pytest.raises(ValueError, match="rgb"):
        yuv_save([bytes(6)], _info(1, 2, 3, PixelFormat.BGR888), str(tmp_path / "x"),
                 StillOptions(encoding="yuv420"))


def test_unknown_format_is_rejected(tmp_path):
    with pytest.raises(ValueError, match="unrecognised"):
        yuv_save([bytes(16)], _info(4, 2, 4, PixelFormat.SRGGB10), str(tmp_path / "x"),
                 StillOptions(encoding="yuv420"))


def test_stdout_output(capsysbinary):
    yuv_save([b"\x07\x08\x09"], _info(1, 1, 3, PixelFormat.RGB888), "-", StillOptions(encoding="rgb24"))
    assert capsysbinary.readouterr().out == b"\x07\x08\x09"