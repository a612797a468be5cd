import io

import pytest
from PIL import Image

from rpicamkit.png import png_save
from rpicamkit.stream import PixelFormat, StillOptions, StreamInfo


def _info(width, height, stride, fmt=PixelFormat.BGR888):
    return StreamInfo(width=width, height=height, stride=stride, pixel_format=fmt)


def test_round_trip_through_pillow(tmp_path):
    row0 = bytes([10, 20, 30, 40, 50, 60]) + b"\x00\x00"
    row1 = bytes([70, 80, 90, 100, 110, 120]) + b"\x00\x00"
    path = tmp_path / "out.png"
    png_save([row0 + row1], _info(2, 2, 8), str(path), StillOptions())
    with Image.open(path) as img:
        assert img.format == "PNG"
        assert img.mode == "RGB"
        assert img.size == (2, 2)
        assert img.getpixel((0, 0)) == (10, 20, 30)
        assert img.getpixel((1, 1)) == (100, 110, 120)


def test_png_signature(tmp_path):
    path = tmp_path / "sig.png"
    png_save([bytes(3)], _info(1, 1, 3), str(path), StillOptions())
    assert path.read_bytes()[:8] == b"\x89PNG\r\n\x1a\n"


def test_wrong_pixel_format_is_rejected(tmp_path):
    with pytest.raises(ValueError, match="should be BGR"):
        png_save([bytes(3)], _info(1, 1, 3, PixelFormat.RGB888), str(tmp_path / "x.png"), StillOptions())


def test_short_buffer_is_rejected(tmp_path):
    with pytest.raises(ValueError, match="too small"):
        png_save([bytes(4)], _info(2, 2, 6), str(tmp_path / "x.png"), StillOptions())


def test_stdout_output(capsysbinary):
    png_save([bytes([1, 2, 3])], _info(1, 1, 3), "-", StillOptions())
    out = capsysbinary.readouterr().out
    with Image.open(io.BytesIO(out)) as img:
        assert img.getpixel((0, 0)) == (1, 2, 3)