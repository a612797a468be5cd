import struct

import pytest
from PIL import Image

from rpicamkit.bmp import bmp_save
from rpicamkit.stream import PixelFormat, StillOptions, StreamInfo


def _info(width, height, stride, fmt=PixelFormat.RGB888):
    return StreamInfo(width=width, height=height, stride=stride, pixel_format=fmt)


def test_header_fields(tmp_path):
    path = tmp_path / "out.bmp"
    data = bytes(range(12))
    bmp_save([data], _info(2, 2, 6), str(path), StillOptions())
    content = path.read_bytes()
    assert content[:2] == b"BM"
    filesize, _, _, offset = struct.unpack_from("<IHHI", content, 2)
    assert offset == 54
    assert filesize == len(content)
    size, width, height, planes, bits = struct.unpack_from("<IIiHH", content, 14)
    assert (size, width, height, planes, bits) == (40, 2, -2, 1, 24)


def test_rows_are_padded_to_four_bytes(tmp_path):
    path = tmp_path / "pad.bmp"
    data = b"\x01\x02\x03\x04\x05\x06"
    bmp_save([data], _info(1, 2, 3), str(path), StillOptions())
    content = path.read_bytes()
    assert len(content) == 54 + 2 * 4
    assert content[54:58] == b"\x01\x02\x03\x00"
    assert content[58:62] == b"\x04\x05\x06\x00"


def test_stride_padding_is_skipped_and_pillow_reads_it(tmp_path):
    path = tmp_path / "img.bmp"
    row0 = b"\x01\x02\x03\x04\x05\x06" + b"\xff\xff"
    row1 = b"\x07\x08\x09\x0a\x0b\x0c" + b"\xff\xff"
    bmp_save([row0 + row1], _info(2, 2, 8), str(path), StillOptions())
    with Image.open(path) as img:
        assert img.size == (2, 2)
        # BMP pixels are stored blue first.
        assert img.getpixel((0, 0)) == (3, 2, 1)
        assert img.getpixel((1, 1)) == (12, 11, 10)


def test_wrong_pixel_format_is_rejected(tmp_path):
    with pytest.raises(ValueError, match="should be RGB"):
        bmp_save([bytes(12)], _info(2, 2, 6, PixelFormat.BGR888), str(tmp_path / "x.bmp"), StillOptions())


def test_writes_to_stdout(capsysbinary):
    bmp_save([bytes(6)], _info(2, 1, 6), "-", StillOptions())
    out = capsysbinary.readouterr().out
    assert out[:2] == b"BM"
    assert len(out) == 54 + 8