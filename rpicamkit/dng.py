"""Save raw Bayer frames as DNG files."""

from __future__ import annotations

import logging
import math
import struct
import sys
import time
from array import array
from dataclasses import dataclass
from fractions import Fraction
from typing import Any, Iterable, Mapping, Sequence

from .stream import PixelFormat, StillOptions, StreamInfo

log = logging.getLogger(__name__)

MAKE_STRING = "Raspberry Pi"
SOFTWARE = "rpicam-still"

TIFF_RGGB = (0, 1, 1, 2)
TIFF_GRBG = (1, 0, 2, 1)
TIFF_BGGR = (2, 1, 1, 0)
TIFF_GBRG = (1, 2, 0, 1)

# The compression parameters that compressed raw frames always use.
COMPRESS_OFFSET = 2048
COMPRESS_MODE = 1


@dataclass(frozen=True)
class BayerFormat:
    """How a raw pixel format is laid out and which colour order it has."""

    name: str
    bits: int
    order: tuple[int, int, int, int]
    packed: bool
    compressed: bool


BAYER_FORMATS: dict[PixelFormat, BayerFormat] = {
    PixelFormat.SRGGB10_CSI2P: BayerFormat("RGGB-10", 10, TIFF_RGGB, True, False),
    PixelFormat.SGRBG10_CSI2P: BayerFormat("GRBG-10", 10, TIFF_GRBG, True, False),
    PixelFormat.SBGGR10_CSI2P: BayerFormat("BGGR-10", 10, TIFF_BGGR, True, False),
    PixelFormat.SGBRG10_CSI2P: BayerFormat("GBRG-10", 10, TIFF_GBRG, True, False),
    PixelFormat.SRGGB10: BayerFormat("RGGB-10", 10, TIFF_RGGB, False, False),
    PixelFormat.SGRBG10: BayerFormat("GRBG-10", 10, TIFF_GRBG, False, False),
    PixelFormat.SBGGR10: BayerFormat("BGGR-10", 10, TIFF_BGGR, False, False),
    PixelFormat.SGBRG10: BayerFormat("GBRG-10", 10, TIFF_GBRG, False, False),
    PixelFormat.SRGGB12_CSI2P: BayerFormat("RGGB-12", 12, TIFF_RGGB, True, False),
    PixelFormat.SGRBG12_CSI2P: BayerFormat("GRBG-12", 12, TIFF_GRBG, True, False),
    PixelFormat.SBGGR12_CSI2P: BayerFormat("BGGR-12", 12, TIFF_BGGR, True, False),
    PixelFormat.SGBRG12_CSI2P: BayerFormat("GBRG-12", 12, TIFF_GBRG, True, False),
    PixelFormat.SRGGB12: BayerFormat("RGGB-12", 12, TIFF_RGGB, False, False),
    PixelFormat.SGRBG12: BayerFormat("GRBG-12", 12, TIFF_GRBG, False, False),
    PixelFormat.SBGGR12: BayerFormat("BGGR-12", 12, TIFF_BGGR, False, False),
    PixelFormat.SGBRG12: BayerFormat("GBRG-12", 12, TIFF_GBRG, False, False),
    PixelFormat.SRGGB16: BayerFormat("RGGB-16", 16, TIFF_RGGB, False, False),
    PixelFormat.SGRBG16: BayerFormat("GRBG-16", 16, TIFF_GRBG, False, False),
    PixelFormat.SBGGR16: BayerFormat("BGGR-16", 16, TIFF_BGGR, False, False),
    PixelFormat.SGBRG16: BayerFormat("GBRG-16", 16, TIFF_GBRG, False, False),
    PixelFormat.R10_CSI2P: BayerFormat("BGGR-10", 10, TIFF_BGGR, True, False),
    PixelFormat.R10: BayerFormat("BGGR-10", 10, TIFF_BGGR, False, False),
    PixelFormat.R12: BayerFormat("BGGR-12", 12, TIFF_BGGR, False, False),
    PixelFormat.RGGB_PISP_COMP1: BayerFormat("RGGB-16-PISP", 16, TIFF_RGGB, False, True),
    PixelFormat.GRBG_PISP_COMP1: BayerFormat("GRBG-16-PISP", 16, TIFF_GRBG, False, True),
    PixelFormat.GBRG_PISP_COMP1: BayerFormat("GBRG-16-PISP", 16, TIFF_GBRG, False, True),
    PixelFormat.BGGR_PISP_COMP1: BayerFormat("BGGR-16-PISP", 16, TIFF_BGGR, False, True),
}


def _source_bytes(src: Any, info: StreamInfo, row_bytes: int) -> bytes:
    data = bytes(memoryview(src).cast("B"))
    if info.height and len(data) < (info.height - 1) * info.stride + row_bytes:
        raise ValueError("image buffer too small for stream geometry")
    return data


def unpack_10bit(src: Any, info: StreamInfo) -> array:
    """Unpack CSI-2 packed 10-bit rows into 16-bit samples, ``width`` per row."""
    width = info.width
    w_align = width & ~3
    groups = w_align // 4
    row_bytes = groups * 5 + (5 if w_align < width else 0)
    data = _source_bytes(src, info, row_bytes)
    out = array("H")
    for y in range(info.height):
        start = y * info.stride
        row = data[start : start + groups * 5]
        for a, b, c, d, lo in zip(row[0::5], row[1::5], row[2::5], row[3::5], row[4::5]):
            out.extend(
                (
                    (a << 2) | (lo & 3),
                    (b << 2) | ((lo >> 2) & 3),
                    (c << 2) | ((lo >> 4) & 3),
                    (d << 2) | ((lo >> 6) & 3),
                )
            )
        if w_align < width:
            p = start + groups * 5
            lo = data[p + 4]
            out.extend(
                (data[p + (x & 3)] << 2) | ((lo >> ((x & 3) << 1)) & 3) for x in range(w_align, width)
            )
    return out


def unpack_12bit(src: Any, info: StreamInfo) -> array:
    """Unpack CSI-2 packed 12-bit rows into 16-bit samples, ``width`` per row."""
    width = info.width
    w_align = width & ~1
    groups = w_align // 2
    row_bytes = groups * 3 + (3 if w_align < width else 0)
    data = _source_bytes(src, info, row_bytes)
    out = array("H")
    for y in range(info.height):
        start = y * info.stride
        row = data[start : start + groups * 3]
        for a, b, lo in zip(row[0::3], row[1::3], row[2::3]):
            out.extend(((a << 4) | (lo & 15), (b << 4) | ((lo >> 4) & 15)))
        if w_align < width:
            p = start + groups * 3
            out.append((data[p] << 4) | (data[p + 2] & 15))
    return out


def unpack_16bit(src: Any, info: StreamInfo) -> array:
    """Copy little-endian 16-bit rows into samples, ``width`` per row."""
    row_bytes = 2 * info.width
    data = _source_bytes(src, info, row_bytes)
    out = array("H")
    for y in range(info.height):
        start = y * info.stride
        out.frombytes(data[start : start + row_bytes])
    if sys.byteorder == "big":
        out.byteswap()
    return out


def postprocess(a: int) -> int:
    """Undo the companding of one decompressed sample and add the black offset."""
    if COMPRESS_MODE & 2:
        if COMPRESS_MODE == 3 and a < 0x4000:
            a = a >> 2
        elif a < 0x1000:
            a = a >> 4
        elif a < 0x1800:
            a = (a - 0x800) >> 3
        elif a < 0x3000:
            a = (a - 0x1000) >> 2
        elif a < 0x6000:
            a = (a - 0x2000) >> 1
        elif a < 0xC000:
            a = a - 0x4000
        else:
            a = 2 * (a - 0x8000)
    return min(0xFFFF, a + COMPRESS_OFFSET)


def dequantize(q: int, qmode: int) -> int:
    """Expand a quantised value according to its quantisation mode."""
    if qmode == 0:
        value = 16 * q if q < 320 else 32 * (q - 160)
    elif qmode == 1:
        value = 64 * q
    elif qmode == 2:
        value = 128 * q
    else:
        value = 256 * q if q < 94 else min(0xFFFF, 512 * (q - 47))
    return value & 0xFFFF


def sub_block(w: int) -> tuple[int, int, int, int]:
    """Decode one 32-bit word into four samples (every other pixel of an 8-pixel block)."""
    qmode = w & 3
    if qmode < 3:
        field0 = (w >> 2) & 511
        field1 = (w >> 11) & 127
        field2 = (w >> 18) & 127
        field3 = (w >> 25) & 127
        if qmode == 2 and field0 >= 384:
            q1 = field0
            q2 = field1 + 384
        else:
            q1 = field0 if field1 >= 64 else field0 + 64 - field1
            q2 = field0 + field1 - 64 if field1 >= 64 else field0
        p1 = max(0, q1 - 64)
        p2 = max(0, q2 - 64)
        if qmode == 2:
            p1 = min(384, p1)
            p2 = min(384, p2)
        q0 = p1 + field2
        q3 = p2 + field3
    else:
        pack0 = (w >> 2) & 32767
        pack1 = (w >> 17) & 32767
        q0 = (pack0 & 15) + 16 * ((pack0 >> 8) // 11)
        q1 = (pack0 >> 4) % 176
        q2 = (pack1 & 15) + 16 * ((pack1 >> 8) // 11)
        q3 = (pack1 >> 4) % 176
    return tuple(dequantize(q, qmode) for q in (q0, q1, q2, q3))


def uncompress(src: Any, info: StreamInfo) -> array:
    """Decompress a compressed raw frame; rows are padded to a multiple of 8 samples."""
    padded = (info.width + 7) & ~7
    data = _source_bytes(src, info, padded)
    out = array("H", bytes(2 * padded * info.height))
    for y in range(info.height):
        sp = y * info.stride
        dp = y * padded
        for _ in range(0, info.width, 8):
            if COMPRESS_MODE & 1:
                w0, w1 = struct.unpack_from("<II", data, sp)
                sp += 8
                block = [0] * 8
                block[0::2] = sub_block(w0)
                block[1::2] = sub_block(w1)
                out[dp : dp + 8] = array("H", (postprocess(v) for v in block))
            else:
                out[dp : dp + 8] = array("H", (postprocess(b << 8) for b in data[sp : sp + 8]))
                sp += 8
            dp += 8
    return out


class Matrix:
    """A 3x3 matrix stored row by row."""

    __slots__ = ("m",)

    def __init__(self, *args: float) -> None:
        if not args:
            values: Sequence[float] = (0.0,) * 9
        elif len(args) == 3:
            d0, d1, d2 = args
            values = (d0, 0, 0, 0, d1, 0, 0, 0, d2)
        elif len(args) == 9:
            values = args
        else:
            raise TypeError("Matrix takes 0, 3 or 9 values")
        self.m = tuple(float(v) for v in values)

    def transpose(self) -> "Matrix":
        m = self.m
        return Matrix(m[0], m[3], m[6], m[1], m[4], m[7], m[2], m[5], m[8])

    def cofactor(self) -> "Matrix":
        m = self.m
        return Matrix(
            m[4] * m[8] - m[5] * m[7], -(m[3] * m[8] - m[5] * m[6]), m[3] * m[7] - m[4] * m[6],
            -(m[1] * m[8] - m[2] * m[7]), m[0] * m[8] - m[2] * m[6], -(m[0] * m[7] - m[1] * m[6]),
            m[1] * m[5] - m[2] * m[4], -(m[0] * m[5] - m[2] * m[3]), m[0] * m[4] - m[1] * m[3],
        )

    def adjugate(self) -> "Matrix":
        return self.cofactor().transpose()

    def determinant(self) -> float:
        m = self.m
        return (
            m[0] * (m[4] * m[8] - m[5] * m[7])
            - m[1] * (m[3] * m[8] - m[5] * m[6])
            + m[2] * (m[3] * m[7] - m[4] * m[6])
        )

    def inverse(self) -> "Matrix":
        det = self.determinant()
        if det == 0:
            raise ValueError("matrix is singular")
        return self.adjugate() * (1.0 / det)

    def __mul__(self, other: object) -> "Matrix":
        if isinstance(other, Matrix):
            a, b = self.m, other.m
            return Matrix(
                *(
                    a[i * 3] * b[j] + a[i * 3 + 1] * b[3 + j] + a[i * 3 + 2] * b[6 + j]
                    for i in range(3)
                    for j in range(3)
                )
            )
        if isinstance(other, (int, float)):
            return Matrix(*(v * other for v in self.m))
        return NotImplemented

    def __iter__(self):
        return iter(self.m)

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Matrix):
            return NotImplemented
        return self.m == other.m

    def __repr__(self) -> str:
        return f"Matrix{self.m}"


# sRGB (D65) to XYZ.
RGB_TO_XYZ = Matrix(
    0.4124564, 0.3575761, 0.1804375,
    0.2126729, 0.7151522, 0.0721750,
    0.0193339, 0.1191920, 0.9503041,
)

# A plausible colour matrix for when the frame metadata has none.
DEFAULT_CCM = Matrix(
    1.90255, -0.77478, -0.12777,
    -0.31338, 1.88197, -0.56858,
    -0.06001, -0.61785, 1.67786,
)

# TIFF field types.
_BYTE, _ASCII, _SHORT, _LONG, _RATIONAL, _SRATIONAL = 1, 2, 3, 4, 5, 10


def _rational(value: float, signed: bool) -> tuple[int, int]:
    limit = 0x7FFFFFFF if signed else 0xFFFFFFFF
    if math.isnan(value):
        return 0, 1
    if not signed and value < 0:
        value = 0.0
    magnitude = abs(value)
    if math.isinf(value) or magnitude >= limit:
        return (limit if value > 0 else -limit), 1
    max_den = limit if magnitude < 1 else int(limit / (magnitude + 1))
    frac = Fraction(value).limit_denominator(max(1, max_den))
    return frac.numerator, frac.denominator


def _encode(field_type: int, values: Any) -> tuple[bytes, int]:
    if field_type == _ASCII:
        payload = values.encode("ascii") + b"\0"
        return payload, len(payload)
    values = list(values) if isinstance(values, Iterable) else [values]
    count = len(values)
    if field_type == _BYTE:
        return bytes(values), count
    if field_type == _SHORT:
        return struct.pack(f"<{count}H", *values), count
    if field_type == _LONG:
        return struct.pack(f"<{count}I", *values), count
    signed = field_type == _SRATIONAL
    pairs = [n for v in values for n in _rational(float(v), signed)]
    return struct.pack(f"<{2 * count}{'i' if signed else 'I'}", *pairs), count


class _TiffBuilder:
    """Lays out a little-endian TIFF file: data blocks first, directories after them."""

    def __init__(self) -> None:
        self._out = bytearray(b"II*\x00\x00\x00\x00\x00")

    def data(self, payload: bytes) -> int:
        if len(self._out) & 1:
            self._out.append(0)
        offset = len(self._out)
        self._out += payload
        return offset

    def ifd(self, entries: list[tuple[int, int, Any]]) -> int:
        encoded = []
        for tag, field_type, values in sorted(entries, key=lambda e: e[0]):
            payload, count = _encode(field_type, values)
            if len(payload) <= 4:
                field = payload.ljust(4, b"\0")
            else:
                field = struct.pack("<I", self.data(payload))
            encoded.append(struct.pack("<HHI", tag, field_type, count) + field)
        block = struct.pack("<H", len(encoded)) + b"".join(encoded) + struct.pack("<I", 0)
        return self.data(block)

    def finish(self, first_ifd: int) -> bytes:
        struct.pack_into("<I", self._out, 4, first_ifd)
        return bytes(self._out)


def _le_bytes(samples: array) -> bytes:
    if sys.byteorder == "big":
        samples = array("H", samples)
        samples.byteswap()
    return samples.tobytes()


def _thumbnail(buf: array, stride: int, info: StreamInfo, bits: int) -> bytes:
    out = bytearray()
    for y in range(info.height >> 4):
        for x in range(info.width >> 4):
            off = (y * stride + x) << 4
            grey = buf[off] + buf[off + 1] + buf[off + stride] + buf[off + stride + 1]
            grey = (grey << 14) >> bits
            value = int(math.sqrt(grey)) & 0xFF  # simple gamma correction
            out += bytes((value, value, value))
    return bytes(out)


def dng_save(
    mem: Sequence,
    info: StreamInfo,
    metadata: Mapping[str, Any] | None,
    filename: str,
    cam_model: str,
    options: StillOptions | None = None,
) -> None:
    """Write a raw Bayer frame, with a small greyscale thumbnail, as a DNG file."""
    bayer = BAYER_FORMATS.get(info.pixel_format)
    if bayer is None:
        raise ValueError("unsupported Bayer format")
    log.info("Bayer format is %s", bayer.name)
    metadata = metadata or {}

    stride = info.width
    if bayer.compressed:
        buf = uncompress(mem[0], info)
        stride = (info.width + 7) & ~7
    elif bayer.packed and bayer.bits == 10:
        buf = unpack_10bit(mem[0], info)
    elif bayer.packed:
        buf = unpack_12bit(mem[0], info)
    else:
        buf = unpack_16bit(mem[0], info)

    scale = (1 << bayer.bits) / 65536.0
    black_levels = [4096 * scale] * 4
    levels = metadata.get("SensorBlackLevels")
    if levels is not None:
        # Levels come as R, Gr, Gb, B; place them in the sensor's Bayer order.
        for i in range(4):
            j = bayer.order[i]
            j = 0 if j == 0 else (3 if j == 2 else 1 + bool(bayer.order[i ^ 1]))
            black_levels[j] = levels[i] * scale
    else:
        log.warning("no black level found, using default")

    exposure = metadata.get("ExposureTime")
    exp_time = 10000.0
    if exposure is not None:
        exp_time = float(exposure)
    else:
        log.warning("default to exposure time of %gus", exp_time)
    exp_time /= 1e6

    gain = metadata.get("AnalogueGain")
    iso = 100
    if gain is not None:
        iso = int(gain * 100.0) & 0xFFFF
    else:
        log.warning("default to ISO value of %d", iso)

    neutral = [1.0, 1.0, 1.0]
    wb_gains = Matrix(1, 1, 1)
    gains = metadata.get("ColourGains")
    if gains is not None:
        neutral[0] = 1.0 / gains[0]
        neutral[2] = 1.0 / gains[1]
        wb_gains = Matrix(gains[0], 1, gains[1])

    ccm_values = metadata.get("ColourCorrectionMatrix")
    if ccm_values is not None:
        ccm = Matrix(*ccm_values)
    else:
        ccm = DEFAULT_CCM
        log.warning("no CCM metadata found")

    cam_xyz = (RGB_TO_XYZ * ccm * wb_gains).inverse()
    log.debug("Black levels %s, exposure time %gus, ISO %d", black_levels, exp_time * 1e6, iso)
    log.debug("Neutral %s, Cam_XYZ %s", neutral, cam_xyz.m)

    thumb_w, thumb_h = info.width >> 4, info.height >> 4
    raw = array("H")
    for y in range(info.height):
        raw.extend(buf[y * stride : y * stride + info.width])
    raw_bytes = _le_bytes(raw)
    thumb_bytes = _thumbnail(buf, stride, info, bayer.bits)

    tiff = _TiffBuilder()
    thumb_offset = tiff.data(thumb_bytes)
    raw_offset = tiff.data(raw_bytes)

    raw_ifd = tiff.ifd(
        [
            (254, _LONG, 0),
            (256, _LONG, info.width),
            (257, _LONG, info.height),
            (258, _SHORT, 16),
            (259, _SHORT, 1),
            (262, _SHORT, 32803),
            (273, _LONG, raw_offset),
            (277, _SHORT, 1),
            (278, _LONG, max(1, info.height)),
            (279, _LONG, len(raw_bytes)),
            (284, _SHORT, 1),
            (33421, _SHORT, (2, 2)),
            (33422, _BYTE, bayer.order),
            (50713, _SHORT, (2, 2)),
            (50714, _RATIONAL, black_levels),
            (50717, _LONG, (1 << bayer.bits) - 1),
        ]
    )

    exif_entries: list[tuple[int, int, Any]] = [
        (33434, _RATIONAL, exp_time),
        (34855, _SHORT, iso),
        (36867, _ASCII, time.strftime("%Y:%m:%d %H:%M:%S")),
    ]
    lens = metadata.get("LensPosition")
    if lens is not None:
        distance = 1.0 / lens if lens > 0.0 else math.inf
        exif_entries.append((37382, _RATIONAL, distance))
    exif_ifd = tiff.ifd(exif_entries)

    main_ifd = tiff.ifd(
        [
            (254, _LONG, 1),
            (256, _LONG, thumb_w),
            (257, _LONG, thumb_h),
            (258, _SHORT, (8, 8, 8)),
            (259, _SHORT, 1),
            (262, _SHORT, 2),
            (271, _ASCII, MAKE_STRING),
            (272, _ASCII, cam_model),
            (273, _LONG, thumb_offset),
            (274, _SHORT, 1),
            (277, _SHORT, 3),
            (278, _LONG, max(1, thumb_h)),
            (279, _LONG, len(thumb_bytes)),
            (284, _SHORT, 1),
            (305, _ASCII, SOFTWARE),
            (330, _LONG, raw_ifd),
            (34665, _LONG, exif_ifd),
            (50706, _BYTE, (1, 1, 0, 0)),
            (50707, _BYTE, (1, 0, 0, 0)),
            (50708, _ASCII, f"{MAKE_STRING} {cam_model}"),
            (50721, _SRATIONAL, cam_xyz.m),
            (50728, _RATIONAL, neutral),
            (50778, _SHORT, 21),
        ]
    )

    with open(filename, "wb") as fp:
        fp.write(tiff.finish(main_ifd))