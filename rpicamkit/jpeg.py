"""Encode YUV frames as JPEG files carrying EXIF data and an optional thumbnail."""

from __future__ import annotations

import io
import logging
import re
import struct
import sys
import time
from dataclasses import dataclass, field
from typing import Any, Mapping, Sequence

from PIL import Image

from .stream import PixelFormat, StillOptions, StreamInfo

log = logging.getLogger(__name__)

MAKE_STRING = "Raspberry Pi"
SOFTWARE = "rpicam-apps"
EXIF_HEADER = b"\xff\xd8\xff\xe1"
_EXIF_PREAMBLE = b"Exif\x00\x00"

# EXIF value formats.
BYTE, ASCII, SHORT, LONG, RATIONAL, SBYTE, UNDEFINED, SSHORT, SLONG, SRATIONAL = range(1, 11)
FORMAT_SIZES = {BYTE: 1, ASCII: 1, SHORT: 2, LONG: 4, RATIONAL: 8, SBYTE: 1,
                UNDEFINED: 1, SSHORT: 2, SLONG: 4, SRATIONAL: 8}

IFD_NAMES = ("IFD0", "EXIF", "EINT", "GPS", "IFD1")

# Tag name -> (id, format, components); zero components means variable length.
_TAGS: dict[str, tuple[int, int, int]] = {
    "ImageWidth": (0x0100, SHORT, 1),
    "ImageLength": (0x0101, SHORT, 1),
    "Compression": (0x0103, SHORT, 1),
    "ImageDescription": (0x010E, ASCII, 0),
    "Make": (0x010F, ASCII, 0),
    "Model": (0x0110, ASCII, 0),
    "Orientation": (0x0112, SHORT, 1),
    "XResolution": (0x011A, RATIONAL, 1),
    "YResolution": (0x011B, RATIONAL, 1),
    "ResolutionUnit": (0x0128, SHORT, 1),
    "Software": (0x0131, ASCII, 0),
    "DateTime": (0x0132, ASCII, 20),
    "Artist": (0x013B, ASCII, 0),
    "JPEGInterchangeFormat": (0x0201, LONG, 1),
    "JPEGInterchangeFormatLength": (0x0202, LONG, 1),
    "YCbCrCoefficients": (0x0211, UNDEFINED, 0),
    "Copyright": (0x8298, ASCII, 0),
    "ExposureTime": (0x829A, RATIONAL, 1),
    "FNumber": (0x829D, RATIONAL, 1),
    "ISOSpeedRatings": (0x8827, SHORT, 1),
    "DateTimeOriginal": (0x9003, ASCII, 20),
    "DateTimeDigitized": (0x9004, ASCII, 20),
    "ExposureBiasValue": (0x9204, SRATIONAL, 1),
    "SubjectDistance": (0x9206, RATIONAL, 1),
    "FocalLength": (0x920A, RATIONAL, 1),
    "UserComment": (0x9286, UNDEFINED, 0),
}
_GPS_TAGS: dict[str, tuple[int, int, int]] = {
    "GPSLatitudeRef": (0x0001, ASCII, 2),
    "GPSLatitude": (0x0002, RATIONAL, 3),
    "GPSLongitudeRef": (0x0003, ASCII, 2),
    "GPSLongitude": (0x0004, RATIONAL, 3),
    "GPSAltitude": (0x0006, RATIONAL, 1),
}
_BY_ID = {tid: (fmt, comps) for tid, fmt, comps in _TAGS.values()}
_GPS_BY_ID = {tid: (fmt, comps) for tid, fmt, comps in _GPS_TAGS.values()}

# Formats that the tag table leaves undefined but which are known.
_EXCEPTIONS = {0x0211: (RATIONAL, 3)}

TAG_EXPOSURE_TIME = 0x829A
TAG_ISO = 0x8827
TAG_SUBJECT_DISTANCE = 0x9206
TAG_THUMB_OFFSET = 0x0201
TAG_THUMB_LENGTH = 0x0202

_SUB_IFD_POINTERS = {"EXIF": 0x8769, "GPS": 0x8825, "EINT": 0xA005}


@dataclass
class ExifEntry:
    """One EXIF tag with its raw little-endian value bytes."""

    tag: int
    format: int
    components: int
    data: bytearray = field(default_factory=bytearray)

    def set_string(self, text: str) -> None:
        raw = text.encode("latin-1", "replace")
        self.data = bytearray(raw)
        self.components = len(raw)
        self.format = ASCII

    def set_short(self, value: int, index: int = 0) -> None:
        struct.pack_into("<H", self.data, 2 * index, int(value) & 0xFFFF)

    def set_long(self, value: int, index: int = 0) -> None:
        struct.pack_into("<I", self.data, 4 * index, int(value) & 0xFFFFFFFF)

    def set_rational(self, num: int, den: int, index: int = 0) -> None:
        struct.pack_into("<II", self.data, 8 * index, int(num) & 0xFFFFFFFF, int(den) & 0xFFFFFFFF)


class ExifData:
    """EXIF directories, serialised little-endian with an ``Exif`` preamble."""

    def __init__(self) -> None:
        self.ifds: dict[str, dict[int, ExifEntry]] = {name: {} for name in IFD_NAMES}

    def entry(self, ifd: str, tag: int) -> ExifEntry:
        """Return the tag's entry in ``ifd``, creating and initialising it if absent."""
        entries = self.ifds[ifd]
        if tag in entries:
            return entries[tag]
        table = _GPS_BY_ID if ifd == "GPS" else _BY_ID
        fmt, comps = table.get(tag, (0, 0))
        size = FORMAT_SIZES.get(fmt, 0) * comps
        created = ExifEntry(tag, fmt, comps, bytearray(size))
        entries[tag] = created
        return created

    @staticmethod
    def _ifd_size(count: int, entries: list[ExifEntry]) -> int:
        extra = 0
        for e in entries:
            if len(e.data) > 4:
                extra += len(e.data) + (len(e.data) & 1)
        return 2 + 12 * count + 4 + extra

    @staticmethod
    def _serialise(entries: list[tuple[int, int, int, bytes]], start: int, next_ifd: int) -> bytes:
        entries = sorted(entries, key=lambda e: e[0])
        data_off = start + 2 + 12 * len(entries) + 4
        head = bytearray(struct.pack("<H", len(entries)))
        tail = bytearray()
        for tag, fmt, comps, data in entries:
            head += struct.pack("<HHI", tag, fmt, comps)
            if len(data) <= 4:
                head += data.ljust(4, b"\0")
            else:
                head += struct.pack("<I", data_off + len(tail))
                tail += data
                if len(data) & 1:
                    tail.append(0)
        head += struct.pack("<I", next_ifd)
        return bytes(head + tail)

    def to_bytes(self) -> bytes:
        """Serialise as ``Exif\\0\\0`` followed by a TIFF structure."""
        present = {name: list(self.ifds[name].values()) for name in IFD_NAMES}
        pointers: dict[str, list[str]] = {"IFD0": [], "EXIF": []}
        for sub in ("EXIF", "GPS"):
            if present[sub] or (sub == "EXIF" and present["EINT"]):
                pointers["IFD0"].append(sub)
        if present["EINT"]:
            pointers["EXIF"].append("EINT")
        order = ["IFD0"] + [n for n in ("EXIF", "EINT", "GPS") if n in pointers["IFD0"] + pointers["EXIF"]]
        if present["IFD1"]:
            order.append("IFD1")

        offsets: dict[str, int] = {}
        pos = 8
        for name in order:
            offsets[name] = pos
            count = len(present[name]) + len(pointers.get(name, []))
            pos += self._ifd_size(count, present[name])

        out = bytearray(b"II*\x00" + struct.pack("<I", 8))
        for name in order:
            raw = [(e.tag, e.format, e.components, bytes(e.data)) for e in present[name]]
            for sub in pointers.get(name, []):
                raw.append((_SUB_IFD_POINTERS[sub], LONG, 1, struct.pack("<I", offsets[sub])))
            next_ifd = offsets["IFD1"] if name == "IFD0" and "IFD1" in offsets else 0
            out += self._serialise(raw, offsets[name], next_ifd)
        return _EXIF_PREAMBLE + bytes(out)


_TAG_SPEC = re.compile(r"([^.]{1,4})\.([^=]{1,127})=")
_INT = re.compile(r"\s*([+-]?\d+)")
_RATIO = re.compile(r"\s*([+-]?\d+)/\s*([+-]?\d+)")


def _read_value(fmt: int, text: str, dest: bytearray, index: int) -> int:
    size = FORMAT_SIZES[fmt]
    if fmt in (RATIONAL, SRATIONAL):
        m = _RATIO.match(text)
        if m is None:
            kind = "unsigned" if fmt == RATIONAL else "signed"
            raise ValueError(f"failed to read EXIF {kind} rational")
        code = "<II" if fmt == RATIONAL else "<ii"
        mask = 0xFFFFFFFF
        num, den = (int(v) & mask for v in m.groups())
        if fmt == SRATIONAL:
            num, den = (v - (1 << 32) if v >= 1 << 31 else v for v in (num, den))
        struct.pack_into(code, dest, index * size, num, den)
        return m.end()
    m = _INT.match(text)
    if m is None:
        raise ValueError("failed to read EXIF integer value")
    value = int(m.group(1))
    bits = 8 * size
    value &= (1 << bits) - 1
    code = {SHORT: "<H", LONG: "<I", SSHORT: "<H", SLONG: "<I", BYTE: "<B", SBYTE: "<B"}[fmt]
    struct.pack_into(code, dest, index * size, value)
    return m.end()


def exif_read_tag(exif: ExifData, text: str) -> None:
    """Apply one ``IFD.Tag=value[,value...]`` item to the EXIF data."""
    m = _TAG_SPEC.match(text)
    if m is None:
        raise ValueError("failed to read EXIF IFD and tag")
    ifd, tag_name = m.groups()
    if ifd not in IFD_NAMES:
        raise ValueError(f"bad IFD name {ifd}")
    table = _GPS_TAGS if ifd == "GPS" else _TAGS
    info = table.get(tag_name) or _TAGS.get(tag_name) or _GPS_TAGS.get(tag_name)
    if info is None:
        log.warning("no EXIF tag %s found - ignoring", tag_name)
        return
    consumed = m.end()

    entry = exif.entry(ifd, info[0])
    if entry.format == 0:
        entry.format, entry.components = info[1], info[2]
        entry.data = bytearray(FORMAT_SIZES[entry.format] * entry.components)
    if entry.format == UNDEFINED:
        if entry.tag in _EXCEPTIONS:
            entry.format, entry.components = _EXCEPTIONS[entry.tag]
        else:
            log.warning("format for tag %s undefined - treating as ASCII", tag_name)
            entry.format = ASCII

    if entry.format == ASCII:
        entry.set_string(text[consumed:])
        return
    item_size = FORMAT_SIZES[entry.format]
    if not entry.data or entry.components == 0 or len(entry.data) < entry.components * item_size:
        if entry.components == 0:
            entry.components = text[consumed:].count(",") + 1
        entry.data = bytearray(entry.components * item_size)
    for i in range(entry.components):
        if consumed >= len(text):
            raise ValueError(f"too few parameters for EXIF tag {tag_name}")
        consumed += _read_value(entry.format, text[consumed:], entry.data, i) + 1


def _yuyv_pixels(data: bytes, info: StreamInfo, ow: int, oh: int) -> bytes:
    offsets = []
    for i in range(ow):
        off = (i * info.width) // ow * 2
        align = off & ~3
        offsets += (off, align + 1, align + 3)
    out = bytearray()
    for y in range(oh):
        base = ((y * info.height) // oh) * info.stride
        out += bytes(data[base + k] for k in offsets)
    return bytes(out)


def _yuv420_pixels(data: bytes, info: StreamInfo, ow: int, oh: int) -> bytes:
    u_base = info.stride * info.height
    v_base = u_base + (info.stride // 2) * (info.height // 2)
    cols = [(i * info.width) // ow for i in range(ow)]
    out = bytearray()
    for y in range(oh):
        off = ((y * info.height) // oh) * info.stride
        off_uv = (((y // 2) * info.height) // oh) * (info.stride // 2)
        for c in cols:
            out += bytes((data[off + c], data[u_base + off_uv + c // 2], data[v_base + off_uv + c // 2]))
    return bytes(out)


def yuv_to_jpeg(data: Any, info: StreamInfo, output_width: int, output_height: int,
                quality: int, restart: int) -> bytes:
    """Encode a YUYV or YUV420 frame, resampled to the output size, as a complete JPEG."""
    raw = bytes(memoryview(data).cast("B"))
    if info.pixel_format == PixelFormat.YUYV:
        pixels = _yuyv_pixels(raw, info, output_width, output_height)
    elif info.pixel_format == PixelFormat.YUV420:
        pixels = _yuv420_pixels(raw, info, output_width, output_height)
    else:
        raise ValueError("unsupported YUV format in JPEG encode")
    image = Image.frombytes("YCbCr", (output_width, output_height), pixels)
    encoded = io.BytesIO()
    extra = {"restart_marker_blocks": restart} if restart else {}
    image.save(encoded, format="JPEG", quality=quality, **extra)
    return encoded.getvalue()


def create_exif_data(mem: Sequence, info: StreamInfo, metadata: Mapping[str, Any] | None,
                     cam_model: str, options: StillOptions) -> tuple[bytes, bytes]:
    """Build the EXIF block and thumbnail JPEG (empty when thumbnails are off)."""
    metadata = metadata or {}
    exif = ExifData()
    exif.entry("EXIF", _TAGS["Make"][0]).set_string(MAKE_STRING)
    exif.entry("EXIF", _TAGS["Model"][0]).set_string(cam_model)
    exif.entry("EXIF", _TAGS["Software"][0]).set_string(SOFTWARE)
    stamp = time.strftime("%Y:%m:%d %H:%M:%S")
    for name in ("DateTime", "DateTimeOriginal", "DateTimeDigitized"):
        exif.entry("EXIF", _TAGS[name][0]).set_string(stamp)

    exposure = metadata.get("ExposureTime")
    if exposure is not None:
        exif.entry("EXIF", TAG_EXPOSURE_TIME).set_rational(int(exposure), 1000000)
    gain = metadata.get("AnalogueGain")
    if gain is not None:
        digital = metadata.get("DigitalGain")
        total = gain * (digital if digital is not None else 1.0)
        exif.entry("EXIF", TAG_ISO).set_short(int(100 * total))
    lens = metadata.get("LensPosition")
    if lens is not None:
        exif.entry("EXIF", TAG_SUBJECT_DISTANCE).set_rational(1000, int(1000.0 * lens))

    for item in options.exif:
        log.debug("Processing EXIF item: %s", item)
        exif_read_tag(exif, item)

    thumb = b""
    if options.thumb_quality:
        exif.entry("IFD1", _TAGS["ImageWidth"][0]).set_short(options.thumb_width)
        exif.entry("IFD1", _TAGS["ImageLength"][0]).set_short(options.thumb_height)
        exif.entry("IFD1", _TAGS["Compression"][0]).set_short(6)
        offset_entry = exif.entry("IFD1", TAG_THUMB_OFFSET)
        length_entry = exif.entry("IFD1", TAG_THUMB_LENGTH)
        offset_entry.set_long(0)
        length_entry.set_long(0)
        exif_len = len(exif.to_bytes())

        q = options.thumb_quality
        while q > 0:
            thumb = yuv_to_jpeg(mem[0], info, options.thumb_width, options.thumb_height, q, 0)
            if len(thumb) < 60000:  # the whole EXIF segment must stay below 64K
                break
            q -= 5
        if q <= 0:
            raise RuntimeError("failed to make acceptable thumbnail")
        offset_entry.set_long(exif_len - len(_EXIF_PREAMBLE))
        length_entry.set_long(len(thumb))

    return exif.to_bytes(), thumb


def _skip_jfif(jpeg: bytes) -> int:
    if jpeg[2:4] == b"\xff\xe0":
        return 4 + struct.unpack(">H", jpeg[4:6])[0]
    return 2


def jpeg_save(mem: Sequence, info: StreamInfo, metadata: Mapping[str, Any] | None,
              filename: str, cam_model: str, options: StillOptions) -> None:
    """Write a YUV frame as a JPEG with an EXIF segment ("-" for stdout)."""
    if info.width & 1 or info.height & 1:
        raise ValueError("both width and height must be even")
    if len(mem) != 1:
        raise ValueError("only single plane YUV supported")

    exif_bytes, thumb = create_exif_data(mem, info, metadata, cam_model, options)
    jpeg = yuv_to_jpeg(mem[0], info, info.width, info.height, options.quality, options.restart)
    log.debug("JPEG size is %d, EXIF data len %d", len(jpeg), len(exif_bytes))

    seg_len = len(exif_bytes) + len(thumb) + 2
    payload = b"".join((EXIF_HEADER, bytes(((seg_len >> 8) & 0xFF, seg_len & 0xFF)),
                        exif_bytes, thumb, jpeg[_skip_jfif(jpeg):]))
    if filename == "-":
        sys.stdout.buffer.write(payload)
        sys.stdout.buffer.flush()
    else:
        with open(filename, "wb") as fp:
            fp.write(payload)