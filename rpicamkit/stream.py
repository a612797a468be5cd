"""Stream description and option records shared by image writers, encoders and outputs."""

from __future__ import annotations

import enum
from dataclasses import dataclass, field


class PixelFormat(enum.Enum):
    """Pixel layouts a camera stream can deliver."""

    RGB888 = "RGB888"
    BGR888 = "BGR888"
    RGB161616 = "RGB161616"
    BGR161616 = "BGR161616"
    YUV420 = "YUV420"
    YUYV = "YUYV"

    SRGGB10_CSI2P = "SRGGB10_CSI2P"
    SGRBG10_CSI2P = "SGRBG10_CSI2P"
    SBGGR10_CSI2P = "SBGGR10_CSI2P"
    SGBRG10_CSI2P = "SGBRG10_CSI2P"
    SRGGB10 = "SRGGB10"
    SGRBG10 = "SGRBG10"
    SBGGR10 = "SBGGR10"
    SGBRG10 = "SGBRG10"
    SRGGB12_CSI2P = "SRGGB12_CSI2P"
    SGRBG12_CSI2P = "SGRBG12_CSI2P"
    SBGGR12_CSI2P = "SBGGR12_CSI2P"
    SGBRG12_CSI2P = "SGBRG12_CSI2P"
    SRGGB12 = "SRGGB12"
    SGRBG12 = "SGRBG12"
    SBGGR12 = "SBGGR12"
    SGBRG12 = "SGBRG12"
    SRGGB16 = "SRGGB16"
    SGRBG16 = "SGRBG16"
    SBGGR16 = "SBGGR16"
    SGBRG16 = "SGBRG16"
    R10_CSI2P = "R10_CSI2P"
    R10 = "R10"
    R12 = "R12"
    RGGB_PISP_COMP1 = "RGGB_PISP_COMP1"
    GRBG_PISP_COMP1 = "GRBG_PISP_COMP1"
    GBRG_PISP_COMP1 = "GBRG_PISP_COMP1"
    BGGR_PISP_COMP1 = "BGGR_PISP_COMP1"


class Platform(enum.Enum):
    """Camera platform generations."""

    VC4 = "vc4"
    PISP = "pisp"


@dataclass(frozen=True)
class StreamInfo:
    """Geometry and format of one image stream."""

    width: int
    height: int
    stride: int
    pixel_format: PixelFormat
    colour_space: str | None = None


@dataclass
class StillOptions:
    """Settings used when saving still images."""

    encoding: str = "jpg"
    quality: int = 93
    restart: int = 0
    thumb_width: int = 320
    thumb_height: int = 240
    thumb_quality: int = 70
    exif: list[str] = field(default_factory=list)
    output: str = ""
    verbose: int = 1


@dataclass
class VideoOptions:
    """Settings used when encoding and writing video."""

    codec: str = "h264"
    output: str = ""
    circular: int = 0
    segment: int = 0
    split: bool = False
    wrap: int = 0
    flush: bool = False
    pause: bool = False
    initial: str = "record"
    save_pts: str = ""
    metadata: str = ""
    metadata_format: str = "json"
    listen: bool = False
    encoder_libs: str = ""
    libav_video_codec: str = "h264_v4l2m2m"
    platform: Platform = Platform.VC4
    quality: int = 50
    framerate: float | None = None
    bitrate: int = 0
    profile: str = ""
    level: str = ""
    intra: int = 0
    inline_headers: bool = False
    width: int = 0
    height: int = 0
    verbose: int = 1