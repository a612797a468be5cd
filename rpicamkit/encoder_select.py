"""Pick and construct the encoder that a set of video options asks for."""

from __future__ import annotations

from . import mjpeg_encoder, null_encoder  # noqa: F401  (registers "mjpeg" and "null")
from .encoder import Encoder, factory
from .stream import Platform, StreamInfo, VideoOptions


def _create(name: str, options: VideoOptions, info: StreamInfo) -> Encoder:
    create_func = factory.get(name)
    if create_func is None:
        raise RuntimeError(f"Encoder {name} is not available")
    return create_func(options, info)


def _h264_select(options: VideoOptions, info: StreamInfo) -> Encoder:
    if options.platform == Platform.VC4:
        return _create("h264", options, info)
    if factory.has_encoder("libav"):
        # No hardware codec, so use x264 through libav.
        options.libav_video_codec = "libx264"
        return _create("libav", options, info)
    raise RuntimeError("Unable to find an appropriate H.264 codec")


def _libav_select(options: VideoOptions, info: StreamInfo) -> Encoder:
    if options.libav_video_codec == "h264_v4l2m2m" and options.platform != Platform.VC4:
        options.libav_video_codec = "libx264"
    return _create("libav", options, info)


def create_encoder(options: VideoOptions, info: StreamInfo) -> Encoder:
    """Construct the encoder for ``options.codec`` (compared case-insensitively)."""
    codec = options.codec.lower()
    if codec == "yuv420":
        return _create("null", options, info)
    if codec == "h264":
        return _h264_select(options, info)
    if factory.has_encoder("libav") and codec == "libav":
        return _libav_select(options, info)
    if codec == "mjpeg":
        return _create("mjpeg", options, info)
    raise RuntimeError(f"Unrecognised codec {options.codec}")