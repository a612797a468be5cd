import dataclasses

import pytest

from rpicamkit.stream import PixelFormat, Platform, StillOptions, StreamInfo, VideoOptions


def test_stream_info_is_immutable():
    info = StreamInfo(width=4, height=2, stride=4, pixel_format=PixelFormat.YUV420)
    with pytest.raises(dataclasses.FrozenInstanceError):
        info.width = 8
    assert info.width == 4


def test_stream_info_equality_and_replace():
    info = StreamInfo(width=4, height=2, stride=4, pixel_format=PixelFormat.YUV420)
    same = StreamInfo(4, 2, 4, PixelFormat.YUV420)
    assert info == same
    wider = dataclasses.replace(info, width=8)
    assert wider.width == 8
    assert wider.height == info.height
    assert info.width == 4


def test_still_options_exif_lists_are_independent():
    first = StillOptions()
    second = StillOptions()
    first.exif.append("IFD0.Artist=someone")
    assert second.exif == []


def test_pixel_format_lookup_by_name():
    assert PixelFormat["YUYV"] is PixelFormat.YUYV
    assert PixelFormat("BGR888") is PixelFormat.BGR888


def test_video_options_platform_round_trips():
    options = VideoOptions(platform=Platform.PISP)
    assert Platform(options.platform.value) is Platform.PISP