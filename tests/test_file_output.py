from pathlib import Path

from rpicamkit.file_output import FileOutput
from rpicamkit.output import OutputFlag
from rpicamkit.stream import VideoOptions


def test_buffers_appended_to_single_file(tmp_path):
    path = tmp_path / "out.h264"
    out = FileOutput(VideoOptions(output=str(path)))
    out.output_ready(b"abc", 0, True)
    out.output_ready(b"def", 33000, False)
    out.close()
    assert path.read_bytes() == b"abcdef"


def test_nothing_written_before_keyframe(tmp_path):
    path = tmp_path / "out.h264"
    out = FileOutput(VideoOptions(output=str(path)))
    out.output_ready(b"skip", 0, False)
    out.output_ready(b"key", 1000, True)
    out.close()
    assert path.read_bytes() == b"key"


def test_segments_start_on_keyframe(tmp_path):
    pattern = str(tmp_path / "seg%03d.h264")
    out = FileOutput(VideoOptions(output=pattern, segment=1000))
    out.output_buffer(b"a", 0, OutputFlag.KEYFRAME)
    out.output_buffer(b"b", 500_000, OutputFlag.KEYFRAME)
    out.output_buffer(b"c", 1_500_000, OutputFlag.NONE)
    out.output_buffer(b"d", 1_600_000, OutputFlag.KEYFRAME)
    out.close()
    assert Path(pattern % 0).name == "seg000.h264"
    assert Path(pattern % 0).read_bytes() == b"abc"
    assert Path(pattern % 1).read_bytes() == b"d"


def test_split_on_resume_after_pause(tmp_path):
    pattern = str(tmp_path / "clip%d.h264")
    out = FileOutput(VideoOptions(output=pattern, split=True))
    out.output_ready(b"a", 0, True)
    out.output_ready(b"b", 1000, False)
    out.signal()
    out.output_ready(b"x", 2000, True)
    out.signal()
    out.output_ready(b"y", 3000, False)
    out.output_ready(b"c", 4000, True)
    out.close()
    assert Path(pattern % 0).read_bytes() == b"ab"
    assert Path(pattern % 1).read_bytes() == b"c"
    assert not Path(pattern % 2).exists()


def test_wrap_reuses_names(tmp_path):
    pattern = str(tmp_path / "w%d.h264")
    out = FileOutput(VideoOptions(output=pattern, split=True, wrap=2))
    out.output_buffer(b"first", 0, OutputFlag.RESTART | OutputFlag.KEYFRAME)
    out.output_buffer(b"second", 1, OutputFlag.RESTART | OutputFlag.KEYFRAME)
    out.output_buffer(b"third", 2, OutputFlag.RESTART | OutputFlag.KEYFRAME)
    out.close()
    assert Path(pattern % 0).read_bytes() == b"third"
    assert Path(pattern % 1).read_bytes() == b"second"
    assert not Path(pattern % 2).exists()


def test_empty_buffer_opens_empty_file(tmp_path):
    path = tmp_path / "empty.h264"
    out = FileOutput(VideoOptions(output=str(path)))
    out.output_buffer(b"", 0, OutputFlag.KEYFRAME)
    out.close()
    assert path.read_bytes() == b""


def test_name_without_counter_used_as_is(tmp_path):
    path = tmp_path / "plain.h264"
    out = FileOutput(VideoOptions(output=str(path), split=True))
    out.output_buffer(b"one", 0, OutputFlag.RESTART)
    out.output_buffer(b"two", 1, OutputFlag.RESTART)
    out.close()
    assert path.read_bytes() == b"two"