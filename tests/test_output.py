import io

import pytest

from rpicamkit.output import (
    Output,
    OutputFlag,
    start_metadata_output,
    stop_metadata_output,
    write_metadata,
)
from rpicamkit.stream import VideoOptions


class Recorder(Output):
    def __init__(self, options):
        super().__init__(options)
        self.calls = []

    def output_buffer(self, mem, timestamp_us, flags):
        self.calls.append((bytes(mem), timestamp_us, flags))


def test_waits_for_first_keyframe():
    out = Recorder(VideoOptions())
    out.output_ready(b"a", 0, False)
    out.output_ready(b"b", 100, True)
    out.output_ready(b"c", 200, False)
    assert out.calls == [
        (b"b", 0, OutputFlag.KEYFRAME | OutputFlag.RESTART),
        (b"c", 100, OutputFlag.NONE),
    ]


def test_pause_and_resume_keeps_timestamps_continuous():
    out = Recorder(VideoOptions())
    out.output_ready(b"a", 0, True)
    out.output_ready(b"b", 1000, False)
    out.signal()
    out.output_ready(b"c", 5000, True)
    out.signal()
    out.output_ready(b"d", 7000, False)
    out.output_ready(b"e", 9000, True)
    out.output_ready(b"f", 10000, False)
    assert [c[0] for c in out.calls] == [b"a", b"b", b"e", b"f"]
    assert out.calls[2][1] == out.calls[1][1]
    assert out.calls[3][1] - out.calls[2][1] == 1000
    assert out.calls[2][2] & OutputFlag.RESTART


def test_starting_paused_outputs_nothing_until_signalled():
    out = Recorder(VideoOptions(pause=True))
    out.output_ready(b"a", 0, True)
    assert out.calls == []
    out.signal()
    out.output_ready(b"b", 100, False)
    out.output_ready(b"c", 200, True)
    assert [c[0] for c in out.calls] == [b"c"]


def test_save_pts_file(tmp_path):
    path = tmp_path / "pts.txt"
    with Output(VideoOptions(save_pts=str(path))) as out:
        out.output_ready(b"x", 5000, True)
        out.output_ready(b"y", 1239567, False)
    lines = path.read_text().splitlines()
    assert lines[0] == "# timecode format v2"
    assert lines[1:] == ["0.000", "1234.567"]


def test_metadata_json_file(tmp_path):
    path = tmp_path / "meta.json"
    out = Output(VideoOptions(metadata=str(path), metadata_format="json"))
    out.metadata_ready({"ExposureTime": 100})
    out.output_ready(b"x", 0, True)
    out.metadata_ready({"ExposureTime": 200})
    out.output_ready(b"y", 10, False)
    out.close()
    expected = (
        "[\n"
        '{\n    "ExposureTime": 100\n}'
        ",\n"
        '{\n    "ExposureTime": 200\n}'
        "\n]\n"
    )
    assert path.read_text() == expected


def test_metadata_txt_to_stdout(capsys):
    out = Output(VideoOptions(metadata="-", metadata_format="txt"))
    out.metadata_ready({"ExposureTime": 100, "AnalogueGain": 2.5})
    out.output_ready(b"x", 0, True)
    out.close()
    assert capsys.readouterr().out == "ExposureTime=100\nAnalogueGain=2.5\n\n"


def test_metadata_ignored_when_not_requested():
    out = Recorder(VideoOptions())
    out.metadata_ready({"ExposureTime": 100})
    out.output_ready(b"x", 0, True)
    assert len(out.calls) == 1


def test_missing_metadata_for_output_frame_raises(tmp_path):
    out = Output(VideoOptions(metadata=str(tmp_path / "m.json")))
    with pytest.raises(IndexError):
        out.output_ready(b"x", 0, True)
    out.close()


def test_write_metadata_quotes_values_with_slash():
    stream = io.StringIO()
    write_metadata(stream, "json", {"FrameDuration": "1/30", "Lux": 400}, True)
    assert stream.getvalue() == '{\n    "FrameDuration": "1/30",\n    "Lux": 400\n}'


def test_start_and_stop_only_bracket_json():
    json_stream = io.StringIO()
    start_metadata_output(json_stream, "json")
    stop_metadata_output(json_stream, "json")
    assert json_stream.getvalue() == "[\n\n]\n"
    txt_stream = io.StringIO()
    start_metadata_output(txt_stream, "txt")
    stop_metadata_output(txt_stream, "txt")
    assert txt_stream.getvalue() == ""