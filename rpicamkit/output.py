"""Base class for encoded video outputs, with pause handling, timestamps and metadata."""

from __future__ import annotations

import enum
import sys
from collections import deque
from typing import Any, Mapping, TextIO

from .stream import VideoOptions


class OutputFlag(enum.IntFlag):
    """Flags passed along with each encoded buffer."""

    NONE = 0
    KEYFRAME = 1
    RESTART = 2


class _State(enum.Enum):
    DISABLED = 0
    WAITING_KEYFRAME = 1
    RUNNING = 2


def start_metadata_output(stream: TextIO, fmt: str) -> None:
    """Write whatever opens a metadata document in the given format."""
    if fmt == "json":
        stream.write("[\n")


def write_metadata(stream: TextIO, fmt: str, metadata: Mapping[str, Any], first_write: bool) -> None:
    """Write one frame's metadata as ``name=value`` lines or as a JSON object."""
    if fmt == "txt":
        for name, value in metadata.items():
            stream.write(f"{name}={value}\n")
        stream.write("\n")
        return

    if not first_write:
        stream.write(",\n")
    stream.write("{")
    first_done = False
    for name, value in metadata.items():
        text = str(value)
        quote = '"' if "/" in text else ""
        stream.write(f'{"," if first_done else ""}\n    "{name}": {quote}{text}{quote}')
        first_done = True
    stream.write("\n}")


def stop_metadata_output(stream: TextIO, fmt: str) -> None:
    """Write whatever closes a metadata document in the given format."""
    if fmt == "json":
        stream.write("\n]\n")


class Output:
    """Receives encoded buffers; a plain instance discards them.

    Subclasses override ``output_buffer`` to store the data somewhere.
    """

    def __init__(self, options: VideoOptions) -> None:
        self.options = options
        self.timestamps_file: TextIO | None = None
        self._state = _State.WAITING_KEYFRAME
        self._time_offset = 0
        self._last_timestamp = 0
        self._metadata_stream: TextIO = sys.stdout
        self._metadata_file: TextIO | None = None
        self._metadata_started = False
        self._metadata_queue: deque[dict[str, Any]] = deque()
        self._closed = False

        try:
            if options.save_pts:
                self.timestamps_file = open(options.save_pts, "w")
                self.timestamps_file.write("# timecode format v2\n")
            if options.metadata and options.metadata != "-":
                self._metadata_file = open(options.metadata, "w")
                self._metadata_stream = self._metadata_file
                start_metadata_output(self._metadata_stream, options.metadata_format)
        except BaseException:
            self._close_files()
            raise

        self._enabled = not options.pause

    def __enter__(self) -> "Output":
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    def signal(self) -> None:
        """Toggle between recording and paused."""
        self._enabled = not self._enabled

    def output_ready(self, mem: bytes, timestamp_us: int, keyframe: bool) -> None:
        """Accept one encoded buffer, honouring pauses and waiting for a keyframe to restart."""
        flags = OutputFlag.KEYFRAME if keyframe else OutputFlag.NONE
        if not self._enabled:
            self._state = _State.DISABLED
        elif self._state == _State.DISABLED:
            self._state = _State.WAITING_KEYFRAME
        if self._state == _State.WAITING_KEYFRAME and keyframe:
            self._state = _State.RUNNING
            flags |= OutputFlag.RESTART
        if self._state != _State.RUNNING:
            return

        # Keep timestamps continuous across a pause.
        if flags & OutputFlag.RESTART:
            self._time_offset = timestamp_us - self._last_timestamp
        self._last_timestamp = timestamp_us - self._time_offset

        self.output_buffer(mem, self._last_timestamp, flags)

        if self.timestamps_file is not None:
            self.timestamp_ready(self._last_timestamp)

        if self.options.metadata:
            metadata = self._metadata_queue.popleft()
            write_metadata(self._metadata_stream, self.options.metadata_format, metadata,
                           not self._metadata_started)
            self._metadata_started = True

    def metadata_ready(self, metadata: Mapping[str, Any]) -> None:
        """Queue a frame's metadata to be written when its buffer is output."""
        if not self.options.metadata:
            return
        self._metadata_queue.append(dict(metadata))

    def output_buffer(self, mem: bytes, timestamp_us: int, flags: OutputFlag) -> None:
        """Store one buffer; the base class stores nothing."""

    def timestamp_ready(self, timestamp: int) -> None:
        """Record a presentation timestamp, in microseconds, as milliseconds."""
        if self.timestamps_file is None:
            return
        millis = -(-timestamp // 1000) if timestamp < 0 else timestamp // 1000
        micros = timestamp - millis * 1000
        self.timestamps_file.write(f"{millis}.{micros:03d}\n")
        if self.options.flush:
            self.timestamps_file.flush()

    def close(self) -> None:
        """Finish the metadata document and close the files this output opened."""
        if self._closed:
            return
        self._closed = True
        if self.options.metadata:
            stop_metadata_output(self._metadata_stream, self.options.metadata_format)
        self._close_files()

    def _close_files(self) -> None:
        if self.timestamps_file is not None:
            self.timestamps_file.close()
            self.timestamps_file = None
        if self._metadata_file is not None:
            self._metadata_file.close()
            self._metadata_file = None
            self._metadata_stream = sys.stdout