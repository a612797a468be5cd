"""Write encoded video to files, optionally split into segments."""

from __future__ import annotations

import logging
import sys
from typing import BinaryIO

from .output import Output, OutputFlag
from .stream import VideoOptions

log = logging.getLogger(__name__)

_MAX_FILENAME = 255


def _trunc_div(a: int, b: int) -> int:
    q = abs(a) // abs(b)
    return q if (a >= 0) == (b >= 0) else -q


def _format_filename(pattern: str, count: int) -> str:
    try:
        name = pattern % count
    except TypeError:
        try:
            name = pattern % ()
        except (TypeError, ValueError) as exc:
            raise ValueError("failed to generate filename") from exc
    except ValueError as exc:
        raise ValueError("failed to generate filename") from exc
    return name[:_MAX_FILENAME]


class FileOutput(Output):
    """Write buffers to ``options.output``, which may hold a printf-style counter."""

    def __init__(self, options: VideoOptions) -> None:
        super().__init__(options)
        self._fp: BinaryIO | None = None
        self._count = 0
        self._file_start_time_ms = 0

    def output_buffer(self, mem: bytes, timestamp_us: int, flags: OutputFlag) -> None:
        """Write a buffer, starting a new file for a full segment or a restarted split."""
        opts = self.options
        segment_full = (
            opts.segment
            and flags & OutputFlag.KEYFRAME
            and _trunc_div(timestamp_us, 1000) - self._file_start_time_ms > opts.segment
        )
        split_restart = opts.split and flags & OutputFlag.RESTART
        if self._fp is None or segment_full or split_restart:
            self._close_file()
            self._open_file(timestamp_us)

        log.debug("FileOutput: output buffer size %d", len(mem))
        if self._fp is not None and len(mem):
            self._fp.write(mem)
            if opts.flush:
                self._fp.flush()

    def _open_file(self, timestamp_us: int) -> None:
        opts = self.options
        if opts.output == "-":
            self._fp = sys.stdout.buffer
        elif opts.output:
            filename = _format_filename(opts.output, self._count)
            self._count += 1
            if opts.wrap:
                self._count %= opts.wrap
            self._fp = open(filename, "wb")
            log.debug("FileOutput: opened output file %s", filename)
            self._file_start_time_ms = _trunc_div(timestamp_us, 1000)

    def _close_file(self) -> None:
        if self._fp is None:
            return
        if self.options.flush or self._fp is sys.stdout.buffer:
            self._fp.flush()
        if self._fp is not sys.stdout.buffer:
            self._fp.close()
        self._fp = None

    def close(self) -> None:
        """Close the current file and the base output's files."""
        self._close_file()
        super().close()