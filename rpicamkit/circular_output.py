"""Keep encoded frames in a ring buffer and write them out when the output is closed."""

from __future__ import annotations

import logging
import struct
import sys
from typing import BinaryIO

from .output import Output, OutputFlag
from .stream import VideoOptions

log = logging.getLogger(__name__)

# Frames are stored at offsets that are multiples of this (a power of two).
ALIGN = 16

# Frame header: length, keyframe flag, timestamp in microseconds.
_HEADER = struct.Struct("<I?3xq")
assert _HEADER.size % ALIGN == 0


def _aligned(length: int) -> int:
    return (length + ALIGN - 1) & ~(ALIGN - 1)


class CircularBuffer:
    """Fixed-size byte ring; one byte is always left free to tell full from empty."""

    def __init__(self, size: int) -> None:
        if size < 1:
            raise ValueError("circular buffer size must be positive")
        self.size = size
        self._buf = bytearray(size)
        self._rptr = 0
        self._wptr = 0

    def empty(self) -> bool:
        """True when there is nothing left to read."""
        return self._rptr == self._wptr

    def available(self) -> int:
        """Number of bytes that can still be written."""
        if self._wptr == self._rptr:
            return self.size - 1
        return (self.size - self._wptr + self._rptr) % self.size - 1

    def skip(self, n: int) -> None:
        """Discard ``n`` bytes from the read side."""
        self._rptr = (self._rptr + n) % self.size

    def read(self, n: int) -> bytes:
        """Remove and return the next ``n`` bytes."""
        parts = []
        if self._rptr + n >= self.size:
            first = self.size - self._rptr
            parts.append(bytes(self._buf[self._rptr :]))
            n -= first
            self._rptr = 0
        parts.append(bytes(self._buf[self._rptr : self._rptr + n]))
        self._rptr += n
        return b"".join(parts)

    def pad(self, n: int) -> None:
        """Advance the write side by ``n`` bytes without writing them."""
        self._wptr = (self._wptr + n) % self.size

    def write(self, data: bytes) -> None:
        """Append ``data``, wrapping round the end of the buffer."""
        view = memoryview(data).cast("B")
        if len(view) >= self.size:
            raise ValueError("write larger than circular buffer")
        if self._wptr + len(view) >= self.size:
            first = self.size - self._wptr
            self._buf[self._wptr :] = view[:first]
            view = view[first:]
            self._wptr = 0
        self._buf[self._wptr : self._wptr + len(view)] = view
        self._wptr += len(view)


class CircularOutput(Output):
    """Hold the most recent frames in memory (``options.circular`` megabytes) and save them on close."""

    def __init__(self, options: VideoOptions) -> None:
        super().__init__(options)
        self._dumped = False
        try:
            self._cb = CircularBuffer(options.circular << 20)
            # Open the file now so any complaint comes straight away.
            if options.output == "-":
                self._fp: BinaryIO = sys.stdout.buffer
            elif options.output:
                self._fp = open(options.output, "wb")
            else:
                raise ValueError("could not open output file")
        except BaseException:
            super().close()
            raise

    def _read_header(self) -> tuple[int, bool, int]:
        return _HEADER.unpack(self._cb.read(_HEADER.size))

    def output_buffer(self, mem: bytes, timestamp_us: int, flags: OutputFlag) -> None:
        """Store a frame, dropping the oldest frames until it fits."""
        data = memoryview(mem).cast("B")
        size = len(data)
        pad = (ALIGN - size) & (ALIGN - 1)
        while size + pad + _HEADER.size > self._cb.available():
            if self._cb.empty():
                raise RuntimeError("circular buffer too small")
            length, _, _ = self._read_header()
            self._cb.skip(_aligned(length))
        self._cb.write(_HEADER.pack(size, bool(flags & OutputFlag.KEYFRAME), timestamp_us))
        self._cb.write(data)
        self._cb.pad(pad)

    def timestamp_ready(self, timestamp: int) -> None:
        """Timestamps are written only for the frames saved on close."""

    def close(self) -> None:
        """Write the buffered frames from the first keyframe on, then close everything."""
        if self._dumped:
            return
        self._dumped = True
        total = frames = 0
        seen_keyframe = False
        try:
            while not self._cb.empty():
                length, keyframe, timestamp = self._read_header()
                seen_keyframe |= keyframe
                if seen_keyframe:
                    self._fp.write(self._cb.read(length))
                    self._cb.skip((ALIGN - length) & (ALIGN - 1))
                    total += length
                    if self.timestamps_file is not None:
                        super().timestamp_ready(timestamp)
                    frames += 1
                else:
                    self._cb.skip(_aligned(length))
        finally:
            if self._fp is sys.stdout.buffer:
                self._fp.flush()
            else:
                self._fp.close()
            super().close()
        log.info("Wrote %d bytes (%d frames)", total, frames)