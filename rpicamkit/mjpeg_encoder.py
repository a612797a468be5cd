"""Motion-JPEG encoder: each YUV420 frame becomes one JPEG, using several worker threads."""

from __future__ import annotations

import io
import itertools
import logging
import queue
import threading
import time
from typing import Any

from PIL import Image

from .encoder import Encoder, register_encoder
from .stream import StreamInfo, VideoOptions

log = logging.getLogger(__name__)

_POLL_SECONDS = 0.2


def encode_yuv420_jpeg(mem: Any, info: StreamInfo, quality: int) -> bytes:
    """Encode a planar YUV420 frame at full size as a JPEG."""
    data = memoryview(mem).cast("B")
    w, h, stride = info.width, info.height, info.stride
    if w <= 0 or h <= 0:
        raise ValueError("image dimensions must be positive")
    stride2 = stride // 2
    cw, ch = (w + 1) // 2, (h + 1) // 2
    chroma_rows = max(h // 2, 1)
    u_base = stride * h
    v_base = u_base + stride2 * (h // 2)
    if cw > stride2 or len(data) < v_base + stride2 * (chroma_rows - 1) + cw:
        raise ValueError("image buffer too small for stream geometry")

    y_plane = b"".join(data[r * stride : r * stride + w] for r in range(h))

    def chroma(base: int) -> Image.Image:
        # Rows past the end of the plane repeat its last row.
        rows = (base + min(r, chroma_rows - 1) * stride2 for r in range(ch))
        plane = b"".join(data[start : start + cw] for start in rows)
        return Image.frombytes("L", (cw, ch), plane).resize((w, h), Image.Resampling.NEAREST)

    image = Image.merge("YCbCr", (Image.frombytes("L", (w, h), y_plane), chroma(u_base), chroma(v_base)))
    encoded = io.BytesIO()
    image.save(encoded, format="JPEG", quality=quality, subsampling="4:2:0")
    return encoded.getvalue()


class MjpegEncoder(Encoder):
    """Encodes frames on a pool of threads and delivers them in submission order."""

    NUM_ENC_THREADS = 4

    def __init__(self, options: VideoOptions) -> None:
        super().__init__(options)
        self._encode_queue: queue.Queue[tuple[int, Any, StreamInfo, int]] = queue.Queue()
        self._submit_lock = threading.Lock()
        self._counter = itertools.count()
        self._results: dict[int, tuple[Any, int]] = {}
        self._cond = threading.Condition()
        self._abort_encode = threading.Event()
        self._abort_output = False
        self._closed = False
        self._error: BaseException | None = None
        self._error_lock = threading.Lock()

        self._output_thread = threading.Thread(target=self._output_loop, name="mjpeg-output", daemon=True)
        self._output_thread.start()
        self._encode_threads = [
            threading.Thread(target=self._encode_loop, name=f"mjpeg-encode-{n}", daemon=True)
            for n in range(self.NUM_ENC_THREADS)
        ]
        for thread in self._encode_threads:
            thread.start()
        log.debug("Opened MjpegEncoder")

    def encode_buffer(self, mem: Any, info: StreamInfo, timestamp_us: int) -> None:
        """Queue a YUV420 frame for JPEG encoding."""
        if self._closed:
            raise RuntimeError("encoder is closed")
        with self._submit_lock:
            self._encode_queue.put((next(self._counter), mem, info, timestamp_us))

    def _record(self, exc: BaseException) -> None:
        with self._error_lock:
            if self._error is None:
                self._error = exc

    def _encode_loop(self) -> None:
        frames = 0
        encode_time = 0.0
        while True:
            try:
                index, mem, info, timestamp_us = self._encode_queue.get(timeout=_POLL_SECONDS)
            except queue.Empty:
                if self._abort_encode.is_set():
                    if frames:
                        log.debug("Encode %d frames, average time %gms", frames, encode_time * 1000 / frames)
                    return
                continue
            start = time.perf_counter()
            result: Any
            try:
                result = encode_yuv420_jpeg(mem, info, self.options.quality)
            except Exception as exc:
                result = exc
            encode_time += time.perf_counter() - start
            frames += 1
            with self._cond:
                self._results[index] = (result, timestamp_us)
                self._cond.notify_all()

    def _output_loop(self) -> None:
        index = 0
        while True:
            with self._cond:
                while index not in self._results:
                    if self._abort_output and not self._results:
                        return
                    self._cond.wait(_POLL_SECONDS)
                result, timestamp_us = self._results.pop(index)
            index += 1
            try:
                self.input_done_callback()
                if isinstance(result, Exception):
                    raise result
                self.output_ready_callback(result, timestamp_us, True)
            except Exception as exc:
                self._record(exc)

    def close(self) -> None:
        """Encode and deliver all queued frames, stop the threads and re-raise any failure."""
        if self._closed:
            return
        self._closed = True
        self._abort_encode.set()
        for thread in self._encode_threads:
            thread.join()
        with self._cond:
            self._abort_output = True
            self._cond.notify_all()
        self._output_thread.join()
        log.debug("MjpegEncoder closed")
        if self._error is not None:
            raise self._error


@register_encoder("mjpeg")
def _create(options: VideoOptions, info: StreamInfo) -> Encoder:
    return MjpegEncoder(options)