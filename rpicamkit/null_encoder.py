"""Encoder that passes frames through unchanged."""

from __future__ import annotations

import logging
import queue
import threading
from typing import Any

from .encoder import Encoder, register_encoder
from .stream import StreamInfo, VideoOptions

log = logging.getLogger(__name__)

_POLL_SECONDS = 0.2


class NullEncoder(Encoder):
    """Returns each buffer as its own "encoded" output, from a separate thread."""

    def __init__(self, options: VideoOptions) -> None:
        super().__init__(options)
        self._queue: queue.Queue[tuple[Any, int]] = queue.Queue()
        self._abort = threading.Event()
        self._closed = False
        self._error: BaseException | None = None
        log.debug("Opened NullEncoder")
        self._thread = threading.Thread(target=self._output_thread, name="null-encoder-output", daemon=True)
        self._thread.start()

    def encode_buffer(self, mem: Any, info: StreamInfo, timestamp_us: int) -> None:
        """Queue the buffer to be handed back unchanged."""
        if self._closed:
            raise RuntimeError("encoder is closed")
        self._queue.put((mem, timestamp_us))

    def _output_thread(self) -> None:
        while True:
            try:
                mem, timestamp_us = self._queue.get(timeout=_POLL_SECONDS)
            except queue.Empty:
                if self._abort.is_set():
                    return
                continue
            try:
                # Input-done must come first: metadata is queued there and consumed on output.
                self.input_done_callback()
                self.output_ready_callback(mem, timestamp_us, True)
            except Exception as exc:  # re-raised by close()
                if self._error is None:
                    self._error = exc

    def close(self) -> None:
        """Deliver any queued buffers, stop the thread and re-raise a callback failure."""
        if self._closed:
            return
        self._closed = True
        self._abort.set()
        self._thread.join()
        log.debug("NullEncoder closed")
        if self._error is not None:
            raise self._error


@register_encoder("null")
def _create(options: VideoOptions, info: StreamInfo) -> Encoder:
    return NullEncoder(options)