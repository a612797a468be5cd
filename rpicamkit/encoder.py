"""Video encoder base class and the registry of encoder constructors."""

from __future__ import annotations

import abc
from typing import Any, Callable

from .stream import StreamInfo, VideoOptions

InputDoneCallback = Callable[[], None]
OutputReadyCallback = Callable[[Any, int, bool], None]
CreateFunc = Callable[[VideoOptions, StreamInfo], "Encoder"]


def _ignore(*_args: Any) -> None:
    """Callback used until the application installs its own."""


class Encoder(abc.ABC):
    """Takes raw frames and hands encoded buffers to ``output_ready_callback``.

    ``input_done_callback()`` is called once the encoder has finished with an input
    buffer; ``output_ready_callback(mem, timestamp_us, keyframe)`` receives each
    encoded buffer, which the callee must not keep after returning.
    """

    def __init__(self, options: VideoOptions) -> None:
        self.options = options
        self.input_done_callback: InputDoneCallback = _ignore
        self.output_ready_callback: OutputReadyCallback = _ignore

    @abc.abstractmethod
    def encode_buffer(self, mem: Any, info: StreamInfo, timestamp_us: int) -> None:
        """Queue one frame for encoding."""

    def close(self) -> None:
        """Finish outstanding work and release resources."""

    def __enter__(self) -> "Encoder":
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()


class EncoderFactory:
    """Maps encoder names to the functions that construct them."""

    def __init__(self) -> None:
        self.encoders: dict[str, CreateFunc] = {}

    def register(self, name: str, create_func: CreateFunc) -> None:
        """Register (or replace) the constructor for ``name``."""
        self.encoders[name] = create_func

    def has_encoder(self, name: str) -> bool:
        """True if an encoder called ``name`` is registered."""
        return name in self.encoders

    def get(self, name: str) -> CreateFunc | None:
        """The constructor registered for ``name``, or None."""
        return self.encoders.get(name)


factory = EncoderFactory()


def register_encoder(name: str) -> Callable[[CreateFunc], CreateFunc]:
    """Decorator that registers a constructor with the shared factory."""

    def decorator(create_func: CreateFunc) -> CreateFunc:
        factory.register(name, create_func)
        return create_func

    return decorator