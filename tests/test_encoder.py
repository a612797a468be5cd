import pytest

from rpicamkit.encoder import Encoder, EncoderFactory, factory, register_encoder
from rpicamkit.stream import PixelFormat, StreamInfo, VideoOptions


class _Recording(Encoder):
    def __init__(self, options):
        super().__init__(options)
        self.closed = False

    def encode_buffer(self, mem, info, timestamp_us):
        self.input_done_callback()
        self.output_ready_callback(mem, timestamp_us, True)

    def close(self):
        self.closed = True


@pytest.fixture
def restore_factory():
    saved = dict(factory.encoders)
    yield
    factory.encoders.clear()
    factory.encoders.update(saved)


def _info():
    return StreamInfo(16, 16, 16, PixelFormat.YUV420)


def test_factory_register_and_lookup():
    reg = EncoderFactory()

    def create(options, info):
        return _Recording(options)

    reg.register("demo", create)
    assert reg.has_encoder("demo")
    assert reg.get("demo") is create
    assert not reg.has_encoder("other")
    assert reg.get("other") is None


def test_factory_register_replaces():
    reg = EncoderFactory()
    reg.register("demo", lambda o, i: _Recording(o))

    def second(options, info):
        return _Recording(options)

    reg.register("demo", second)
    assert reg.get("demo") is second
    assert list(reg.encoders) == ["demo"]


def test_register_encoder_decorator(restore_factory):
    @register_encoder("decorated-test")
    def create(options, info):
        return _Recording(options)

    assert factory.get("decorated-test") is create
    enc = create(VideoOptions(), _info())
    assert enc.options.codec == "h264"


def test_encoder_is_abstract():
    with pytest.raises(TypeError):
        Encoder(VideoOptions())


def test_default_callbacks_accept_calls():
    enc = _Recording(VideoOptions())
    enc.encode_buffer(b"abc", _info(), 5)
    assert enc.closed is False


def test_callbacks_receive_output():
    enc = _Recording(VideoOptions())
    seen = []
    done = []
    enc.input_done_callback = lambda: done.append(True)
    enc.output_ready_callback = lambda mem, ts, key: seen.append((mem, ts, key))
    enc.encode_buffer(b"xyz", _info(), 42)
    assert seen == [(b"xyz", 42, True)]
    assert done == [True]


def test_context_manager_closes():
    with _Recording(VideoOptions()) as enc:
        assert enc.closed is False
    assert enc.closed is True