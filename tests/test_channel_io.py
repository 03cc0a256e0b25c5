import io
import os

from tlvsec.channel_io import StdIO


def test_read_from_stream():
    channel = StdIO(io.BytesIO(b"hello world"), io.BytesIO())
    assert channel.read(5) == b"hello"
    assert channel.read(100) == b" world"
    assert channel.read(100) == b""


def test_read_zero_length():
    channel = StdIO(io.BytesIO(b"abc"), io.BytesIO())
    assert channel.read(0) == b""
    assert channel.read(3) == b"abc"


def test_write_to_stream():
    out = io.BytesIO()
    channel = StdIO(io.BytesIO(), out)
    channel.write(b"one ")
    channel.write(bytearray(b"two"))
    assert out.getvalue() == b"one two"


def test_pipe_is_non_blocking():
    read_fd, write_fd = os.pipe()
    with os.fdopen(read_fd, "rb", buffering=0) as reader, os.fdopen(
        write_fd, "wb", buffering=0
    ) as writer:
        channel = StdIO(reader, io.BytesIO())
        assert channel.read(10) == b""
        writer.write(b"ready")
        assert channel.read(10) == b"ready"
        assert channel.read(10) == b""