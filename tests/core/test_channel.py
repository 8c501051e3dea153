import os
import threading

import numpy as np
import pytest

from pariter.core.channel import (
    Channel, END, HEADER, channel_pair, read_frame, write_frame,
)
from pariter.errors import ChannelClosed, FrameTooLargeError, TruncatedFrame


@pytest.fixture
def pipe():
    r, w = os.pipe()
    yield r, w
    for fd in (r, w):
        try:
            os.close(fd)
        except OSError:
            pass


def test_frame_roundtrip_nested_payload(pipe):
    r, w = pipe
    msg = (3, {"a": [1, 2.5, None], "b": ("x", b"\x00\xff")})
    write_frame(w, msg)
    assert read_frame(r) == msg


def test_frames_are_self_delimiting(pipe):
    r, w = pipe
    for i in range(5):
        write_frame(w, (i, "x" * i))
    assert [read_frame(r) for _ in range(5)] == [(i, "x" * i) for i in range(5)]


def test_large_frame_spans_many_pipe_buffers(pipe):
    # several times a typical 64 KiB pipe buffer: the writer blocks until the reader drains
    r, w = pipe
    payload = np.random.default_rng(0).integers(0, 255, size=1_000_000, dtype=np.uint8)
    writer = threading.Thread(target=write_frame, args=(w, (0, payload)))
    writer.start()
    key, got = read_frame(r)
    writer.join()
    assert key == 0
    assert got.tobytes() == payload.tobytes()


def test_clean_close_at_frame_boundary(pipe):
    r, w = pipe
    write_frame(w, "last")
    os.close(w)
    assert read_frame(r) == "last"
    with pytest.raises(ChannelClosed) as excinfo:
        read_frame(r)
    assert not isinstance(excinfo.value, TruncatedFrame)


def test_truncated_frame(pipe):
    r, w = pipe
    os.write(w, HEADER.pack(100) + b"only a few bytes")
    os.close(w)
    with pytest.raises(TruncatedFrame):
        read_frame(r)


def test_truncated_header(pipe):
    r, w = pipe
    os.write(w, b"\x01\x00")
    os.close(w)
    with pytest.raises(TruncatedFrame):
        read_frame(r)


def test_frame_size_limit(pipe):
    r, w = pipe
    with pytest.raises(FrameTooLargeError):
        write_frame(w, "x" * 1000, max_size=100)

    os.write(w, HEADER.pack(10_000))
    with pytest.raises(FrameTooLargeError):
        read_frame(r, max_size=100)


def test_channel_pair_is_duplex():
    controller, worker = channel_pair()
    try:
        controller.send((1, "job"))
        assert worker.receive() == (1, "job")
        worker.send((1, "done"))
        assert controller.receive() == (1, "done")
    finally:
        controller.close()
        worker.close()
    assert controller.closed and worker.closed


def test_receive_returns_end_on_sentinel_and_on_closure():
    controller, worker = channel_pair()
    worker.send(END)
    assert controller.receive() is END
    worker.close()
    assert controller.receive() is END
    controller.close()


def test_receive_returns_end_on_truncated_frame():
    controller, worker = channel_pair()
    os.write(worker.write_fd, HEADER.pack(50) + b"partial")
    worker.close()
    assert controller.receive() is END
    controller.close()


def test_half_close():
    controller, worker = channel_pair()
    controller.close_write()
    assert controller.write_fd is None
    assert controller.fds == [controller.read_fd]
    assert worker.receive() is END
    with pytest.raises(ChannelClosed):
        controller.send("nope")
    # the other direction still works
    worker.send("still open")
    assert controller.receive() == "still open"
    controller.close()
    worker.close()


def test_send_to_closed_peer_raises_broken_pipe():
    controller, worker = channel_pair()
    worker.close_read()
    with pytest.raises(BrokenPipeError):
        controller.send("anyone?")
    controller.close()
    worker.close()


def test_repr_and_closed_state():
    ch = Channel(None, None)
    assert ch.closed
    assert ch.fds == []
    assert ch.receive() is END
    assert "read_fd=None" in repr(ch)
