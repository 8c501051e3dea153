r"""Framed message channel between the pool controller and one worker process.

Each direction of a :class:`Channel` is a plain OS pipe. Messages are pickled and written as
self-delimiting frames: a 4-byte little-endian length header followed by the pickle payload.

.. code-block:: text

    +----------------+---------------------------+
    | size (<I, 4 B) | pickle payload (size B)   |
    +----------------+---------------------------+

Reads and writes loop over ``os.read`` / ``os.write`` until the whole frame has moved, so a frame may be
many times larger than the pipe buffer. ``None`` is reserved on the wire as the :data:`END` sentinel;
work items and results are always ``(key, value)`` tuples so the sentinel never collides with data.
"""
import os
import pickle
import struct
from typing import Any, Optional, Tuple

from pariter.errors import ChannelClosed, TruncatedFrame, FrameTooLargeError

HEADER = struct.Struct("<I")
MAX_FRAME_SIZE = 1 << 30
READ_CHUNK = 1 << 16

#: End-of-stream marker: "no more work" downstream, "no more results" upstream.
END = None


def _write_all(fd: int, data) -> None:
    view = memoryview(data)
    while view:
        written = os.write(fd, view)
        view = view[written:]


def _read_exact(fd: int, size: int, *, at_boundary: bool) -> bytearray:
    buf = bytearray()
    while len(buf) < size:
        chunk = os.read(fd, min(size - len(buf), READ_CHUNK))
        if not chunk:
            if at_boundary and not buf:
                raise ChannelClosed("Channel closed by peer")
            raise TruncatedFrame(f"Channel closed after {len(buf)} of {size} bytes")
        buf.extend(chunk)
    return buf


def write_frame(fd: int, obj: Any, *, max_size: int = MAX_FRAME_SIZE) -> None:
    """
    Pickle ``obj`` and write it to ``fd`` as one frame.

    :param fd: Writable pipe file descriptor.
    :param obj: Any picklable object.
    :param max_size: Upper bound for the pickled payload in bytes.
    :raises FrameTooLargeError: If the pickled payload exceeds ``max_size``.
    :raises BrokenPipeError: If the reading end has been closed.
    """
    payload = pickle.dumps(obj, protocol=pickle.HIGHEST_PROTOCOL)
    size = len(payload)
    if size > max_size:
        raise FrameTooLargeError(f"Frame size {size} exceeds max {max_size}")
    _write_all(fd, HEADER.pack(size))
    _write_all(fd, payload)


def read_frame(fd: int, *, max_size: int = MAX_FRAME_SIZE) -> Any:
    """
    Block until one full frame has been read from ``fd`` and return the unpickled object.

    :param fd: Readable pipe file descriptor.
    :param max_size: Upper bound accepted from the header.
    :raises ChannelClosed: If the writer closed the pipe before a new frame started.
    :raises TruncatedFrame: If the writer closed the pipe in the middle of a frame.
    :raises FrameTooLargeError: If the header announces a payload above ``max_size``.
    """
    header = _read_exact(fd, HEADER.size, at_boundary=True)
    (size,) = HEADER.unpack(header)
    if size > max_size:
        raise FrameTooLargeError(f"Frame size {size} exceeds max {max_size}")
    return pickle.loads(_read_exact(fd, size, at_boundary=False))


class Channel:
    """
    One endpoint of a duplex link: a read half and a write half, each a pipe file descriptor.

    Either half may be closed independently. A closed half is ``None``.
    """

    def __init__(self, read_fd: Optional[int], write_fd: Optional[int], *, max_size: int = MAX_FRAME_SIZE):
        self.read_fd = read_fd
        self.write_fd = write_fd
        self.max_size = max_size

    def __repr__(self):
        return f"Channel(read_fd={self.read_fd}, write_fd={self.write_fd})"

    @property
    def fds(self) -> list[int]:
        """File descriptors still open on this endpoint."""
        return [fd for fd in (self.read_fd, self.write_fd) if fd is not None]

    @property
    def closed(self) -> bool:
        return self.read_fd is None and self.write_fd is None

    def send(self, message: Any) -> None:
        """Write one message; it is visible to the peer as soon as this returns."""
        if self.write_fd is None:
            raise ChannelClosed("Write half is closed")
        write_frame(self.write_fd, message, max_size=self.max_size)

    def receive(self) -> Any:
        """
        Block for the next message.

        Returns :data:`END` (``None``) when the peer sent the end-of-stream marker, closed its end,
        or died part way through a frame; the caller cannot tell these apart.
        """
        if self.read_fd is None:
            return END
        try:
            return read_frame(self.read_fd, max_size=self.max_size)
        except ChannelClosed:
            return END

    def close_write(self) -> None:
        if self.write_fd is not None:
            fd, self.write_fd = self.write_fd, None
            os.close(fd)

    def close_read(self) -> None:
        if self.read_fd is not None:
            fd, self.read_fd = self.read_fd, None
            os.close(fd)

    def close(self) -> None:
        self.close_write()
        self.close_read()


def channel_pair(*, max_size: int = MAX_FRAME_SIZE) -> Tuple[Channel, Channel]:
    """
    Create the two endpoints of a duplex channel from two pipes.

    :returns: ``(controller_end, worker_end)``. Whatever one end sends, the other receives.
    :raises OSError: If the pipes cannot be created.
    """
    down_r, down_w = os.pipe()  # controller -> worker
    try:
        up_r, up_w = os.pipe()  # worker -> controller
    except OSError:
        os.close(down_r)
        os.close(down_w)
        raise
    return Channel(up_r, down_w, max_size=max_size), Channel(down_r, up_w, max_size=max_size)
