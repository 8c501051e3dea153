"""Exception hierarchy shared by the pool, its channels and the public API."""


class PariterError(Exception):
    """Base class for every error raised by pariter."""


class PoolError(PariterError):
    """The worker pool could not be built (pipe or process creation failed)."""


class ChannelError(PariterError):
    """Base class for message channel failures."""


class ChannelClosed(ChannelError, EOFError):
    """The peer closed its end of the pipe at a frame boundary."""


class TruncatedFrame(ChannelClosed):
    """The peer closed its end of the pipe in the middle of a frame."""


class FrameTooLargeError(ChannelError, ValueError):
    """A frame exceeds the configured maximum size."""
