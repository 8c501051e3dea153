"""Readiness multiplexer over the pipe halves of every active worker channel."""
import selectors
from typing import Any, Optional, Tuple


class Multiplexer:
    """
    Wait on a changing set of readable and writable file descriptors.

    Each watched descriptor carries a ``data`` object (the pool passes the owning worker) which
    :meth:`wait` hands back instead of the raw descriptor. Registration changes take effect on the
    next :meth:`wait`.
    """

    def __init__(self):
        self._selector = selectors.DefaultSelector()

    def __len__(self):
        mapping = self._selector.get_map()
        return 0 if mapping is None else len(mapping)

    def __bool__(self):
        return len(self) > 0

    def _watch(self, fd: int, event: int, data: Any) -> None:
        try:
            key = self._selector.get_key(fd)
        except KeyError:
            self._selector.register(fd, event, data)
        else:
            self._selector.modify(fd, key.events | event, data)

    def watch_read(self, fd: int, data: Any = None) -> None:
        self._watch(fd, selectors.EVENT_READ, data)

    def watch_write(self, fd: int, data: Any = None) -> None:
        self._watch(fd, selectors.EVENT_WRITE, data)

    def unwatch(self, fd: Optional[int], event: Optional[int] = None) -> None:
        """Stop watching ``fd`` for ``event`` (both events if None). Unknown descriptors are ignored."""
        if fd is None:
            return
        try:
            key = self._selector.get_key(fd)
        except KeyError:
            return
        remaining = 0 if event is None else key.events & ~event
        if remaining:
            self._selector.modify(fd, remaining, key.data)
        else:
            self._selector.unregister(fd)

    def watching(self, fd: Optional[int], event: int) -> bool:
        if fd is None:
            return False
        try:
            return bool(self._selector.get_key(fd).events & event)
        except KeyError:
            return False

    def wait(self, timeout: Optional[float] = None) -> Tuple[list, list]:
        """
        Block until at least one watched descriptor is ready.

        :param timeout: Seconds to wait; None blocks indefinitely.
        :returns: ``(readable, writable)`` lists of the ``data`` objects whose descriptors are ready.
        """
        readable, writable = [], []
        for key, events in self._selector.select(timeout):
            if events & selectors.EVENT_READ:
                readable.append(key.data)
            if events & selectors.EVENT_WRITE:
                writable.append(key.data)
        return readable, writable

    def close(self) -> None:
        self._selector.close()
