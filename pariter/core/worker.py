"""
Worker processes of the pool.

Workers are forked, so the transformation function (closures and lambdas included) is inherited
rather than pickled. A worker's memory is its own: side effects of the transformation never reach the
controller, only the values it returns do.
"""
import multiprocessing as mp
import os
import sys
from contextlib import suppress
from typing import Any, Callable, Iterable, Optional

from pariter.core.channel import Channel, END, channel_pair
from pariter.utils.log import get_logger

logger = get_logger(__name__)

_IDLE = object()


def worker_loop(fn: Callable[[Any, Any], Any], channel: Channel) -> int:
    """
    Serve work items from ``channel`` until the end-of-stream marker arrives.

    Each ``(key, payload)`` parcel is answered with ``(key, fn(key, payload))`` on the same channel, in
    the order received. On :data:`END` the worker answers with its own :data:`END` and returns.
    Exceptions raised by ``fn`` are logged and propagate, which ends the worker process.

    :returns: Number of items processed.
    """
    done = 0
    while True:
        parcel = channel.receive()
        if parcel is END:
            break
        key, payload = parcel
        try:
            value = fn(key, payload)
        except Exception:
            logger.exception(f"Transformation failed for key {key!r} in worker pid {os.getpid()}")
            raise
        channel.send((key, value))
        done += 1

    # The controller may already have closed its read half after a forced shutdown
    with suppress(BrokenPipeError):
        channel.send(END)
    return done


def _worker_main(fn: Callable, channel: Channel, inherited_fds: Iterable[int]) -> None:
    # Controller-side descriptors copied by fork would keep other workers' pipes open
    for fd in inherited_fds:
        with suppress(OSError):
            os.close(fd)
    try:
        done = worker_loop(fn, channel)
        logger.debug(f"Worker pid {os.getpid()} finished after {done} items")
    except Exception:
        # already logged with its traceback by worker_loop
        sys.exit(1)
    finally:
        channel.close()


class Worker:
    """
    Controller-side handle of one worker process.

    :param index: Sequence number of the worker within its pool.
    :param process: The running :class:`multiprocessing.Process`.
    :param channel: Controller endpoint of the worker's channel.
    """

    def __init__(self, index: int, process: mp.Process, channel: Channel):
        self.index = index
        self.process = process
        self.channel = channel
        self.in_flight = _IDLE

    def __repr__(self):
        return f"Worker(index={self.index}, pid={self.pid}, busy={self.busy}, alive={self.alive})"

    @property
    def pid(self) -> Optional[int]:
        return self.process.pid

    @property
    def busy(self) -> bool:
        """True while a dispatched item has not been answered."""
        return self.in_flight is not _IDLE

    @property
    def accepting(self) -> bool:
        """True until the end-of-stream marker has been sent to the worker."""
        return self.channel.write_fd is not None

    @property
    def alive(self) -> bool:
        """True until the worker's result stream has ended."""
        return self.channel.read_fd is not None

    def dispatch(self, item: tuple) -> None:
        self.in_flight = item[0]
        self.channel.send(item)

    def complete(self) -> Any:
        """Mark the in-flight item as answered and return its key."""
        key, self.in_flight = self.in_flight, _IDLE
        return key

    def finish(self) -> None:
        """Tell the worker there is no more work and close the write half."""
        try:
            self.channel.send(END)
        finally:
            self.channel.close_write()

    def reap(self, timeout: Optional[float] = None) -> Optional[int]:
        """Wait for the process to exit and return its exit code."""
        self.process.join(timeout)
        return self.process.exitcode


def spawn_worker(fn: Callable, index: int, inherited_fds: Iterable[int] = (), *, max_size: Optional[int] = None) -> Worker:
    """
    Fork a worker process serving ``fn`` and return its controller-side handle.

    :param fn: Transformation ``fn(key, payload) -> value``.
    :param index: Sequence number used for the process name.
    :param inherited_fds: Controller descriptors the child must close after the fork.
    :param max_size: Optional frame size limit for the new channel.
    :raises OSError: If the pipes or the process cannot be created.
    """
    ctx = mp.get_context("fork")
    kwargs = {} if max_size is None else {"max_size": max_size}
    ours, theirs = channel_pair(**kwargs)
    process = ctx.Process(
        target=_worker_main,
        args=(fn, theirs, [*inherited_fds, *ours.fds]),
        name=f"pariter-worker-{index}",
    )
    try:
        process.start()
    except BaseException:
        ours.close()
        raise
    finally:
        theirs.close()
    return Worker(index, process, ours)
