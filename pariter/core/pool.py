from collections import deque
from contextlib import suppress
from typing import Any, Callable, Optional, Tuple

from pariter.core.multiplex import Multiplexer
from pariter.core.channel import END
from pariter.core.worker import Worker, spawn_worker
from pariter.errors import PoolError
from pariter.utils.log import get_logger

logger = get_logger(__name__)

Producer = Callable[[], Optional[Tuple[Any, Any]]]


class PoolController:
    r"""Single-threaded event loop driving a bounded pool of forked worker processes.

    The controller pulls ``(key, payload)`` items from a producer, hands them to worker processes over
    framed pipe channels and collects ``(key, value)`` results in completion order. All concurrency lives
    in the workers; the controller only frames, dispatches and waits.

    Each call to :meth:`next` runs the loop until a result is available or the pool is finished:

    1. **Grow**: while fewer than ``workers`` workers are active and input remains, fork a new worker and
       immediately dispatch one item to it.
    2. **Drain**: if a result is queued, return it.
    3. **Multiplex**: block until some channel is ready. Readable channels deliver a result (queued) or
       the end-of-stream marker (worker retired). Writable channels belong to idle workers; they get the
       next input item, or the end-of-stream marker once input is exhausted. Then go back to 1.
    4. **Terminate**: with no channel left open and nothing queued, reap every worker and return None.

    A worker is watched for writability only while it has no item in flight. Every write therefore
    goes to a worker that is blocked reading its input, and frames larger than the pipe buffer cannot
    deadlock against a worker blocked writing its result.

    .. note::
        A worker that dies (for instance because the transformation raised) is indistinguishable from
        one that finished cleanly: its channel simply closes. The item it was holding is not retried.
        Its key is recorded in :attr:`lost_keys` and a warning is logged. A replacement worker is
        forked if input remains.

    Args:
        fn (Callable): Transformation ``fn(key, payload) -> value`` run in the workers.
        producer (Callable): Returns the next ``(key, payload)`` pair, or None when input is exhausted.
        workers (int): Maximum number of concurrently active worker processes, at least 1.
        max_frame_size (int, optional): Frame size limit for every worker channel.

    Raises:
        ValueError: If ``workers`` is smaller than 1.
        PoolError: From :meth:`next` if a pipe or worker process cannot be created; the pool is torn down.
    """

    def __init__(self, fn: Callable[[Any, Any], Any], producer: Producer, workers: int, *,
                 max_frame_size: Optional[int] = None):
        if workers < 1:
            raise ValueError(f"Must have at least one worker. Got {workers}")
        self.fn = fn
        self.max_workers = workers
        self.max_frame_size = max_frame_size
        self.lost_keys: list = []

        self._producer = producer
        self._input_done = False
        self._workers: list[Worker] = []   # every worker ever spawned, reaped on termination
        self._active: list[Worker] = []    # workers whose result stream is still open
        self._results: deque = deque()
        self._mux: Optional[Multiplexer] = None   # created with the first worker
        self._finished = False

    # --- public API ---------------------------------------------------------
    @property
    def finished(self) -> bool:
        return self._finished

    @property
    def active_workers(self) -> int:
        return len(self._active)

    @property
    def spawned_workers(self) -> int:
        return len(self._workers)

    @property
    def pids(self) -> list:
        return [w.pid for w in self._workers]

    def next(self) -> Optional[Tuple[Any, Any]]:
        """
        Return the next completed ``(key, value)`` pair, or None once input and in-flight work are exhausted.

        Once None has been returned every worker process has exited, and later calls keep returning None.
        """
        try:
            while not self._finished:
                self._grow()

                if self._results:
                    return self._results.popleft()

                if self._mux:
                    self._poll()
                    continue

                self._terminate()
        except BaseException:
            # no worker outlives a failed call
            self.close()
            raise
        return None

    def close(self) -> None:
        """
        Tear the pool down: terminate live workers, reap them and close every channel.

        Queued results and in-flight items are discarded. Safe to call more than once. A
        :class:`~pariter.iterator.ParallelIterator` calls it when it is garbage-collected or the
        interpreter exits before the stream was exhausted.
        """
        if self._finished:
            return
        for worker in self._workers:
            if worker.process.is_alive():
                worker.process.terminate()
        for worker in self._active:
            self._mux.unwatch(worker.channel.read_fd)
            self._mux.unwatch(worker.channel.write_fd)
            worker.channel.close()
        self._active.clear()
        self._results.clear()
        self._terminate(forced=True)

    # --- loop steps ---------------------------------------------------------
    def _pull(self) -> Optional[Tuple[Any, Any]]:
        if self._input_done:
            return None
        item = self._producer()
        if item is None:
            self._input_done = True
        return item

    def _grow(self) -> None:
        while len(self._active) < self.max_workers:
            item = self._pull()
            if item is None:
                return
            worker = self._spawn()
            self._dispatch(worker, item)

    def _spawn(self) -> Worker:
        inherited = [fd for w in self._active for fd in w.channel.fds]
        try:
            worker = spawn_worker(self.fn, len(self._workers), inherited, max_size=self.max_frame_size)
        except OSError as e:
            raise PoolError(f"Can't start worker process ({e})") from e
        self._workers.append(worker)
        self._active.append(worker)
        if self._mux is None:
            self._mux = Multiplexer()
        self._mux.watch_read(worker.channel.read_fd, worker)
        logger.debug(f"Spawned worker {worker.index} (pid {worker.pid}), {len(self._active)} active")
        return worker

    def _dispatch(self, worker: Worker, item: Tuple[Any, Any]) -> None:
        try:
            worker.dispatch(item)
        except BrokenPipeError:
            # the worker is gone; its read half reports the closure on the next wait
            logger.debug(f"Worker {worker.index} (pid {worker.pid}) closed its input before dispatch")
            worker.channel.close_write()

    def _poll(self) -> None:
        readable, writable = self._mux.wait()

        for worker in readable:
            message = worker.channel.receive()
            if message is END:
                self._retire(worker)
                continue
            worker.complete()
            self._results.append(message)
            if worker.accepting:
                self._mux.watch_write(worker.channel.write_fd, worker)

        for worker in writable:
            if not worker.accepting:
                continue
            self._mux.unwatch(worker.channel.write_fd)
            item = self._pull()
            if item is not None:
                self._dispatch(worker, item)
            else:
                self._stop_feeding(worker)

    def _stop_feeding(self, worker: Worker) -> None:
        try:
            worker.finish()
        except BrokenPipeError:
            logger.debug(f"Worker {worker.index} (pid {worker.pid}) exited before end-of-stream was sent")

    def _retire(self, worker: Worker) -> None:
        self._mux.unwatch(worker.channel.read_fd)
        self._mux.unwatch(worker.channel.write_fd)
        if worker.busy:
            key = worker.complete()
            self.lost_keys.append(key)
            logger.warning(f"Worker {worker.index} (pid {worker.pid}) exited without a result for key {key!r}")
        with suppress(OSError):
            worker.channel.close()
        self._active.remove(worker)
        logger.debug(f"Retired worker {worker.index} (pid {worker.pid}), {len(self._active)} active")

    def _terminate(self, forced: bool = False) -> None:
        for worker in self._workers:
            code = worker.reap()
            if code and not forced:
                logger.warning(f"Worker {worker.index} (pid {worker.pid}) exited with code {code}")
        if self._mux is not None:
            self._mux.close()
        self._finished = True
        logger.debug(f"Pool finished: {len(self._workers)} workers reaped, {len(self.lost_keys)} items lost")
