from collections.abc import Iterator, Mapping, Sequence
from multiprocessing import util as mp_util
from typing import Any, Callable, Optional, Tuple

import numpy as np
import pandas as pd

from pariter.config import PoolConfig
from pariter.core.pool import PoolController, Producer
from pariter.utils.log import get_logger

logger = get_logger(__name__)

_DONE = object()


def _pairs_producer(pairs) -> Producer:
    it = iter(pairs)

    def producer():
        item = next(it, _DONE)
        if item is _DONE:
            return None
        key, payload = item
        return key, payload

    return producer


def as_producer(source) -> Producer:
    """
    Turn an input source into a producer returning ``(key, payload)`` pairs and then None.

    Accepted sources:

    - a mapping or :class:`pandas.Series`: keys are the mapping keys (the series index)
    - a sequence or :class:`numpy.ndarray`: keys are the positions
    - an iterator already yielding ``(key, payload)`` pairs
    - a callable returning ``(key, payload)`` pairs and None when exhausted

    :raises TypeError: For any other source, strings and bytes included.
    """
    if isinstance(source, Mapping):
        # snapshot so the caller may mutate the mapping while results stream back
        return _pairs_producer(list(source.items()))
    if isinstance(source, pd.Series):
        return _pairs_producer(source.items())
    if isinstance(source, np.ndarray):
        return _pairs_producer(enumerate(source))
    if isinstance(source, Sequence) and not isinstance(source, (str, bytes, bytearray)):
        return _pairs_producer(enumerate(source))
    if isinstance(source, Iterator):
        return _pairs_producer(source)
    if callable(source):
        return source
    raise TypeError(f"Iterator must be a callable, sequence or mapping. Got {type(source)}")


class ParallelIterator:
    r"""Lazy, finite, non-restartable stream of ``(key, value)`` results.

    Results come back in completion order, which is unrelated to input order when ``workers > 1``; use
    the key to put them back in place. Once the stream is exhausted every worker process has exited and
    further iteration yields nothing. A new pass needs a new iterator.

    With ``workers == 0`` no process is forked and the transformation runs in the caller, one item per
    ``next()``; exceptions it raises propagate to the caller. With a pool, a failing transformation kills
    its worker and the item's key ends up in :attr:`lost_keys` instead.

    The iterator is a context manager; leaving the block early terminates the pool. An iterator dropped
    before exhaustion, for instance after a ``break``, terminates its pool when it is garbage-collected,
    and at the latest when the interpreter exits.

    Args:
        fn (Callable): Transformation ``fn(key, payload) -> value``.
        producer (Callable): Returns the next ``(key, payload)`` pair or None.
        workers (int): Resolved concurrency limit, 0 for in-line execution.
        max_frame_size (int, optional): Frame size limit for worker channels.

    Examples:
        >>> it = ParallelIterator(lambda k, v: v * 2, as_producer([1, 2, 3]), workers=0)
        >>> sorted(it)
        [(0, 2), (1, 4), (2, 6)]
        >>> list(it)
        []
    """

    def __init__(self, fn: Callable[[Any, Any], Any], producer: Producer, workers: int, *,
                 max_frame_size: Optional[int] = None):
        self.fn = fn
        self.workers = workers
        self._producer = producer
        self._pool = PoolController(fn, producer, workers, max_frame_size=max_frame_size) if workers > 0 else None
        # closes the pool when an unexhausted iterator is dropped or the interpreter exits;
        # the exit priority runs it before multiprocessing joins the worker processes
        self._finalizer = None if self._pool is None else mp_util.Finalize(self, self._pool.close, exitpriority=10)
        self._exhausted = False

    def __iter__(self):
        return self

    def __next__(self) -> Tuple[Any, Any]:
        if self._exhausted:
            raise StopIteration
        result = self._next_inline() if self._pool is None else self._pool.next()
        if result is None:
            self._exhausted = True
            self._release()
            raise StopIteration
        return result

    def _next_inline(self) -> Optional[Tuple[Any, Any]]:
        item = self._producer()
        if item is None:
            return None
        key, payload = item
        return key, self.fn(key, payload)

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        self.close()

    @property
    def exhausted(self) -> bool:
        return self._exhausted

    @property
    def pool(self) -> Optional[PoolController]:
        return self._pool

    @property
    def lost_keys(self) -> list:
        """Keys whose worker died before answering. Always empty in synchronous mode."""
        return [] if self._pool is None else list(self._pool.lost_keys)

    def close(self) -> None:
        """Stop the stream and terminate any worker still running."""
        self._exhausted = True
        self._release()

    def _release(self) -> None:
        if self._finalizer is not None:
            self._finalizer()


def iterate(fn: Callable[[Any, Any], Any], source, workers: Optional[int] = None, *,
            config: Optional[PoolConfig] = None, max_frame_size: Optional[int] = None) -> ParallelIterator:
    r"""Parallel map: apply ``fn`` to every item of ``source`` in a pool of forked worker processes.

    ``fn`` receives ``(key, payload)`` and its return value comes back as ``(key, value)``. Keys are
    positions for sequences and arrays, keys for mappings and series, or whatever an iterator or
    producer callable supplies.

    :param fn: Transformation ``fn(key, payload) -> value``. Runs in a forked process, so closures work
        but their side effects are not seen by the caller.
    :param source: Sequence, array, mapping, series, iterator of pairs or producer callable.
    :param workers: Concurrency limit; 0 runs synchronously. Defaults to the platform default.
    :param config: A :class:`PoolConfig`, as an alternative to ``workers``.
    :param max_frame_size: Optional frame size limit for worker channels.
    :returns: A :class:`ParallelIterator` over the results in completion order.
    :raises TypeError: If ``fn`` is not callable, the source is not supported, or both ``workers`` and
        ``config`` are given.
    :raises ValueError: If ``workers`` is negative.

    Examples:
        >>> out = [None] * 5
        >>> for index, value in iterate(lambda i, v: v * 2, [1, 2, 3, 4, 5], workers=2):
        ...     out[index] = value
        >>> out
        [2, 4, 6, 8, 10]
    """
    if not callable(fn):
        raise TypeError(f"Worker must be callable. Got {type(fn)}")
    producer = as_producer(source)
    if config is None:
        config = PoolConfig(workers=workers)
    elif workers is not None:
        raise TypeError("Pass either workers or config, not both")
    resolved = config.resolve()
    logger.debug(f"Starting parallel map with {resolved} workers")
    return ParallelIterator(fn, producer, resolved, max_frame_size=max_frame_size)
