""" Eager collectors built on :func:`pariter.iterator.iterate` for callers who want the whole result at once."""
import operator
from collections.abc import Mapping, Sized
from typing import Any, Callable, Optional

import pandas as pd
from tqdm import tqdm

from pariter.iterator import iterate, ParallelIterator
from pariter.utils.log import get_logger

logger = get_logger(__name__)


def _consume(it: ParallelIterator, source, progress: bool, desc: Optional[str]):
    if not progress:
        return it
    total = len(source) if isinstance(source, Sized) else None
    return tqdm(it, total=total, desc=desc)


def _report_lost(it: ParallelIterator) -> None:
    lost = it.lost_keys
    if lost:
        logger.warning(f"{len(lost)} items produced no result: {lost}")


def iterate_as_array(fn: Callable[[Any, Any], Any], source, workers: Optional[int] = None, *,
                     progress: bool = False, desc: Optional[str] = None, **kwargs) -> list:
    """
    Run :func:`iterate` and place every value at its integer key in a list.

    Slots of items that produced no result (a worker died) hold None. For sized non-mapping
    sources the list always has ``len(source)`` slots.

    :param fn: Transformation ``fn(index, payload) -> value``.
    :param source: Input whose keys are non-negative integers, typically a sequence.
    :param workers: Concurrency limit, see :func:`iterate`.
    :param progress: Show a tqdm progress bar.
    :param desc: Progress bar description.
    :raises TypeError: If a key is not an integer.
    """
    out: list = []
    if isinstance(source, Sized) and not isinstance(source, Mapping):
        out = [None] * len(source)
    with iterate(fn, source, workers, **kwargs) as it:
        for index, value in _consume(it, source, progress, desc):
            index = operator.index(index)
            if index >= len(out):
                out.extend([None] * (index + 1 - len(out)))
            out[index] = value
        _report_lost(it)
    return out


def iterate_as_dict(fn: Callable[[Any, Any], Any], source, workers: Optional[int] = None, *,
                    progress: bool = False, desc: Optional[str] = None, **kwargs) -> dict:
    """Run :func:`iterate` and collect the results into a ``{key: value}`` dict (completion order)."""
    out = {}
    with iterate(fn, source, workers, **kwargs) as it:
        for key, value in _consume(it, source, progress, desc):
            out[key] = value
        _report_lost(it)
    return out


def iterate_as_series(fn: Callable[[Any, Any], Any], source, workers: Optional[int] = None, *,
                      name: Optional[str] = None, dtype=None, progress: bool = False,
                      desc: Optional[str] = None, **kwargs) -> pd.Series:
    """
    Run :func:`iterate` and collect the results into a :class:`pandas.Series` indexed by key.

    The series is sorted by key, so a ``pd.Series`` input comes back aligned with its (sorted) index.
    Keys that produced no result are missing from the index.
    """
    out = iterate_as_dict(fn, source, workers, progress=progress, desc=desc, **kwargs)
    series = pd.Series(out, name=name, dtype=dtype if out or dtype is not None else object)
    return series.sort_index()
