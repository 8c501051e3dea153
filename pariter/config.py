"""
Pool configuration.

The only recognised option is ``workers``, the concurrency limit. ``0`` disables the pool and runs the
transformation in the calling process. The platform default is resolved once per process: 10 workers
where the ``fork`` start method exists, 0 elsewhere, overridable through the ``PARITER_WORKERS``
environment variable (``.env`` files are honoured).
"""
import multiprocessing as mp
import os
from dataclasses import dataclass
from functools import lru_cache
from typing import Optional

from dotenv import load_dotenv

from pariter.utils.log import get_logger

load_dotenv()

logger = get_logger(__name__)

DEFAULT_WORKERS = 10
WORKERS_ENV = "PARITER_WORKERS"


def fork_available() -> bool:
    """True if worker processes can be forked on this platform."""
    return "fork" in mp.get_all_start_methods()


def _check_workers(workers) -> int:
    if isinstance(workers, bool) or not isinstance(workers, int):
        raise TypeError(f"workers must be a non-negative integer. Got {type(workers)}")
    if workers < 0:
        raise ValueError(f"workers must be a non-negative integer. Got {workers}")
    return workers


@lru_cache(maxsize=None)
def _report_no_fork() -> None:
    logger.warning("Fork not available, falling back to single process mode")


@lru_cache(maxsize=None)
def default_workers() -> int:
    """
    Resolve the process-wide default concurrency limit.

    The value is computed on first call and cached for the life of the process.

    :raises ValueError: If ``PARITER_WORKERS`` is set to something other than a non-negative integer.
    """
    if not fork_available():
        _report_no_fork()
        return 0
    env_value = os.getenv(WORKERS_ENV, "").strip()
    if env_value:
        try:
            return _check_workers(int(env_value))
        except (TypeError, ValueError) as e:
            raise ValueError(f"Invalid {WORKERS_ENV}={env_value!r}: {e}") from e
    return DEFAULT_WORKERS


@dataclass(frozen=True)
class PoolConfig:
    """
    Options of one parallel map invocation.

    :param workers: Concurrency limit. None selects :func:`default_workers`, 0 runs synchronously.
    """
    workers: Optional[int] = None

    def __post_init__(self):
        if self.workers is not None:
            _check_workers(self.workers)

    def resolve(self) -> int:
        """Effective number of worker processes for this platform."""
        if self.workers is None:
            return default_workers()
        if self.workers > 0 and not fork_available():
            _report_no_fork()
            return 0
        return self.workers
