import multiprocessing as mp
import os

import pytest

requires_fork = pytest.mark.skipif(
    "fork" not in mp.get_all_start_methods(), reason="fork start method not available"
)


def double(key, value):
    return value * 2


def key_and_payload(key, value):
    return key, value


def pid_of_worker(key, value):
    return os.getpid()


def fail_on_three(key, value):
    if value == 3:
        raise RuntimeError("three is not allowed")
    return value * 2


def exit_on_three(key, value):
    if value == 3:
        os._exit(7)
    return value * 2


def sequential(fn, pairs):
    return [(k, fn(k, v)) for k, v in pairs]
