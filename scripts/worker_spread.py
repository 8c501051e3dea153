"""
Show how work is spread across the worker processes of a pariter pool.

Every item sleeps for a while and returns the pid of the worker that ran it. The script tallies the
results per pid as they stream back, which makes the greedy first-ready dispatch visible.

Usage example:
python scripts/worker_spread.py --workers 8 --items 200 --sleep 0.05
"""
from __future__ import annotations

import argparse
import itertools
import os
import time
from collections import Counter

import pandas as pd
from tqdm import tqdm

from pariter.iterator import iterate


def _sleepy_pid(key, delay):
    time.sleep(delay)
    return os.getpid()


def main():
    parser = argparse.ArgumentParser(description="Tally pariter results per worker process")
    parser.add_argument('--workers', '-c', type=int, default=10, help='Concurrency limit (0 runs in-line)')
    parser.add_argument('--items', '-n', type=int, default=100, help='Number of work items')
    parser.add_argument('--sleep', type=float, default=0.25, help='Seconds each item sleeps')
    args = parser.parse_args()

    source = ((i, args.sleep) for i in itertools.count(1))
    per_pid: Counter = Counter()
    it = iterate(_sleepy_pid, source, workers=args.workers)
    with it, tqdm(total=args.items, desc="Items") as pbar:
        for _, pid in itertools.islice(it, args.items):
            per_pid[pid] += 1
            pbar.update(1)

    print(f"Controller pid {os.getpid()}")
    print(pd.Series(per_pid, name="items").sort_index().rename_axis("pid").to_string())


if __name__ == '__main__':
    main()
