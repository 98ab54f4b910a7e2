# -*- coding: utf-8 -*-
"""Execution backends for the embarrassingly parallel solver stages.

Both strategies implement

    map(fn, items, return_exceptions=False) -> list

which applies `fn` to every item and returns results in input order. `map`
is a barrier: it returns only once every task has finished, successfully or
not. With `return_exceptions=True` failed tasks put their exception in the
result slot; otherwise the exception of the lowest failing index is re-raised
after all tasks have reported.

Tasks never share written state (outputs are partitioned by timestep or by
candidate index), so both strategies return identical results for identical
inputs. NumPy releases the GIL inside its kernels, which is what makes a
thread pool worthwhile here.
"""

from __future__ import annotations

import logging
from concurrent.futures import ThreadPoolExecutor, wait
from typing import Any, Callable, List, Sequence

logger = logging.getLogger(__name__)


def _first_failure(results: List[Any]):
    for r in results:
        if isinstance(r, BaseException):
            raise r


class SequentialBackend:
    """Runs every task on the calling thread."""

    num_workers = 1
    parallel = False

    def map(self, fn: Callable[[Any], Any], items: Sequence[Any], return_exceptions: bool = False) -> List[Any]:
        results: List[Any] = []
        for item in items:
            try:
                results.append(fn(item))
            except Exception as e:
                results.append(e)
        if not return_exceptions:
            _first_failure(results)
        return results

    def close(self):
        pass

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        self.close()

    def __repr__(self):
        return "SequentialBackend()"


class ThreadPoolBackend:
    """Fixed-size worker pool created once and reused for every `map`."""

    parallel = True

    def __init__(self, num_workers: int, thread_name_prefix: str = "ilqr-worker"):
        num_workers = int(num_workers)
        if num_workers < 1:
            raise ValueError(f"num_workers must be >= 1, got {num_workers}")
        self.num_workers = num_workers
        self._pool = ThreadPoolExecutor(max_workers=num_workers, thread_name_prefix=thread_name_prefix)
        self._closed = False
        logger.debug("started thread pool with %d workers", num_workers)

    def map(self, fn: Callable[[Any], Any], items: Sequence[Any], return_exceptions: bool = False) -> List[Any]:
        if self._closed:
            raise RuntimeError("ThreadPoolBackend is closed")
        futures = [self._pool.submit(fn, item) for item in items]
        wait(futures)

        results: List[Any] = []
        for f in futures:
            exc = f.exception()
            results.append(exc if exc is not None else f.result())
        if not return_exceptions:
            _first_failure(results)
        return results

    def close(self):
        if not self._closed:
            self._pool.shutdown(wait=True)
            self._closed = True
            logger.debug("thread pool with %d workers shut down", self.num_workers)

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        self.close()

    def __repr__(self):
        return f"ThreadPoolBackend(num_workers={self.num_workers})"


def make_backend(num_workers: int = 1):
    """SequentialBackend for one worker, ThreadPoolBackend otherwise."""
    if int(num_workers) <= 1:
        return SequentialBackend()
    return ThreadPoolBackend(int(num_workers))
