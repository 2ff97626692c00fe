"""Job registry: correlates background calls with their pending results."""

import itertools
import threading
from collections.abc import Callable
from concurrent.futures import Future
from concurrent.futures import TimeoutError as FutureTimeoutError
from concurrent.futures import wait as wait_futures

from autoshorts.utils import ChunkTimeoutError, logger


class JobRegistry:
    """Runs callables on daemon threads and tracks them by job id.

    Ids come from a per-registry monotonic counter, so two registries
    never share state. A job that times out stays registered until its
    thread returns, since Python threads cannot be killed; `drain` blocks
    until every such job has settled.
    """

    def __init__(self):
        self._ids = itertools.count()
        self._pending: dict[int, Future] = {}
        self._lock = threading.Lock()

    def __len__(self) -> int:
        with self._lock:
            return len(self._pending)

    def submit(self, fn: Callable, *args, **kwargs) -> int:
        """Start `fn(*args, **kwargs)` in the background and return its job id."""
        future: Future = Future()
        with self._lock:
            job_id = next(self._ids)
            self._pending[job_id] = future

        def _run():
            if not future.set_running_or_notify_cancel():
                return
            try:
                future.set_result(fn(*args, **kwargs))
            except BaseException as e:
                future.set_exception(e)

        threading.Thread(target=_run, name=f"autoshorts-job-{job_id}", daemon=True).start()
        logger.debug("Job %d started", job_id)
        return job_id

    def wait(self, job_id: int, timeout: float | None = None):
        """Block until the job finishes and return its result.

        Raises:
            KeyError: If the job id is unknown
            ChunkTimeoutError: If the job does not finish within `timeout`
            Exception: Whatever the job itself raised
        """
        with self._lock:
            future = self._pending[job_id]
        try:
            result = future.result(timeout=timeout)
        except FutureTimeoutError:
            # left registered so drain() can wait for the thread to return
            raise ChunkTimeoutError(
                f"Job {job_id} did not finish within {timeout}s"
            ) from None
        except BaseException:
            self._forget(job_id)
            raise
        self._forget(job_id)
        return result

    def run(self, fn: Callable, *args, timeout: float | None = None, **kwargs):
        """Submit and wait in one step."""
        return self.wait(self.submit(fn, *args, **kwargs), timeout=timeout)

    def drain(self, timeout: float | None = None) -> bool:
        """Wait for timed-out jobs that are still running.

        Their results are discarded. Returns False if some job was still
        running when `timeout` expired.
        """
        with self._lock:
            futures = dict(self._pending)
        if not futures:
            return True

        logger.info("  Waiting for %d timed-out call(s) to return...", len(futures))
        _done, not_done = wait_futures(futures.values(), timeout=timeout)
        with self._lock:
            for job_id, future in futures.items():
                if future.done():
                    self._pending.pop(job_id, None)
        return not not_done

    def _forget(self, job_id: int) -> None:
        with self._lock:
            self._pending.pop(job_id, None)
