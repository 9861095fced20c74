"""Bulk ingestion of RR lines through a pool of worker threads."""
from __future__ import annotations

import logging
import queue
import threading
from dataclasses import dataclass
from typing import Iterable, Iterator, Optional

from .config import Settings
from .driver import Driver
from .errors import FatalError, TransientError
from .retry import RetryPolicy

logger = logging.getLogger(__name__)

PROGRESS_EVERY = 1000
_DONE = object()


def read_lines(path: str) -> Iterator[str]:
    """Yield the RR lines of a file, skipping blank and comment lines."""
    with open(path, "r", encoding="utf-8") as f:
        for line in f:
            line = line.rstrip("\r\n")
            if line.strip() and not line.lstrip().startswith((";", "#")):
                yield line


@dataclass
class LoadStats:
    """Counters of one bulk load.

    Attributes:
        read: Lines taken from the source.
        loaded: Lines stored.
        failed: Lines given up on (fatal included).
        fatal: Lines rejected with a fatal error.
        stopped: The load was stopped before the source ran out.
    """

    read: int = 0
    loaded: int = 0
    failed: int = 0
    fatal: int = 0
    stopped: bool = False

    @property
    def skipped(self) -> int:
        """Lines read but dropped after a stop."""
        return self.read - self.loaded - self.failed


class BulkLoader:
    """Fan RR lines out to worker threads calling `Driver.upsert`.

    Lines go through a bounded queue, so a slow backend throttles the reader.
    Transient errors are retried with `retry`; fatal errors are logged and
    counted, and stop the load when `stop_on_fatal` is set.

    Args:
        driver: Connected driver.
        workers: Number of worker threads.
        queue_size: Queue bound.
        retry: Backoff policy for transient errors.
        stop_on_fatal: Stop at the first fatal error.
        replace: Accepted for compatibility; records are always merged.
    """

    def __init__(
        self,
        driver: Driver,
        workers: int = 4,
        queue_size: int = 1000,
        retry: Optional[RetryPolicy] = None,
        stop_on_fatal: bool = False,
        replace: bool = False,
    ) -> None:
        if replace:
            logger.warning("replace is not supported, records will be merged")
        self.driver = driver
        self.workers = workers
        self.retry = retry or RetryPolicy()
        self.stop_on_fatal = stop_on_fatal
        self.stats = LoadStats()
        self._queue: queue.Queue = queue.Queue(maxsize=queue_size)
        self._stop = threading.Event()
        self._lock = threading.Lock()

    @classmethod
    def from_settings(cls, driver: Driver, settings: Settings, replace: bool = False) -> "BulkLoader":
        return cls(
            driver,
            workers=settings.workers,
            queue_size=settings.queue_size,
            retry=RetryPolicy.from_settings(settings),
            stop_on_fatal=settings.stop_on_fatal,
            replace=replace,
        )

    def stop(self) -> None:
        """Stop reading the source; queued lines are dropped."""
        self._stop.set()

    def run(self, lines: Iterable[str]) -> LoadStats:
        """Load every line of `lines` and wait for the workers to drain.

        Returns:
            LoadStats: Counters of this load.
        """
        threads = [
            threading.Thread(target=self._work, name=f"loader-{i}", daemon=True)
            for i in range(self.workers)
        ]
        for thread in threads:
            thread.start()
        try:
            for line in lines:
                if self._stop.is_set():
                    break
                self._queue.put(line)
                with self._lock:
                    self.stats.read += 1
        finally:
            for _ in threads:
                self._queue.put(_DONE)
            for thread in threads:
                thread.join()

        self.stats.stopped = self._stop.is_set()
        logger.info(
            "load finished: %d read, %d loaded, %d failed (%d fatal), %d skipped",
            self.stats.read,
            self.stats.loaded,
            self.stats.failed,
            self.stats.fatal,
            self.stats.skipped,
        )
        return self.stats

    def _work(self) -> None:
        while True:
            line = self._queue.get()
            if line is _DONE:
                return
            if not self._stop.is_set():
                self._load(line)

    def _load(self, line: str) -> None:
        fatal = False
        try:
            self.retry.call(self.driver.upsert, line)
            ok = True
        except FatalError as exc:
            logger.error("rejected %r: %s", line, exc)
            ok, fatal = False, True
        except TransientError as exc:
            logger.error("failed %r: %s", line, exc)
            ok = False
        except Exception as exc:  # last-resort guard, keeps the worker alive
            logger.exception("unexpected error loading %r: %s", line, exc)
            ok = False

        with self._lock:
            if ok:
                self.stats.loaded += 1
            else:
                self.stats.failed += 1
                self.stats.fatal += int(fatal)
            done = self.stats.loaded + self.stats.failed
        if done % PROGRESS_EVERY == 0:
            logger.info("processed %d lines", done)
        if fatal and self.stop_on_fatal:
            logger.error("stopping load on fatal error")
            self.stop()
