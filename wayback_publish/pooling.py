"""A bounded worker pool that runs queued requests with retries and timeouts."""

from __future__ import annotations

import enum
import logging
import queue
import threading
import time
from collections import deque
from dataclasses import dataclass
from typing import Callable, Optional

logger = logging.getLogger(__name__)

Action = Callable[[threading.Event], None]


class PoolNotExistError(RuntimeError):
    """Raised when a pool has no resources to hand out."""

    def __init__(self, message: str = "pool not exist") -> None:
        super().__init__(message)


class PoolTimeoutError(TimeoutError):
    """Raised or reported when an attempt does not finish in time."""

    def __init__(self, message: str = "process timeout") -> None:
        super().__init__(message)


@dataclass
class Options:
    """Pool configuration.

    ``timeout`` is in seconds, ``max_retries`` is the number of extra attempts
    after the first one, and ``capacity`` is how many requests may run at once.
    """

    timeout: float = 0.0
    max_retries: int = 0
    capacity: int = 0

    def __post_init__(self) -> None:
        if self.timeout < 0:
            raise ValueError("timeout must not be negative")
        if self.max_retries < 0:
            raise ValueError("max_retries must not be negative")
        if self.capacity < 0:
            raise ValueError("capacity must not be negative")


@dataclass
class Bucket:
    """A unit of work for the pool.

    ``request`` is called with a :class:`threading.Event` that is set once the
    attempt's deadline passes; it signals failure by raising. ``fallback`` is
    called the same way after the last attempt has failed.
    """

    request: Optional[Action] = None
    fallback: Optional[Action] = None


class Status(enum.Enum):
    """Load state of a pool."""

    IDLE = 0
    BUSY = 1

    def __str__(self) -> str:
        return self.name.lower()


class Pool:
    """Runs buckets on a fixed number of resources until closed."""

    _MULTIPLIER = 0.75

    def __init__(self, options: Optional[Options] = None) -> None:
        opts = options if options is not None else Options()
        self._capacity = opts.capacity
        self._resources: queue.Queue[int] = queue.Queue(maxsize=opts.capacity)
        for resource_id in range(opts.capacity):
            self._resources.put(resource_id)

        self._timeout = opts.timeout
        self._max_retries = opts.max_retries + 1
        self._staging: deque[Bucket] = deque()
        self._cond = threading.Condition()
        self._closed = threading.Event()
        self._waiting = 0
        self._processing = 0

    def roll(self) -> None:
        """Dispatch queued buckets to workers; blocks until the pool is closed."""
        while True:
            with self._cond:
                while not self._staging and not self._closed.is_set():
                    self._cond.wait()
                if self._closed.is_set():
                    return
                bucket = self._staging.pop()
            threading.Thread(target=self._run, args=(bucket,), daemon=True).start()

    def put(self, bucket: Bucket) -> None:
        """Queue a bucket for processing."""
        with self._cond:
            self._staging.appendleft(bucket)
            self._waiting += 1
            self._cond.notify_all()

    def close(self) -> None:
        """Close the pool, blocking until every queued bucket is done."""
        with self._cond:
            while self._waiting or self._processing:
                self._cond.wait()
            self._closed.set()
            self._cond.notify_all()

    def closed(self, wait: float = 3.0) -> bool:
        """Report whether the pool is closed, waiting up to ``wait`` seconds."""
        return self._closed.wait(wait)

    def status(self) -> Status:
        """Return the load state of the pool."""
        with self._cond:
            total = self._waiting + self._processing
        if total == 0 or total < self._capacity:
            return Status.IDLE
        return Status.BUSY

    def _run(self, bucket: Bucket) -> None:
        with self._cond:
            self._processing += 1
        try:
            self._do(bucket)
        except Exception:
            logger.exception("pooling do failed")
        finally:
            with self._cond:
                self._waiting -= 1
                self._processing -= 1
                self._cond.notify_all()

    def _do(self, bucket: Bucket) -> None:
        elapsed = 0
        for _ in range(self._max_retries):
            elapsed, error = self._attempt(bucket, elapsed)
            if error is None:
                return
            logger.debug("pooling attempt failed: %s", error)

    def _attempt(
        self, bucket: Bucket, elapsed: int
    ) -> tuple[int, Optional[BaseException]]:
        interval = int(elapsed * self._MULTIPLIER)
        deadline = time.monotonic() + self._timeout * (1 + interval)
        cancel = threading.Event()

        resource = self._resources.get()
        error: Optional[BaseException] = None
        try:
            outcome: queue.Queue[Optional[BaseException]] = queue.Queue(maxsize=1)
            if bucket.request is not None:
                threading.Thread(
                    target=self._invoke,
                    args=(bucket.request, cancel, outcome),
                    daemon=True,
                ).start()
            try:
                error = outcome.get(timeout=max(deadline - time.monotonic(), 0.0))
            except queue.Empty:
                error = PoolTimeoutError("roll bucket timeout")
                cancel.set()
            if error is not None:
                elapsed += 1
        finally:
            self._resources.put(resource)
            if elapsed >= self._max_retries and bucket.fallback is not None:
                try:
                    bucket.fallback(cancel)
                except Exception:
                    logger.debug("fallback failed", exc_info=True)
            cancel.set()
        return elapsed, error

    @staticmethod
    def _invoke(
        request: Action,
        cancel: threading.Event,
        outcome: "queue.Queue[Optional[BaseException]]",
    ) -> None:
        try:
            request(cancel)
        except Exception as exc:
            outcome.put(exc)
        else:
            outcome.put(None)