from __future__ import annotations

import logging
import threading
from concurrent.futures import Future, ThreadPoolExecutor, TimeoutError as FutureTimeout
from typing import Any, Callable, Optional, TypeVar

from .errors import CollaboratorTimeout

T = TypeVar("T")


class CallGuard:
    """
    Runs blocking collaborator calls with a bounded wait.

    Calls execute on a small worker pool; the caller waits at most
    ``timeout_sec`` and then gets CollaboratorTimeout. Calls sharing a name
    never overlap: while a timed-out call is still running, further calls
    under that name fail immediately instead of being submitted again.
    Once ``cancel_event`` is set every further call fails immediately.
    """

    def __init__(
        self,
        timeout_sec: Optional[float] = 1.0,
        max_workers: int = 4,
        logger: Optional[logging.Logger] = None,
        cancel_event: Optional[threading.Event] = None,
    ):
        self.timeout_sec = timeout_sec
        self.logger = logger or logging.getLogger("fiducial_odom.guard")
        self.cancel_event = cancel_event or threading.Event()
        self._executor: Optional[ThreadPoolExecutor] = None
        self._max_workers = max_workers
        self._pending: dict[str, Future] = {}
        self._lock = threading.Lock()

    def _pool(self) -> ThreadPoolExecutor:
        if self._executor is None:
            self._executor = ThreadPoolExecutor(
                max_workers=self._max_workers, thread_name_prefix="fiducial-odom-call"
            )
        return self._executor

    def busy(self, name: str) -> bool:
        with self._lock:
            future = self._pending.get(name)
            return future is not None and not future.done()

    def call(self, name: str, fn: Callable[..., T], *args: Any, **kwargs: Any) -> T:
        if self.cancel_event.is_set():
            raise CollaboratorTimeout(name, 0.0)

        if self.timeout_sec is None or self.timeout_sec <= 0:
            return fn(*args, **kwargs)

        with self._lock:
            previous = self._pending.get(name)
            if previous is not None and not previous.done():
                self.logger.warning("%s still running from an earlier call, not resubmitting", name)
                raise CollaboratorTimeout(name, 0.0)
            future = self._pool().submit(fn, *args, **kwargs)
            self._pending[name] = future

        try:
            result = future.result(timeout=self.timeout_sec)
        except FutureTimeout:
            self.logger.warning("%s did not return within %.3fs", name, self.timeout_sec)
            raise CollaboratorTimeout(name, self.timeout_sec) from None
        except BaseException:
            self._forget(name, future)
            raise
        self._forget(name, future)
        return result

    def _forget(self, name: str, future: Future) -> None:
        with self._lock:
            if self._pending.get(name) is future:
                del self._pending[name]

    def cancel(self) -> None:
        self.cancel_event.set()

    def close(self) -> None:
        self.cancel_event.set()
        with self._lock:
            self._pending.clear()
        if self._executor is not None:
            self._executor.shutdown(wait=False, cancel_futures=True)
            self._executor = None
