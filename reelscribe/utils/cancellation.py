"""
Cancellation tokens shared by the router, providers and media tools.

A token wraps ``threading.Event``. Blocking network calls cannot be
interrupted from another thread, so ``run_cancellable`` runs the call on a
worker thread, waits on the token, and on cancellation invokes an abort hook
(closing the HTTP session or client) before raising ``CancelledError``.
"""

import threading
from concurrent.futures import ThreadPoolExecutor, wait as wait_futures
from typing import Callable, Optional, TypeVar

from reelscribe.modules.errors import CancelledError
from reelscribe.utils.logger import logger

T = TypeVar("T")

_POLL_INTERVAL = 0.1

# How long an aborted call gets to unwind before its worker is detached
ABORT_GRACE_SECONDS = 2.0


class CancellationToken:
    """Cooperative cancellation signal."""

    def __init__(self):
        self._event = threading.Event()
        self._callbacks = []
        self._lock = threading.Lock()

    @property
    def is_cancelled(self) -> bool:
        return self._event.is_set()

    def cancel(self) -> None:
        """Signal cancellation and run registered abort callbacks once."""
        with self._lock:
            if self._event.is_set():
                return
            self._event.set()
            callbacks = list(self._callbacks)
            self._callbacks.clear()

        for callback in callbacks:
            try:
                callback()
            except Exception as e:
                logger.debug(f"Cancellation callback failed: {e}")

    def register(self, callback: Callable[[], None]) -> Callable[[], None]:
        """
        Register an abort hook, run immediately if already cancelled.

        Returns a function that unregisters the hook.
        """
        with self._lock:
            if not self._event.is_set():
                self._callbacks.append(callback)

                def _unregister():
                    with self._lock:
                        if callback in self._callbacks:
                            self._callbacks.remove(callback)

                return _unregister

        callback()
        return lambda: None

    def raise_if_cancelled(self) -> None:
        if self._event.is_set():
            raise CancelledError()

    def wait(self, timeout: Optional[float] = None) -> bool:
        """Sleep up to ``timeout`` seconds; returns True if cancelled."""
        return self._event.wait(timeout)


def ensure_token(cancel: Optional[CancellationToken]) -> CancellationToken:
    return cancel if cancel is not None else CancellationToken()


def run_cancellable(
    func: Callable[[], T],
    cancel: Optional[CancellationToken],
    on_abort: Optional[Callable[[], None]] = None,
) -> T:
    """
    Run a blocking call so that cancellation aborts it.

    Args:
        func: The blocking call (usually a transport request)
        cancel: Token to watch; when None the call runs inline
        on_abort: Hook that tears down the transport (session.close(), ...)

    After cancellation the worker is joined for up to ``ABORT_GRACE_SECONDS``
    so an aborted transport can unwind. A call that ignores the abort keeps
    running on the detached worker thread until it returns on its own; its
    result is discarded.

    Returns:
        Whatever ``func`` returns

    Raises:
        CancelledError: If the token fires before ``func`` completes
    """
    if cancel is None:
        return func()

    cancel.raise_if_cancelled()

    executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="reelscribe-io")
    try:
        future = executor.submit(func)
        while True:
            done, _ = wait_futures([future], timeout=_POLL_INTERVAL)
            if done:
                return future.result()
            if cancel.is_cancelled:
                if on_abort is not None:
                    try:
                        on_abort()
                    except Exception as e:
                        logger.debug(f"Transport abort hook failed: {e}")
                if not future.cancel():
                    finished, _ = wait_futures([future], timeout=ABORT_GRACE_SECONDS)
                    if not finished:
                        logger.debug(
                            f"Aborted call still running after {ABORT_GRACE_SECONDS:.0f}s; detaching its worker"
                        )
                raise CancelledError()
    finally:
        executor.shutdown(wait=False)
