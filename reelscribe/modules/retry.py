"""
Retry-with-backoff for provider calls.

``delay = base_delay * 2 ** attempt``, multiplied by the overload factor when
the failure is a rate-limit/saturation signal. Fatal errors (bad input,
non-429 4xx, cancellation) propagate on the first occurrence without
consuming a retry.
"""

import time
from typing import Callable, Optional, TypeVar

from reelscribe.config.constants import RetryConstants
from reelscribe.modules.errors import (
    CancelledError,
    EmptyResultError,
    FatalProviderError,
    MediaToolError,
    TransientProviderError,
)
from reelscribe.modules.types import ErrorKind, RetryPolicy
from reelscribe.utils.logger import logger

T = TypeVar("T")

_CONSTANTS = RetryConstants()


def _status_code(error: BaseException) -> Optional[int]:
    """Best-effort HTTP status extraction across requests/openai/genai errors."""
    for attr in ("status_code", "code", "status"):
        value = getattr(error, attr, None)
        if isinstance(value, int) and 100 <= value < 600:
            return value

    response = getattr(error, "response", None)
    value = getattr(response, "status_code", None)
    if isinstance(value, int):
        return value
    return None


def classify_error(error: BaseException) -> ErrorKind:
    """
    Default classifier.

    Order matters: our own taxonomy first, then HTTP status, then message
    heuristics. Unknown errors are treated as transient.
    """
    if isinstance(error, CancelledError):
        return ErrorKind.FATAL
    if isinstance(error, (FatalProviderError, EmptyResultError, MediaToolError)):
        return ErrorKind.FATAL
    if isinstance(error, TransientProviderError):
        return ErrorKind.OVERLOAD if error.overloaded else ErrorKind.TRANSIENT

    status = _status_code(error)
    if status is not None:
        if status in _CONSTANTS.OVERLOAD_STATUS_CODES:
            return ErrorKind.OVERLOAD
        if status >= 500 or status == 408:
            return ErrorKind.TRANSIENT
        if 400 <= status < 500:
            return ErrorKind.FATAL

    message = str(error).lower()
    if any(marker in message for marker in _CONSTANTS.OVERLOAD_MARKERS):
        return ErrorKind.OVERLOAD

    if isinstance(error, (ConnectionError, TimeoutError)):
        return ErrorKind.TRANSIENT
    if any(marker in message for marker in _CONSTANTS.TRANSIENT_MARKERS):
        return ErrorKind.TRANSIENT

    if isinstance(error, (ValueError, TypeError, KeyError, FileNotFoundError, PermissionError)):
        return ErrorKind.FATAL

    return ErrorKind.TRANSIENT


def compute_delay(attempt: int, kind: ErrorKind, policy: RetryPolicy) -> float:
    """Seconds to wait after failure number ``attempt`` (0-based)."""
    delay = policy.base_delay * (2 ** attempt)
    if kind == ErrorKind.OVERLOAD:
        delay *= policy.overload_multiplier
    if policy.max_delay is not None:
        delay = min(delay, policy.max_delay)
    return delay


def mark_exhausted(error: BaseException, attempts: int) -> BaseException:
    """Annotate an error as retry-exhausted, keeping its type for classification."""
    error.retry_exhausted = True
    error.retry_attempts = attempts
    if hasattr(error, "context") and isinstance(error.context, dict):
        error.context["retry_exhausted"] = attempts
    return error


class RetryExecutor:
    """
    Runs an operation under a RetryPolicy.

    ``sleep`` is injectable for tests; with a cancellation token the wait
    between attempts is interruptible.
    """

    def __init__(self, sleep: Optional[Callable[[float], None]] = None, cancel=None):
        self._sleep = sleep
        self._cancel = cancel

    def with_cancel(self, cancel) -> "RetryExecutor":
        """Same sleep behaviour, bound to a request's cancellation token."""
        if cancel is None or cancel is self._cancel:
            return self
        return RetryExecutor(sleep=self._sleep, cancel=cancel)

    def run(self, operation: Callable[[], T], policy: Optional[RetryPolicy] = None) -> T:
        policy = policy or RetryPolicy()
        classifier = policy.classifier or classify_error

        attempt = 0
        while True:
            if self._cancel is not None:
                self._cancel.raise_if_cancelled()
            try:
                return operation()
            except CancelledError:
                raise
            except Exception as error:
                kind = classifier(error)
                if kind == ErrorKind.FATAL:
                    raise

                if attempt >= policy.max_retries:
                    logger.warning(f"Giving up after {attempt + 1} attempts: {error}")
                    raise mark_exhausted(error, attempt + 1)

                delay = compute_delay(attempt, kind, policy)
                attempt += 1
                logger.warning(
                    f"Attempt {attempt} failed ({kind.value}): {error}. "
                    f"Retrying in {delay:.1f}s ({attempt}/{policy.max_retries})"
                )
                self._notify(policy, attempt, error)
                self._wait(delay)

    @staticmethod
    def _notify(policy: RetryPolicy, attempt: int, error: BaseException) -> None:
        if policy.on_retry is None:
            return
        try:
            policy.on_retry(attempt, error)
        except Exception as callback_error:
            logger.debug(f"on_retry callback raised, ignoring: {callback_error}")

    def _wait(self, delay: float) -> None:
        if self._sleep is not None:
            self._sleep(delay)
            return
        if self._cancel is not None:
            if self._cancel.wait(delay):
                raise CancelledError()
            return
        time.sleep(delay)
