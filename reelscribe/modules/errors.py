"""
Exception taxonomy for reelscribe transcription.

Design Principles:
- Every exception can carry actionable guidance (``suggestion``)
- Error messages include context (what was attempted, with which inputs)
- Provider errors are split by what the router should do next:
  retry (transient), advance (fatal), or stop (cancelled)
- All exceptions are serializable for CLI/API error reporting
"""

from typing import Any, Dict, List, Optional


class ReelscribeError(Exception):
    """
    Base exception for all reelscribe errors.

    Attributes:
        message: Human-readable error description
        context: Additional context as key-value pairs
        suggestion: Actionable suggestion to fix the error
    """

    def __init__(
        self,
        message: str,
        context: Optional[Dict[str, Any]] = None,
        suggestion: Optional[str] = None,
    ):
        self.message = message
        self.context = context or {}
        self.suggestion = suggestion
        super().__init__(self._format_message())

    def _format_message(self) -> str:
        parts = [self.message]

        if self.context:
            context_str = ", ".join(f"{k}={v!r}" for k, v in self.context.items())
            parts.append(f"Context: {context_str}")

        if self.suggestion:
            parts.append(f"Suggestion: {self.suggestion}")

        return " | ".join(parts)

    def to_dict(self) -> Dict[str, Any]:
        """Convert exception to dictionary for API serialization."""
        return {
            "error_type": self.__class__.__name__,
            "message": self.message,
            "context": self.context,
            "suggestion": self.suggestion,
        }


# ---------------------------------------------------------------------------
# Provider errors
# ---------------------------------------------------------------------------


class ProviderError(ReelscribeError):
    """Base class for errors raised by a provider attempt."""

    def __init__(
        self,
        message: str,
        provider: Optional[str] = None,
        status_code: Optional[int] = None,
        context: Optional[Dict[str, Any]] = None,
        suggestion: Optional[str] = None,
    ):
        self.provider = provider
        self.status_code = status_code
        context = dict(context or {})
        if provider:
            context.setdefault("provider", provider)
        if status_code is not None:
            context.setdefault("status", status_code)
        super().__init__(message, context=context, suggestion=suggestion)


class TransientProviderError(ProviderError):
    """
    Network failure, 5xx, 429 or an explicit overload signal.

    Retryable. ``overloaded`` marks rate-limit/saturation failures, which
    back off three times longer than a dropped connection.
    """

    def __init__(self, message: str, overloaded: bool = False, **kwargs):
        self.overloaded = overloaded
        kwargs.setdefault(
            "suggestion",
            "The service appears to be temporarily unavailable; try again in a few minutes",
        )
        super().__init__(message, **kwargs)


class FatalProviderError(ProviderError):
    """
    Bad credentials or rejected input.

    Never retried; the router advances to the next provider.
    ``reason`` is one of ``configuration``, ``input`` or ``unsupported``
    and drives the remediation text shown to the user.
    """

    CONFIGURATION = "configuration"
    INPUT = "input"
    UNSUPPORTED = "unsupported"

    def __init__(self, message: str, reason: str = INPUT, **kwargs):
        self.reason = reason
        super().__init__(message, **kwargs)


class ConfigurationError(FatalProviderError):
    """Provider is not configured (missing API key, disabled backend)."""

    def __init__(self, message: str, env_var: Optional[str] = None, **kwargs):
        self.env_var = env_var
        if env_var:
            kwargs.setdefault("suggestion", f"Set the {env_var} environment variable")
        super().__init__(message, reason=FatalProviderError.CONFIGURATION, **kwargs)


class InputTooLargeError(FatalProviderError):
    """Payload exceeds a provider's size or duration ceiling."""

    def __init__(self, message: str, **kwargs):
        kwargs.setdefault(
            "suggestion",
            "Try a shorter clip, or enable splitting so long media is processed in windows",
        )
        super().__init__(message, reason=FatalProviderError.INPUT, **kwargs)


class EmptyResultError(ProviderError):
    """Provider returned no usable segments after normalization."""


# ---------------------------------------------------------------------------
# Non-provider errors
# ---------------------------------------------------------------------------


class ProfilingError(ReelscribeError):
    """Media could not be profiled. Non-fatal: a default profile is used."""


class MediaToolError(ReelscribeError):
    """ffmpeg/ffprobe failed or is not installed."""


class CancelledError(ReelscribeError):
    """The request was cancelled by the caller."""

    def __init__(self, message: str = "Transcription cancelled", **kwargs):
        super().__init__(message, **kwargs)


class AttemptFailure:
    """One failed step of the fallback chain."""

    def __init__(self, provider: str, pipeline: str, error: BaseException):
        self.provider = provider
        self.pipeline = pipeline
        self.error = error

    def describe(self) -> str:
        message = getattr(self.error, "message", None) or str(self.error)
        return f"{self.provider} ({self.pipeline}): {message}"

    def __repr__(self) -> str:
        return f"AttemptFailure({self.describe()!r})"


class AllMethodsExhaustedError(ReelscribeError):
    """
    Terminal failure: every pipeline in the fallback chain failed.

    ``attempts`` records what was tried, in order, and why each step failed.
    ``primary_error`` is the most actionable underlying failure (usually why
    audio failed) and is also chained as ``__cause__`` by the router.
    """

    def __init__(
        self,
        message: str,
        attempts: Optional[List[AttemptFailure]] = None,
        primary_error: Optional[BaseException] = None,
        suggestion: Optional[str] = None,
    ):
        self.attempts = list(attempts or [])
        self.primary_error = primary_error
        context = {}
        if self.attempts:
            context["tried"] = " then ".join(a.provider for a in self.attempts)
        super().__init__(message, context=context, suggestion=suggestion)

    def to_dict(self) -> Dict[str, Any]:
        data = super().to_dict()
        data["attempts"] = [a.describe() for a in self.attempts]
        return data
