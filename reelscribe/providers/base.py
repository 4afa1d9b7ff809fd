"""
Provider adapter contract.

Every speech backend is wrapped behind the same ``transcribe`` call and
returns normalized ``SubtitleSegment`` lists, so the router can swap them
freely. Each adapter owns:

- its payload ceiling (size and/or duration) and ``accepts()`` check
- its transport strategy (direct upload, compressed audio, streaming)
- transport-level retries (connection resets); business-level retries
  are the router's job via RetryExecutor
- translation of transport errors into the provider error taxonomy
"""

from abc import ABC, abstractmethod
from typing import Callable, List, Optional, Protocol, runtime_checkable

from reelscribe.config.constants import TransportConstants, language_code
from reelscribe.config.settings import ProviderSettings
from reelscribe.modules.errors import (
    ConfigurationError,
    EmptyResultError,
    FatalProviderError,
    InputTooLargeError,
    ProviderError,
    TransientProviderError,
)
from reelscribe.modules.media_tools import AudioExtractor
from reelscribe.modules.segment_normalizer import normalize_segments
from reelscribe.modules.types import MediaSource, SubtitleSegment
from reelscribe.utils.logger import logger

_TRANSPORT = TransportConstants()

ProgressCallback = Callable[[str, float], None]


def scaled_timeout(size_bytes: int, constants: TransportConstants = _TRANSPORT) -> float:
    """
    Read timeout for an upload of ``size_bytes``.

    Tiered base (60s / 120s / 300s) plus a per-MB allowance, capped.
    """
    size_mb = size_bytes / (1024 * 1024)
    base = constants.LARGE_TIMEOUT
    for limit_mb, tier_timeout in constants.TIERS:
        if size_mb <= limit_mb:
            base = tier_timeout
            break
    return min(constants.MAX_TIMEOUT, base + size_mb * constants.SECONDS_PER_MB)


def error_for_status(provider: str, status: int, detail: str = "") -> ProviderError:
    """Map an HTTP status from a backend to the provider error taxonomy."""
    detail = (detail or "").strip()[:300]
    message = f"{provider} returned HTTP {status}" + (f": {detail}" if detail else "")

    if status in (401, 403):
        return FatalProviderError(
            message,
            reason=FatalProviderError.CONFIGURATION,
            provider=provider,
            status_code=status,
            suggestion=f"Check the {provider} API key and account permissions",
        )
    if status == 413:
        return InputTooLargeError(message, provider=provider, status_code=status)
    if status in (429, 503, 529) or "overloaded" in detail.lower():
        return TransientProviderError(message, overloaded=True, provider=provider, status_code=status)
    if status >= 500 or status == 408:
        return TransientProviderError(message, provider=provider, status_code=status)
    return FatalProviderError(message, reason=FatalProviderError.INPUT, provider=provider, status_code=status)


@runtime_checkable
class TranscriptionProvider(Protocol):
    """What the router needs from an adapter."""

    name: str

    def is_configured(self) -> bool: ...

    def accepts(self, media: MediaSource) -> bool: ...

    def transcribe(
        self,
        media: MediaSource,
        language_hint: str = "auto",
        on_progress: Optional[ProgressCallback] = None,
        cancel=None,
        on_partial: Optional[Callable[[List[SubtitleSegment]], None]] = None,
        on_stream_text: Optional[Callable[[str], None]] = None,
        instructions: Optional[str] = None,
    ) -> List[SubtitleSegment]: ...


class ProviderAdapter(ABC):
    """
    Base class for HTTP transcription backends.

    Subclasses implement ``_transcribe`` and return raw segments; this class
    checks configuration and ceilings, then normalizes the output.
    """

    name = "base"
    supports_splitting = True

    def __init__(
        self,
        settings: ProviderSettings,
        audio_extractor: Optional[AudioExtractor] = None,
        name: Optional[str] = None,
    ):
        self.settings = settings
        self.audio_extractor = audio_extractor
        if name:
            self.name = name

    # -- capability checks ---------------------------------------------------

    @property
    def max_upload_bytes(self) -> int:
        return int(self.settings.max_upload_mb * 1024 * 1024)

    @property
    def max_duration(self) -> Optional[float]:
        return self.settings.max_duration_sec

    def is_configured(self) -> bool:
        return self.settings.is_configured

    def require_api_key(self) -> str:
        key = self.settings.resolve_api_key()
        if not self.settings.enabled:
            raise ConfigurationError(f"{self.name} is disabled in the configuration", provider=self.name)
        if not key:
            raise ConfigurationError(
                f"{self.name} API key not found",
                env_var=self.settings.api_key_env,
                provider=self.name,
            )
        return key

    def upload_size(self, media: MediaSource) -> int:
        """Bytes this adapter would upload for ``media``."""
        return media.size_bytes

    def accepts(self, media: MediaSource) -> bool:
        """True when ``media`` fits this adapter's ceilings in a single call."""
        if self.upload_size(media) > self.max_upload_bytes:
            return False
        if self.max_duration and media.duration > self.max_duration:
            return False
        return True

    def check_ceiling(self, media: MediaSource) -> None:
        if not self.accepts(media):
            raise InputTooLargeError(
                f"{media.name} ({media.size_mb:.1f} MB, {media.duration:.0f}s) exceeds the "
                f"{self.name} limit of {self.settings.max_upload_mb:.0f} MB"
                + (f" / {self.max_duration:.0f}s" if self.max_duration else ""),
                provider=self.name,
            )

    # -- transcription -------------------------------------------------------

    def transcribe(
        self,
        media: MediaSource,
        language_hint: str = "auto",
        on_progress: Optional[ProgressCallback] = None,
        cancel=None,
        on_partial: Optional[Callable[[List[SubtitleSegment]], None]] = None,
        on_stream_text: Optional[Callable[[str], None]] = None,
        instructions: Optional[str] = None,
    ) -> List[SubtitleSegment]:
        """
        Transcribe ``media`` into normalized segments.

        Raises:
            ConfigurationError: Missing key or disabled provider
            InputTooLargeError: ``media`` exceeds this adapter's ceiling
            TransientProviderError: Retryable transport/backend failure
            FatalProviderError: Rejected request
            EmptyResultError: Nothing usable after normalization
            CancelledError: ``cancel`` fired
        """
        api_key = self.require_api_key()
        self.check_ceiling(media)
        if cancel is not None:
            cancel.raise_if_cancelled()

        language = language_code(language_hint)
        self._report(on_progress, f"Uploading to {self.name}...", 10)
        raw = self._transcribe(
            media, api_key, language,
            on_progress=on_progress,
            cancel=cancel,
            on_partial=on_partial,
            on_stream_text=on_stream_text,
            instructions=instructions,
        )

        segments = normalize_segments(raw, duration=media.duration or None)
        if not segments:
            raise EmptyResultError(
                f"{self.name} returned no usable speech for {media.name}",
                provider=self.name,
                suggestion="The audio may be music-only or silent",
            )
        self._report(on_progress, f"{self.name} finished", 100)
        logger.debug(f"{self.name}: {len(segments)} segments for {media.name}")
        return segments

    @abstractmethod
    def _transcribe(
        self,
        media: MediaSource,
        api_key: str,
        language: str,
        on_progress=None,
        cancel=None,
        on_partial=None,
        on_stream_text=None,
        instructions=None,
    ) -> List[SubtitleSegment]:
        """
        Backend call; returns raw (not yet normalized) segments.

        ``instructions`` is free-form user guidance; backends without a
        prompt ignore it.
        """

    @staticmethod
    def _report(on_progress: Optional[ProgressCallback], stage: str, progress: float) -> None:
        if on_progress is None:
            return
        try:
            on_progress(stage, progress)
        except Exception as e:
            logger.debug(f"Progress callback failed: {e}")

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}(model={self.settings.model!r})"
