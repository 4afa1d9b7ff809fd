"""
Whisper transcription through OpenAI-compatible endpoints (OpenAI, Groq).

Both services cap uploads at 25 MB. Media that fits is uploaded directly;
larger media is reduced to low-bitrate mono MP3 first, which fits roughly
100 minutes of speech under the cap.
"""

from typing import Any, Dict, List, Tuple

import openai

from reelscribe.modules.errors import (
    InputTooLargeError,
    ProviderError,
    TransientProviderError,
)
from reelscribe.modules.segment_normalizer import filter_degenerate_text, words_to_segments
from reelscribe.modules.types import MediaSource, SubtitleSegment, WordTiming
from reelscribe.providers.base import ProviderAdapter, error_for_status, scaled_timeout
from reelscribe.utils.cancellation import run_cancellable
from reelscribe.utils.logger import logger

COMPRESSED_BITRATE_KBPS = 32


def translate_openai_error(provider: str, error: Exception) -> ProviderError:
    if isinstance(error, openai.APIStatusError):
        return error_for_status(provider, error.status_code, getattr(error, "message", str(error)))
    if isinstance(error, openai.APIConnectionError):
        # APITimeoutError is a subclass
        return TransientProviderError(f"{provider} connection failed: {error}", provider=provider)
    return TransientProviderError(f"{provider} request failed: {error}", provider=provider)


def _as_dict(response: Any) -> Dict[str, Any]:
    if isinstance(response, dict):
        return response
    if hasattr(response, "model_dump"):
        return response.model_dump()
    return {"text": str(response)}


def parse_verbose_json(response: Any) -> List[SubtitleSegment]:
    """Raw segments from a ``verbose_json`` transcription."""
    data = _as_dict(response)

    words = [
        WordTiming(word=w.get("word", ""), start=float(w.get("start", 0.0)), end=float(w.get("end", 0.0)))
        for w in data.get("words") or []
    ]
    if words:
        return words_to_segments(words)

    segments = []
    for seg in data.get("segments") or []:
        text = filter_degenerate_text(seg.get("text", ""))
        if text:
            segments.append(SubtitleSegment(float(seg.get("start", 0.0)), float(seg.get("end", 0.0)), text))
    return segments


class WhisperApiAdapter(ProviderAdapter):
    name = "openai"

    def __init__(self, settings, audio_extractor=None, name=None, client_factory=None):
        super().__init__(settings, audio_extractor, name)
        self._client_factory = client_factory or self._default_client

    def _default_client(self, api_key: str, timeout: float):
        return openai.OpenAI(
            api_key=api_key,
            base_url=self.settings.base_url,
            timeout=timeout,
            max_retries=2,
        )

    def upload_size(self, media: MediaSource) -> int:
        if media.size_bytes <= self.max_upload_bytes or self.audio_extractor is None or media.duration <= 0:
            return media.size_bytes
        return int(media.duration * COMPRESSED_BITRATE_KBPS * 1000 / 8)

    def _payload(self, media: MediaSource, cancel) -> Tuple[str, bytes]:
        if media.size_bytes <= self.max_upload_bytes:
            return media.path.name, media.path.read_bytes()

        if self.audio_extractor is None:
            raise InputTooLargeError(f"{media.name} exceeds the {self.name} upload limit", provider=self.name)

        logger.info(f"{media.name} is {media.size_mb:.1f} MB, extracting compressed audio for {self.name}")
        audio = self.audio_extractor.extract_audio(media, bitrate_kbps=COMPRESSED_BITRATE_KBPS, cancel=cancel)
        if len(audio) > self.max_upload_bytes:
            raise InputTooLargeError(
                f"Compressed audio ({len(audio) / 1024 / 1024:.1f} MB) still exceeds the {self.name} limit",
                provider=self.name,
            )
        return f"{media.path.stem}.mp3", audio

    def _transcribe(self, media: MediaSource, api_key, language, on_progress=None, cancel=None, **_):
        filename, data = self._payload(media, cancel)
        client = self._client_factory(api_key, scaled_timeout(len(data)))

        request = {
            "model": self.settings.model,
            "file": (filename, data),
            "response_format": "verbose_json",
            "timestamp_granularities": ["word", "segment"],
        }
        if language != "auto":
            request["language"] = language
        request.update(self.settings.options)

        self._report(on_progress, f"Transcribing with {self.name}...", 30)
        try:
            response = run_cancellable(
                lambda: client.audio.transcriptions.create(**request),
                cancel,
                on_abort=getattr(client, "close", None),
            )
        except openai.OpenAIError as e:
            raise translate_openai_error(self.name, e) from e

        return parse_verbose_json(response)
