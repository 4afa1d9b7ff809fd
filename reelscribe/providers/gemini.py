"""
Gemini backends via the google-genai SDK.

``GeminiAdapter`` transcribes compressed audio by streaming SRT text from
the model. Every chunk is forwarded to the live-preview sink, and completed
cues are forwarded as partial segments so the router can persist progress
while the response is still arriving.

``GeminiVisionBackend`` answers frame + prompt requests for the
VisualSynthesizer.
"""

from typing import Callable, List, Optional, Sequence

from google import genai
from google.genai import errors as genai_errors
from google.genai import types as genai_types

from reelscribe.config.settings import ProviderSettings
from reelscribe.modules.errors import (
    CancelledError,
    ConfigurationError,
    FatalProviderError,
    InputTooLargeError,
    ProviderError,
    TransientProviderError,
)
from reelscribe.modules.segment_normalizer import filter_degenerate_text
from reelscribe.modules.srt_io import from_srt
from reelscribe.modules.types import MediaSource, SubtitleSegment
from reelscribe.providers.base import ProviderAdapter, error_for_status, scaled_timeout
from reelscribe.utils.cancellation import run_cancellable
from reelscribe.utils.logger import logger

AUDIO_BITRATE_KBPS = 32

LANGUAGE_NAMES = {
    "en": "English", "zh": "Chinese", "es": "Spanish", "fr": "French",
    "de": "German", "ja": "Japanese", "ko": "Korean", "ru": "Russian",
}


def translate_genai_error(provider: str, error: Exception) -> ProviderError:
    code = getattr(error, "code", None)
    message = getattr(error, "message", None) or str(error)
    if isinstance(code, int):
        return error_for_status(provider, code, message)
    return TransientProviderError(f"{provider} request failed: {message}", provider=provider)


def build_audio_prompt(language: str, duration: float, instructions: Optional[str] = None) -> str:
    lines = [
        "Transcribe the speech in this audio into subtitles.",
        "Return only valid SRT: numbered cues, HH:MM:SS,mmm --> HH:MM:SS,mmm timecodes, text, blank line between cues.",
        "Timecodes must be increasing and must not overlap.",
        "Keep each cue under about 5 seconds and two short lines.",
        "Do not describe music or sounds, and do not add commentary or markdown.",
    ]
    if language != "auto":
        lines.append(f"The spoken language is {LANGUAGE_NAMES.get(language, language)}; transcribe in that language.")
    if duration > 0:
        lines.append(f"The audio is {duration:.0f} seconds long; no timecode may exceed it.")
    if instructions:
        lines.append(f"Additional instructions from the user: {instructions.strip()}")
    return "\n".join(lines)


def filter_cues(cues: Sequence[SubtitleSegment]) -> List[SubtitleSegment]:
    """Drop degenerate tokens from each cue; cues left empty are dropped."""
    segments = []
    for seg in cues:
        cleaned = filter_degenerate_text(seg.text)
        if cleaned:
            segments.append(SubtitleSegment(seg.start, seg.end, cleaned))
    return segments


def _genai_client(api_key: str, timeout_seconds: float):
    return genai.Client(
        api_key=api_key,
        http_options=genai_types.HttpOptions(timeout=int(timeout_seconds * 1000)),
    )


class GeminiAdapter(ProviderAdapter):
    name = "gemini"

    def __init__(self, settings, audio_extractor=None, name=None, client_factory=None):
        super().__init__(settings, audio_extractor, name)
        self._client_factory = client_factory or _genai_client

    def upload_size(self, media: MediaSource) -> int:
        if media.duration > 0:
            return int(media.duration * AUDIO_BITRATE_KBPS * 1000 / 8)
        return media.size_bytes

    def _transcribe(
        self,
        media: MediaSource,
        api_key,
        language,
        on_progress=None,
        cancel=None,
        on_partial=None,
        on_stream_text=None,
        instructions=None,
    ):
        if self.audio_extractor is None:
            raise FatalProviderError(
                "gemini needs an audio extractor", reason=FatalProviderError.UNSUPPORTED, provider=self.name
            )

        self._report(on_progress, "Extracting audio...", 15)
        audio = self.audio_extractor.extract_audio(media, bitrate_kbps=AUDIO_BITRATE_KBPS, cancel=cancel)
        if len(audio) > self.max_upload_bytes:
            raise InputTooLargeError(
                f"Extracted audio ({len(audio) / 1024 / 1024:.1f} MB) exceeds the gemini inline limit",
                provider=self.name,
            )

        client = self._client_factory(api_key, scaled_timeout(len(audio)))
        contents = [
            genai_types.Part.from_bytes(data=audio, mime_type="audio/mp3"),
            build_audio_prompt(language, media.duration, instructions),
        ]
        config = genai_types.GenerateContentConfig(temperature=0.2)

        self._report(on_progress, "Generating subtitles...", 30)

        def _stream() -> str:
            text = ""
            emitted = 0
            stream = client.models.generate_content_stream(
                model=self.settings.model, contents=contents, config=config
            )
            for chunk in stream:
                if cancel is not None and cancel.is_cancelled:
                    raise CancelledError()
                piece = chunk.text or ""
                if not piece:
                    continue
                text += piece
                if on_stream_text is not None:
                    try:
                        on_stream_text(text)
                    except Exception as e:
                        logger.warning(f"Live preview callback failed: {e}")
                # The last parsed cue may still be streaming in
                finished = filter_cues(from_srt(text)[:-1])
                if on_partial is not None and len(finished) > emitted:
                    emitted = len(finished)
                    on_partial(finished)
                    if media.duration > 0:
                        done = min(1.0, finished[-1].end / media.duration)
                        self._report(on_progress, "Generating subtitles...", 30 + 65 * done)
            return text

        try:
            text = run_cancellable(_stream, cancel)
        except genai_errors.APIError as e:
            raise translate_genai_error(self.name, e) from e

        segments = filter_cues(from_srt(text))
        if not segments:
            logger.warning(f"gemini returned no parsable SRT ({len(text)} chars)")
        return segments


class GeminiVisionBackend:
    """Frames + prompt in, model text out."""

    name = "gemini-vision"

    def __init__(
        self,
        settings: ProviderSettings,
        client_factory: Optional[Callable[[str, float], object]] = None,
    ):
        self.settings = settings
        self._client_factory = client_factory or _genai_client

    def is_configured(self) -> bool:
        return self.settings.is_configured

    def generate(self, frames: Sequence[bytes], prompt: str, cancel=None) -> str:
        api_key = self.settings.resolve_api_key()
        if not api_key:
            raise ConfigurationError(
                "Vision model API key not found",
                env_var=self.settings.api_key_env,
                provider=self.name,
            )

        payload_bytes = sum(len(f) for f in frames)
        client = self._client_factory(api_key, scaled_timeout(payload_bytes))
        contents: List[object] = [
            genai_types.Part.from_bytes(data=frame, mime_type="image/jpeg") for frame in frames
        ]
        contents.append(prompt)

        try:
            response = run_cancellable(
                lambda: client.models.generate_content(
                    model=self.settings.model,
                    contents=contents,
                    config=genai_types.GenerateContentConfig(temperature=0.2),
                ),
                cancel,
            )
        except genai_errors.APIError as e:
            raise translate_genai_error(self.name, e) from e

        return response.text or ""
