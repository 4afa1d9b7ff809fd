"""
Deepgram pre-recorded transcription over plain HTTP.

Uploads the media file as-is (Deepgram decodes video containers itself) and
groups the returned word timings into pseudo-sentences. Media above the
configured ceiling is handled by the router through the segment splitter.
"""

import mimetypes
from typing import Any, Dict, List, Optional

import requests
from requests.adapters import HTTPAdapter
from urllib3.util.retry import Retry

from reelscribe.config.constants import ProviderEndpoints, TransportConstants
from reelscribe.modules.errors import TransientProviderError
from reelscribe.modules.segment_normalizer import filter_degenerate_text, words_to_segments
from reelscribe.modules.types import MediaSource, SubtitleSegment, WordTiming
from reelscribe.providers.base import ProviderAdapter, error_for_status, scaled_timeout
from reelscribe.utils.cancellation import run_cancellable
from reelscribe.utils.logger import logger

_ENDPOINTS = ProviderEndpoints()
_TRANSPORT = TransportConstants()

# Used when Deepgram returns a transcript without word timings
FALLBACK_SEGMENT_SECONDS = 10.0


def parse_deepgram_response(payload: Dict[str, Any], duration: float = 0.0) -> List[SubtitleSegment]:
    """Raw segments from a /v1/listen response body."""
    try:
        alternative = payload["results"]["channels"][0]["alternatives"][0]
    except (KeyError, IndexError, TypeError):
        logger.warning("Deepgram response has no transcription alternatives")
        return []

    words = [
        WordTiming(
            word=w.get("punctuated_word") or w.get("word", ""),
            start=float(w.get("start", 0.0)),
            end=float(w.get("end", 0.0)),
            confidence=w.get("confidence"),
        )
        for w in alternative.get("words") or []
    ]
    if words:
        return words_to_segments(words)

    transcript = filter_degenerate_text(alternative.get("transcript") or "")
    if transcript:
        end = duration if duration > 0 else FALLBACK_SEGMENT_SECONDS
        return [SubtitleSegment(0.0, end, transcript)]
    return []


class DeepgramAdapter(ProviderAdapter):
    name = "deepgram"

    def __init__(self, settings, audio_extractor=None, name=None, session: Optional[requests.Session] = None):
        super().__init__(settings, audio_extractor, name)
        self._session = session

    @staticmethod
    def _new_session() -> requests.Session:
        # Connect-level retries only: the body is a file stream and cannot be replayed
        retry = Retry(total=2, connect=2, read=0, status=0, backoff_factor=0.5, allowed_methods=None)
        session = requests.Session()
        session.mount("https://", HTTPAdapter(max_retries=retry))
        return session

    def _params(self, language: str) -> Dict[str, str]:
        params = {"model": self.settings.model}
        for key, value in self.settings.options.items():
            params[key] = str(value).lower() if isinstance(value, bool) else str(value)
        if language != "auto":
            params["language"] = language
        else:
            params.setdefault("detect_language", "true")
        return params

    def _transcribe(self, media: MediaSource, api_key, language, on_progress=None, cancel=None, **_):
        url = self.settings.base_url or _ENDPOINTS.DEEPGRAM_URL
        content_type = mimetypes.guess_type(str(media.path))[0] or "application/octet-stream"
        headers = {"Authorization": f"Token {api_key}", "Content-Type": content_type}
        timeout = (_TRANSPORT.CONNECT_TIMEOUT, scaled_timeout(media.size_bytes))
        logger.debug(f"Deepgram upload {media.size_mb:.1f} MB, read timeout {timeout[1]:.0f}s")

        session = self._session or self._new_session()

        def _post():
            with open(media.path, "rb") as fh:
                return session.post(url, params=self._params(language), headers=headers, data=fh, timeout=timeout)

        try:
            response = run_cancellable(_post, cancel, on_abort=session.close)
        except requests.Timeout as e:
            raise TransientProviderError(
                f"deepgram timed out after {timeout[1]:.0f}s", provider=self.name
            ) from e
        except requests.RequestException as e:
            raise TransientProviderError(f"deepgram network error: {e}", provider=self.name) from e
        finally:
            if self._session is None:
                session.close()

        if response.status_code != 200:
            raise error_for_status(self.name, response.status_code, response.text)

        self._report(on_progress, "Processing Deepgram response...", 90)
        try:
            payload = response.json()
        except ValueError as e:
            raise TransientProviderError("deepgram returned invalid JSON", provider=self.name) from e
        return parse_deepgram_response(payload, media.duration)
