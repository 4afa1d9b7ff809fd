"""Tests for provider adapters with mocked transports."""

from types import SimpleNamespace
from unittest.mock import MagicMock

import httpx
import openai
import pytest
import requests

from reelscribe.config.settings import ProviderSettings, ProvidersSettings
from reelscribe.modules.errors import (
    ConfigurationError,
    EmptyResultError,
    FatalProviderError,
    InputTooLargeError,
    TransientProviderError,
)
from reelscribe.modules.types import MediaSource, SubtitleSegment
from reelscribe.providers import ProviderFactory, error_for_status, scaled_timeout
from reelscribe.providers.deepgram import DeepgramAdapter, parse_deepgram_response
from reelscribe.providers.gemini import GeminiAdapter, GeminiVisionBackend, build_audio_prompt
from reelscribe.providers.whisper_api import WhisperApiAdapter, parse_verbose_json, translate_openai_error

DEEPGRAM_PAYLOAD = {
    "results": {"channels": [{"alternatives": [{
        "transcript": "Hello world. How are you?",
        "words": [
            {"word": "hello", "punctuated_word": "Hello", "start": 0.1, "end": 0.4, "confidence": 0.99},
            {"word": "world", "punctuated_word": "world.", "start": 0.4, "end": 0.9, "confidence": 0.98},
            {"word": "how", "punctuated_word": "How", "start": 1.5, "end": 1.7, "confidence": 0.97},
            {"word": "are", "punctuated_word": "are", "start": 1.7, "end": 1.9, "confidence": 0.97},
            {"word": "you", "punctuated_word": "you?", "start": 1.9, "end": 2.3, "confidence": 0.96},
        ],
    }]}]}
}


def provider_settings(**overrides):
    values = dict(api_key_env="REELSCRIBE_TEST_KEY", api_key="test-key", model="test-model")
    values.update(overrides)
    return ProviderSettings(**values)


@pytest.fixture
def media_file(tmp_path):
    def _make(duration=60.0, size_bytes=None, name="clip.mp4"):
        path = tmp_path / name
        path.write_bytes(b"\x00" * 2048)
        return MediaSource(path=path, size_bytes=size_bytes or 2048, duration=duration, has_audio_stream=True)
    return _make


def ok_response(payload, status=200):
    response = MagicMock()
    response.status_code = status
    response.json.return_value = payload
    response.text = "" if status == 200 else "error detail"
    return response


class TestTransportHelpers:
    @pytest.mark.parametrize("size_mb, expected", [(5, 65.0), (50, 170.0), (200, 500.0), (1000, 900.0)])
    def test_scaled_timeout(self, size_mb, expected):
        assert scaled_timeout(size_mb * 1024 * 1024) == pytest.approx(expected)

    @pytest.mark.parametrize("status, error_type, overloaded", [
        (429, TransientProviderError, True),
        (503, TransientProviderError, True),
        (500, TransientProviderError, False),
        (413, InputTooLargeError, None),
        (400, FatalProviderError, None),
    ])
    def test_error_for_status(self, status, error_type, overloaded):
        error = error_for_status("deepgram", status, "detail")
        assert type(error) is error_type
        assert error.status_code == status
        if overloaded is not None:
            assert error.overloaded is overloaded

    def test_auth_errors_are_configuration_failures(self):
        error = error_for_status("groq", 401)
        assert isinstance(error, FatalProviderError)
        assert error.reason == FatalProviderError.CONFIGURATION

    def test_overloaded_detail(self):
        assert error_for_status("gemini", 500, "The model is overloaded").overloaded


class TestDeepgram:
    def test_parse_groups_words(self):
        segments = parse_deepgram_response(DEEPGRAM_PAYLOAD)
        assert [s.text for s in segments] == ["Hello world.", "How are you?"]
        assert segments[0].start == pytest.approx(0.1)

    def test_parse_transcript_without_words(self):
        payload = {"results": {"channels": [{"alternatives": [{"transcript": " just text "}]}]}}
        assert parse_deepgram_response(payload, duration=12.0) == [SubtitleSegment(0.0, 12.0, "just text")]

    def test_parse_transcript_filters_degenerate_tokens(self):
        payload = {"results": {"channels": [{"alternatives": [{"transcript": "the the the cat x sat"}]}]}}
        assert parse_deepgram_response(payload, duration=4.0) == [SubtitleSegment(0.0, 4.0, "the cat sat")]

    def test_parse_transcript_of_only_noise(self):
        payload = {"results": {"channels": [{"alternatives": [{"transcript": "x x q"}]}]}}
        assert parse_deepgram_response(payload, duration=4.0) == []

    def test_parse_malformed(self):
        assert parse_deepgram_response({"results": {}}) == []

    def test_transcribe(self, media_file):
        session = MagicMock()
        session.post.return_value = ok_response(DEEPGRAM_PAYLOAD)
        adapter = DeepgramAdapter(provider_settings(model="nova-2", options={"smart_format": True}), session=session)

        segments = adapter.transcribe(media_file(), language_hint="english")

        assert [s.text for s in segments] == ["Hello world.", "How are you?"]
        _, kwargs = session.post.call_args
        assert kwargs["params"] == {"model": "nova-2", "smart_format": "true", "language": "en"}
        assert kwargs["headers"]["Authorization"] == "Token test-key"
        assert kwargs["headers"]["Content-Type"] == "video/mp4"
        session.close.assert_not_called()

    def test_auto_language_requests_detection(self, media_file):
        session = MagicMock()
        session.post.return_value = ok_response(DEEPGRAM_PAYLOAD)
        DeepgramAdapter(provider_settings(), session=session).transcribe(media_file())
        assert session.post.call_args[1]["params"]["detect_language"] == "true"

    @pytest.mark.parametrize("status, error_type", [
        (503, TransientProviderError),
        (401, FatalProviderError),
        (413, InputTooLargeError),
    ])
    def test_http_errors(self, media_file, status, error_type):
        session = MagicMock()
        session.post.return_value = ok_response({}, status=status)
        with pytest.raises(error_type):
            DeepgramAdapter(provider_settings(), session=session).transcribe(media_file())

    def test_network_error_is_transient(self, media_file):
        session = MagicMock()
        session.post.side_effect = requests.ConnectionError("reset")
        with pytest.raises(TransientProviderError):
            DeepgramAdapter(provider_settings(), session=session).transcribe(media_file())

    def test_empty_transcript(self, media_file):
        session = MagicMock()
        session.post.return_value = ok_response({"results": {"channels": [{"alternatives": [{"transcript": ""}]}]}})
        with pytest.raises(EmptyResultError):
            DeepgramAdapter(provider_settings(), session=session).transcribe(media_file())

    def test_missing_key(self, media_file, monkeypatch):
        monkeypatch.delenv("REELSCRIBE_TEST_KEY", raising=False)
        adapter = DeepgramAdapter(provider_settings(api_key=None), session=MagicMock())
        assert not adapter.is_configured()
        with pytest.raises(ConfigurationError) as exc_info:
            adapter.transcribe(media_file())
        assert exc_info.value.env_var == "REELSCRIBE_TEST_KEY"

    def test_key_from_environment(self, monkeypatch):
        monkeypatch.setenv("REELSCRIBE_TEST_KEY", "from-env")
        adapter = DeepgramAdapter(provider_settings(api_key=None))
        assert adapter.is_configured()
        assert adapter.require_api_key() == "from-env"

    def test_ceiling(self, media_file):
        adapter = DeepgramAdapter(provider_settings(max_upload_mb=1.0), session=MagicMock())
        big = media_file(size_bytes=5 * 1024 * 1024)
        assert not adapter.accepts(big)
        with pytest.raises(InputTooLargeError):
            adapter.transcribe(big)


class FakeOpenAIClient:
    def __init__(self, response=None, error=None):
        self.requests = []
        create = MagicMock(side_effect=self._create)
        self.audio = SimpleNamespace(transcriptions=SimpleNamespace(create=create))
        self._response = response
        self._error = error

    def _create(self, **request):
        self.requests.append(request)
        if self._error is not None:
            raise self._error
        return self._response


class TestWhisperApi:
    VERBOSE = {
        "text": "Hi there. Bye.",
        "segments": [
            {"start": 0.0, "end": 1.2, "text": " Hi there."},
            {"start": 1.4, "end": 2.0, "text": " Bye."},
        ],
    }

    def make_adapter(self, client, audio_extractor=None, **settings):
        factory_calls = []

        def factory(api_key, timeout):
            factory_calls.append((api_key, timeout))
            return client

        adapter = WhisperApiAdapter(
            provider_settings(**settings), audio_extractor=audio_extractor, name="groq", client_factory=factory,
        )
        return adapter, factory_calls

    def test_parse_prefers_words(self):
        response = {"words": [
            {"word": "Hi", "start": 0.0, "end": 0.3},
            {"word": "there.", "start": 0.3, "end": 0.8},
        ]}
        assert parse_verbose_json(response) == [SubtitleSegment(0.0, 0.8, "Hi there.")]

    def test_parse_segments(self):
        assert [s.text for s in parse_verbose_json(self.VERBOSE)] == ["Hi there.", "Bye."]

    def test_transcribe_uploads_file(self, media_file):
        client = FakeOpenAIClient(response=self.VERBOSE)
        adapter, factory_calls = self.make_adapter(client)

        segments = adapter.transcribe(media_file(), language_hint="fr")

        assert len(segments) == 2
        request = client.requests[0]
        assert request["file"][0] == "clip.mp4"
        assert request["language"] == "fr"
        assert request["response_format"] == "verbose_json"
        assert factory_calls[0][0] == "test-key"

    def test_large_media_is_compressed(self, media_file, media_tools):
        client = FakeOpenAIClient(response=self.VERBOSE)
        adapter, _ = self.make_adapter(client, audio_extractor=media_tools, max_upload_mb=25.0)
        media = media_file(size_bytes=80 * 1024 * 1024)

        assert adapter.accepts(media)
        adapter.transcribe(media)
        assert client.requests[0]["file"][0] == "clip.mp3"
        assert "language" not in client.requests[0]

    def test_large_media_without_extractor_is_rejected(self, media_file):
        adapter, _ = self.make_adapter(FakeOpenAIClient(response=self.VERBOSE))
        with pytest.raises(InputTooLargeError):
            adapter.transcribe(media_file(size_bytes=80 * 1024 * 1024))

    def test_rate_limit_is_overload(self, media_file):
        request = httpx.Request("POST", "https://api.groq.com/openai/v1/audio/transcriptions")
        error = openai.RateLimitError("slow down", response=httpx.Response(429, request=request), body=None)
        adapter, _ = self.make_adapter(FakeOpenAIClient(error=error))
        with pytest.raises(TransientProviderError) as exc_info:
            adapter.transcribe(media_file())
        assert exc_info.value.overloaded
        assert exc_info.value.__cause__ is error

    def test_connection_error_is_transient(self):
        request = httpx.Request("POST", "https://api.openai.com/v1/audio/transcriptions")
        error = translate_openai_error("openai", openai.APIConnectionError(request=request))
        assert isinstance(error, TransientProviderError)
        assert not error.overloaded


def stream_chunks(*texts):
    return iter([SimpleNamespace(text=t) for t in texts])


class TestGemini:
    SRT_CHUNKS = (
        "1\n00:00:00,000 --> 00:00:01,000\nHello\n\n2\n00:00:01,",
        "500 --> 00:00:03,000\nWorld\n",
    )

    def make_adapter(self, client, audio_extractor, **settings):
        settings.setdefault("max_upload_mb", 20.0)
        settings.setdefault("max_duration_sec", 600.0)
        return GeminiAdapter(
            provider_settings(**settings), audio_extractor=audio_extractor, client_factory=lambda key, timeout: client,
        )

    def test_streams_partials_and_text(self, media_file, media_tools):
        client = MagicMock()
        client.models.generate_content_stream.return_value = stream_chunks(*self.SRT_CHUNKS)
        adapter = self.make_adapter(client, media_tools)
        partials, previews = [], []

        segments = adapter.transcribe(media_file(), on_partial=partials.append, on_stream_text=previews.append)

        assert segments == [SubtitleSegment(0.0, 1.0, "Hello"), SubtitleSegment(1.5, 3.0, "World")]
        assert partials[-1] == [SubtitleSegment(0.0, 1.0, "Hello")]
        assert previews[-1] == "".join(self.SRT_CHUNKS)

    def test_degenerate_tokens_filtered_per_cue(self, media_file, media_tools):
        client = MagicMock()
        client.models.generate_content_stream.return_value = stream_chunks(
            "1\n00:00:00,000 --> 00:00:01,000\nthe the the cat\n\n",
            "2\n00:00:01,000 --> 00:00:02,000\nx\n\n",
            "3\n00:00:02,000 --> 00:00:03,000\nyes no yes no\n",
        )
        adapter = self.make_adapter(client, media_tools)
        partials = []

        segments = adapter.transcribe(media_file(), on_partial=partials.append)

        assert segments == [SubtitleSegment(0.0, 1.0, "the cat"), SubtitleSegment(2.0, 3.0, "yes no")]
        assert partials[0] == [SubtitleSegment(0.0, 1.0, "the cat")]
        assert all(seg.text != "x" for batch in partials for seg in batch)

    def test_failing_preview_sink_does_not_abort(self, media_file, media_tools):
        client = MagicMock()
        client.models.generate_content_stream.return_value = stream_chunks(*self.SRT_CHUNKS)
        adapter = self.make_adapter(client, media_tools)

        def broken_preview(text):
            raise RuntimeError("widget closed")

        segments = adapter.transcribe(media_file(), on_stream_text=broken_preview)

        assert [s.text for s in segments] == ["Hello", "World"]
        assert client.models.generate_content_stream.call_count == 1

    def test_instructions_reach_prompt(self, media_file, media_tools):
        client = MagicMock()
        client.models.generate_content_stream.return_value = stream_chunks(*self.SRT_CHUNKS)
        adapter = self.make_adapter(client, media_tools)

        adapter.transcribe(media_file(), instructions="Spell the host's name as Aoi")

        prompt = client.models.generate_content_stream.call_args[1]["contents"][1]
        assert prompt.endswith("Additional instructions from the user: Spell the host's name as Aoi")

    def test_duration_ceiling(self, media_file, media_tools):
        adapter = self.make_adapter(MagicMock(), media_tools)
        assert adapter.accepts(media_file(duration=300.0))
        assert not adapter.accepts(media_file(duration=700.0))

    def test_requires_audio_extractor(self, media_file):
        with pytest.raises(FatalProviderError):
            self.make_adapter(MagicMock(), None).transcribe(media_file())

    def test_audio_prompt(self):
        prompt = build_audio_prompt("ja", 90.0)
        assert "Japanese" in prompt
        assert "90 seconds" in prompt
        assert "Japanese" not in build_audio_prompt("auto", 0.0)
        assert "Additional instructions" not in build_audio_prompt("auto", 0.0, None)

    def test_vision_backend(self):
        client = MagicMock()
        client.models.generate_content.return_value = SimpleNamespace(text="1\n00:00:00,000 --> 00:00:01,000\nHi\n")
        backend = GeminiVisionBackend(provider_settings(), client_factory=lambda key, timeout: client)

        assert backend.is_configured()
        text = backend.generate([b"\xff\xd8one", b"\xff\xd8two"], "describe")

        assert text.startswith("1\n")
        contents = client.models.generate_content.call_args[1]["contents"]
        assert len(contents) == 3
        assert contents[-1] == "describe"

    def test_vision_backend_without_key(self, monkeypatch):
        monkeypatch.delenv("REELSCRIBE_TEST_KEY", raising=False)
        backend = GeminiVisionBackend(provider_settings(api_key=None))
        assert not backend.is_configured()
        with pytest.raises(ConfigurationError):
            backend.generate([b"frame"], "prompt")


class TestProviderFactory:
    def test_list_providers(self):
        assert ProviderFactory.list_providers() == ["deepgram", "groq", "openai", "gemini"]

    def test_create_named_whisper_variant(self):
        adapter = ProviderFactory.create("groq", ProvidersSettings())
        assert isinstance(adapter, WhisperApiAdapter)
        assert adapter.name == "groq"
        assert adapter.settings.model == "whisper-large-v3-turbo"

    def test_unknown_provider(self):
        with pytest.raises(ValueError):
            ProviderFactory.create("nope", ProvidersSettings())

    def test_create_many_skips_unknown(self):
        adapters = ProviderFactory.create_many(ProvidersSettings(), names=["deepgram", "nope", "openai"])
        assert [a.name for a in adapters] == ["deepgram", "openai"]

    def test_default_order(self):
        assert [a.name for a in ProviderFactory.create_many(ProvidersSettings())] == ProvidersSettings().order

    def test_vision_backend(self):
        assert isinstance(ProviderFactory.create_vision_backend(ProvidersSettings()), GeminiVisionBackend)

    def test_availability(self):
        assert ProviderFactory.is_provider_available("deepgram") == (True, "")
        assert ProviderFactory.is_provider_available("nope")[0] is False
