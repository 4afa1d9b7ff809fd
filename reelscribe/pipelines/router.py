"""
Transcription router: one fallback chain per request.

    CacheCheck -> Profiling -> PipelineDecision -> ProviderAttempt[i]
        success        -> Validate -> Cache -> Done
        exhausted      -> VisualFallback -> Validate -> Cache -> Done
        all exhausted  -> Failed (AllMethodsExhaustedError)

Provider attempts within a request are strictly sequential; the only
parallelism is the bounded window pool inside a single split attempt.
Requests for the same content hash are serialized through the cache's
per-key lock.
"""

import time
from typing import Callable, List, Optional, Sequence

from reelscribe.config.settings import AppConfig
from reelscribe.modules.errors import (
    AllMethodsExhaustedError,
    AttemptFailure,
    CancelledError,
    ConfigurationError,
    EmptyResultError,
    FatalProviderError,
    InputTooLargeError,
    ProfilingError,
    TransientProviderError,
)
from reelscribe.modules.incremental_saver import IncrementalSaver
from reelscribe.modules.media_profiler import MediaProfiler, default_profile, describe_profile
from reelscribe.modules.result_cache import JsonFileCacheStore, ResultCache, compute_content_hash
from reelscribe.modules.retry import RetryExecutor
from reelscribe.modules.segment_normalizer import normalize_segments
from reelscribe.modules.segment_splitter import ParallelSegmentProcessor, SegmentSplitter
from reelscribe.modules.types import (
    CacheMeta,
    MediaProfile,
    Pipeline,
    ProviderResult,
    RouterOutcome,
    SubtitleSegment,
    TranscriptionRequest,
)
from reelscribe.modules.visual_synthesizer import VisualSynthesizer
from reelscribe.utils.logger import logger

PROFILE_ANALYSIS = "profile"

# Seconds of processing per second of media, and the extra share for splitting
PROCESSING_RATE = 0.5
SPLIT_OVERHEAD = 0.1


def estimate_processing_time(duration: float, split: bool = False) -> float:
    """Rough wall-clock estimate in seconds, for progress messages."""
    if duration <= 0:
        return 0.0
    estimate = duration * PROCESSING_RATE
    if split:
        estimate *= 1.0 + SPLIT_OVERHEAD
    return estimate


def _band(on_progress, lo: float, hi: float):
    """Map a 0..100 progress sink into [lo, hi] of the request's progress."""
    if on_progress is None:
        return None

    def _scaled(stage: str, progress: float) -> None:
        on_progress(stage, lo + (hi - lo) * max(0.0, min(100.0, progress)) / 100.0)

    return _scaled


class TranscriptionRouter:
    """
    Orchestrates profiling, provider attempts, visual fallback and caching.

    Args:
        providers: Audio adapters in fallback order
        profiler: MediaProfiler, or None to always use the default profile
        cache: ResultCache, or None to disable caching
        visual: VisualSynthesizer, or None to disable the visual pipeline
        processor: ParallelSegmentProcessor used when an adapter cannot take
            the media in one call
        config: Retry, saver and fallback policy
        executor: RetryExecutor; tests inject one with a fake sleep
    """

    def __init__(
        self,
        providers: Sequence,
        profiler: Optional[MediaProfiler] = None,
        cache: Optional[ResultCache] = None,
        visual: Optional[VisualSynthesizer] = None,
        processor: Optional[ParallelSegmentProcessor] = None,
        config: Optional[AppConfig] = None,
        executor: Optional[RetryExecutor] = None,
    ):
        self.providers = list(providers)
        self.profiler = profiler
        self.cache = cache
        self.visual = visual
        self.processor = processor
        self.config = config or AppConfig()
        self.executor = executor or RetryExecutor()

    # ------------------------------------------------------------------
    # Entry point
    # ------------------------------------------------------------------

    def transcribe(self, request: TranscriptionRequest) -> RouterOutcome:
        """
        Run the fallback chain for ``request``.

        Raises:
            CancelledError: ``request.cancel`` fired; cached partial progress is kept
            AllMethodsExhaustedError: Every pipeline failed
        """
        started = time.monotonic()
        try:
            key = self._cache_key(request)
            if key is None:
                return self._run(request, None, started)
            with self.cache.key_lock(key, cancel=request.cancel):
                return self._run(request, key, started)
        except CancelledError:
            self._report(request.on_progress, "Cancelled", 0)
            logger.info(f"{request.source.name}: cancelled")
            raise

    def _cache_key(self, request: TranscriptionRequest) -> Optional[str]:
        if self.cache is None or not request.use_cache:
            return None
        if request.content_hash:
            return request.content_hash
        try:
            request.content_hash = compute_content_hash(request.source.path)
        except OSError as e:
            logger.warning(f"Could not hash {request.source.name}, caching disabled for this request: {e}")
            return None
        return request.content_hash

    def _run(self, request: TranscriptionRequest, key: Optional[str], started: float) -> RouterOutcome:
        source = request.source
        progress = request.on_progress

        # CacheCheck
        if key is not None:
            self._report(progress, "Checking cache...", 1)
            lookup = self.cache.get(key, include_partial=True)
            if lookup.found and lookup.entry.is_complete:
                segments = lookup.entry.segments()
                if segments:
                    logger.info(f"{source.name}: complete cache hit ({len(segments)} segments)")
                    self._report(progress, "Loaded subtitles from cache", 100)
                    provider = lookup.entry.provider
                    return RouterOutcome(
                        segments=segments,
                        provider=provider,
                        pipeline=Pipeline.VISUAL if provider == VisualSynthesizer.provider_tag else Pipeline.AUDIO,
                        elapsed_seconds=time.monotonic() - started,
                        from_cache=True,
                    )
            if lookup.found:
                partial = lookup.entry.segments()
                logger.info(f"{source.name}: resuming display from {len(partial)} cached partial segments")
                self._emit_partial(request, partial)

        # Profiling
        self._raise_if_cancelled(request)
        profile = self._profile(request, key)
        self._report(progress, describe_profile(profile), 10)

        # PipelineDecision
        plan = self.plan_pipeline(profile)
        logger.info(f"{source.name}: pipeline order {' -> '.join(p.value for p in plan)}")

        attempts: List[AttemptFailure] = []
        for pipeline in plan:
            self._raise_if_cancelled(request)
            if pipeline == Pipeline.VISUAL:
                result = self._attempt_visual(request, attempts, switching=bool(attempts))
            else:
                result = self._attempt_audio_chain(request, key, attempts)
            if result is not None:
                return self._finish(request, key, result, pipeline, profile, attempts, started)

        error = self._exhausted(request, attempts)
        raise error from error.primary_error

    # ------------------------------------------------------------------
    # Profiling and planning
    # ------------------------------------------------------------------

    def _profile(self, request: TranscriptionRequest, key: Optional[str]) -> MediaProfile:
        source = request.source
        if self.profiler is None or not self.config.profiler.enabled:
            return default_profile(source)

        use_analysis_cache = key is not None and self.config.profiler.cache_profiles
        if use_analysis_cache:
            cached = self.cache.get_analysis(key, PROFILE_ANALYSIS)
            if cached:
                try:
                    return MediaProfile.from_dict(cached)
                except (KeyError, TypeError, ValueError) as e:
                    logger.debug(f"Ignoring malformed cached profile: {e}")

        self._report(request.on_progress, "Analyzing audio...", 5)
        try:
            profile = self.profiler.profile(source, cancel=request.cancel)
        except ProfilingError as e:
            logger.warning(f"{source.name}: profiling failed, assuming audio is present ({e.message})")
            return default_profile(source)

        if use_analysis_cache:
            self.cache.put_analysis(key, PROFILE_ANALYSIS, profile.to_dict())
        return profile

    def plan_pipeline(self, profile: MediaProfile) -> List[Pipeline]:
        """
        Ordered pipelines to try. The visual pipeline appears at most once.

        Long media is always tried with audio first unless there is no audio
        evidence at all, and only falls back to visual when configured to.
        """
        settings = self.config.router
        long_media = profile.duration > settings.long_media_threshold_sec
        recommended = Pipeline(profile.recommended_pipeline)

        if long_media:
            if not profile.has_audio_track:
                plan = [Pipeline.VISUAL, Pipeline.AUDIO]
            else:
                plan = [Pipeline.AUDIO]
                if settings.visual_fallback and settings.long_media_visual_fallback:
                    plan.append(Pipeline.VISUAL)
        elif recommended == Pipeline.VISUAL:
            plan = [Pipeline.VISUAL, Pipeline.AUDIO]
        else:
            plan = [Pipeline.AUDIO]
            if settings.visual_fallback:
                plan.append(Pipeline.VISUAL)

        if self.visual is None or not self.config.visual.enabled:
            plan = [p for p in plan if p != Pipeline.VISUAL]
        if not self.providers:
            plan = [p for p in plan if p != Pipeline.AUDIO]
        return plan

    # ------------------------------------------------------------------
    # Attempts
    # ------------------------------------------------------------------

    def _attempt_audio_chain(self, request, key, attempts: List[AttemptFailure]) -> Optional[ProviderResult]:
        for adapter in self.providers:
            self._raise_if_cancelled(request)
            if not adapter.is_configured():
                settings = getattr(adapter, "settings", None)
                error = ConfigurationError(
                    f"{adapter.name} is not configured",
                    env_var=getattr(settings, "api_key_env", None),
                    provider=adapter.name,
                )
                logger.info(f"Skipping {adapter.name}: not configured")
                attempts.append(AttemptFailure(adapter.name, Pipeline.AUDIO.value, error))
                continue

            try:
                result = self._attempt_provider(request, key, adapter)
            except CancelledError:
                raise
            except Exception as e:
                logger.warning(f"{adapter.name} failed: {e}")
                attempts.append(AttemptFailure(adapter.name, Pipeline.AUDIO.value, e))
                self._report(request.on_progress, f"{adapter.name} failed, trying next method...", 15)
                continue
            return result
        return None

    def _attempt_provider(self, request: TranscriptionRequest, key: Optional[str], adapter) -> ProviderResult:
        source = request.source
        cancel = request.cancel
        split = (
            self.processor is not None
            and self.config.splitter.enabled
            and getattr(adapter, "supports_splitting", True)
            and source.duration > 0
            and not adapter.accepts(source)
        )
        provider = f"{adapter.name}-chunked" if split else adapter.name

        eta = estimate_processing_time(source.duration, split)
        self._report(
            request.on_progress,
            f"Transcribing with {adapter.name}" + (f" (about {eta / 60:.0f} min)" if eta >= 60 else "") + "...",
            15,
        )

        saver = self._make_saver(key, source, provider, request.language_hint)

        def _on_partial(segments: List[SubtitleSegment]) -> None:
            if saver is not None:
                saver.add(list(segments))
            self._emit_partial(request, segments)

        band = _band(request.on_progress, 15, 90)
        if split:
            def operation():
                return self.processor.process(
                    source, adapter, request.language_hint,
                    on_progress=band, on_partial=_on_partial, cancel=cancel,
                    instructions=request.instructions,
                )
        else:
            def operation():
                return adapter.transcribe(
                    source, request.language_hint,
                    on_progress=band, cancel=cancel,
                    on_partial=_on_partial, on_stream_text=request.on_stream_text,
                    instructions=request.instructions,
                )

        max_retries = self.config.retry.max_retries
        policy = self.config.retry.to_policy(
            on_retry=lambda attempt, _err: self._report(
                request.on_progress, f"Retrying {adapter.name} ({attempt}/{max_retries})...", 15
            )
        )

        try:
            segments = self.executor.with_cancel(cancel).run(operation, policy)
        except CancelledError:
            if saver is not None:
                saver.stop()
            raise
        except Exception:
            if saver is not None:
                try:
                    saver.flush()
                except Exception as flush_error:
                    logger.warning(f"Could not persist partial progress for {source.name}: {flush_error}")
                saver.stop()
            raise

        if saver is not None:
            saver.stop()
        return ProviderResult(segments, provider)

    def _attempt_visual(
        self, request: TranscriptionRequest, attempts: List[AttemptFailure], switching: bool
    ) -> Optional[ProviderResult]:
        tag = VisualSynthesizer.provider_tag
        if not self.visual.is_configured():
            logger.info("Skipping visual analysis: vision backend not configured")
            error = ConfigurationError(
                "Vision backend is not configured",
                env_var=getattr(getattr(self.visual.backend, "settings", None), "api_key_env", None),
                provider=tag,
            )
            attempts.append(AttemptFailure(tag, Pipeline.VISUAL.value, error))
            return None

        self._report(
            request.on_progress,
            "Switching to visual analysis..." if switching else "Analyzing video frames...",
            30,
        )
        try:
            segments = self.visual.synthesize(
                request.source,
                request.language_hint,
                on_progress=request.on_progress,
                cancel=request.cancel,
                instructions=request.instructions,
            )
        except CancelledError:
            raise
        except Exception as e:
            logger.warning(f"Visual analysis failed: {e}")
            attempts.append(AttemptFailure(tag, Pipeline.VISUAL.value, e))
            return None

        self._emit_partial(request, segments)
        return ProviderResult(segments, tag)

    # ------------------------------------------------------------------
    # Validate / Cache / Failed
    # ------------------------------------------------------------------

    def _finish(self, request, key, result: ProviderResult, pipeline, profile, attempts, started) -> RouterOutcome:
        source = request.source
        provider = result.provider
        logger.debug(f"{provider} returned {result.segment_count} raw segments")
        self._report(request.on_progress, "Validating subtitles...", 95)
        segments = normalize_segments(result.segments, duration=source.duration or None)

        if key is not None:
            meta = CacheMeta(
                provider=provider,
                source_size=source.size_bytes,
                source_duration=source.duration,
                language=request.language_hint,
            )
            try:
                self.cache.put_complete(key, segments, meta)
            except OSError as e:
                logger.error(f"Failed to cache result for {source.name}: {e}")

        elapsed = time.monotonic() - started
        logger.info(f"{source.name}: {len(segments)} segments via {provider} in {elapsed:.1f}s")
        self._report(request.on_progress, "Done", 100)
        return RouterOutcome(
            segments=segments,
            provider=provider,
            pipeline=pipeline,
            elapsed_seconds=elapsed,
            profile=profile,
            attempts=[a.describe() for a in attempts],
        )

    def _exhausted(self, request: TranscriptionRequest, attempts: List[AttemptFailure]) -> AllMethodsExhaustedError:
        primary = self._primary_failure(attempts)
        if primary is None:
            message = "No transcription method is available"
        else:
            message = f"All transcription methods failed: {primary.describe()}"
        self._report(request.on_progress, "Failed", 100)

        error = AllMethodsExhaustedError(
            message,
            attempts=attempts,
            primary_error=primary.error if primary else None,
            suggestion=self.remediation(attempts),
        )
        return error

    @staticmethod
    def _primary_failure(attempts: List[AttemptFailure]) -> Optional[AttemptFailure]:
        """Why audio failed, preferring real failures over missing configuration."""
        audio = [a for a in attempts if a.pipeline == Pipeline.AUDIO.value]
        for attempt in audio:
            if not isinstance(attempt.error, ConfigurationError):
                return attempt
        if audio:
            return audio[0]
        return attempts[0] if attempts else None

    def remediation(self, attempts: List[AttemptFailure]) -> str:
        errors = [a.error for a in attempts]
        if not errors or all(isinstance(e, ConfigurationError) for e in errors):
            env_vars = sorted({
                getattr(getattr(p, "settings", None), "api_key_env", None) or p.name
                for p in self.providers
            })
            if env_vars:
                return f"No transcription provider is configured. Set one of: {', '.join(env_vars)}"
            return "No transcription provider is configured"
        if any(isinstance(e, InputTooLargeError) for e in errors):
            return "The video is too large for the available providers. Try a shorter clip or enable splitting"
        if any(isinstance(e, TransientProviderError) for e in errors):
            return "Transcription services appear to be temporarily unavailable. Try again in a few minutes"
        if any(isinstance(e, EmptyResultError) for e in errors):
            return "No speech could be recognized. Check that the video has audible dialogue or set the language explicitly"
        for e in errors:
            if isinstance(e, FatalProviderError) and e.reason == FatalProviderError.CONFIGURATION and e.suggestion:
                return e.suggestion
        for e in errors:
            suggestion = getattr(e, "suggestion", None)
            if suggestion:
                return suggestion
        return "Check the log for details"

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _make_saver(self, key, source, provider, language) -> Optional[IncrementalSaver]:
        if key is None:
            return None
        meta = CacheMeta(
            provider=provider,
            source_size=source.size_bytes,
            source_duration=source.duration,
            language=language,
        )

        def _sink(batches: List[List[SubtitleSegment]]) -> None:
            # Each batch is a full snapshot; the newest supersedes the rest
            segments = normalize_segments(batches[-1], duration=source.duration or None)
            self.cache.put_partial(key, segments, meta)

        return IncrementalSaver(_sink, interval_ms=self.config.saver.interval_ms)

    @staticmethod
    def _emit_partial(request: TranscriptionRequest, segments: List[SubtitleSegment]) -> None:
        if request.on_partial_segments is None or not segments:
            return
        try:
            request.on_partial_segments(list(segments))
        except Exception as e:
            logger.debug(f"Partial segments callback failed: {e}")

    @staticmethod
    def _raise_if_cancelled(request: TranscriptionRequest) -> None:
        if request.cancel is not None:
            request.cancel.raise_if_cancelled()

    @staticmethod
    def _report(on_progress: Optional[Callable[[str, float], None]], stage: str, progress: float) -> None:
        if on_progress is None:
            return
        try:
            on_progress(stage, progress)
        except Exception as e:
            logger.debug(f"Progress callback failed: {e}")


def build_router(
    config: Optional[AppConfig] = None,
    media_tools=None,
    cache: Optional[ResultCache] = None,
    provider_names: Optional[List[str]] = None,
) -> TranscriptionRouter:
    """
    Wire a router from configuration.

    ``media_tools`` defaults to FFmpegMediaTools; it serves as audio
    extractor, frame sampler and clip cutter.
    """
    from reelscribe.providers.factory import ProviderFactory

    config = config or AppConfig()
    if media_tools is None:
        from reelscribe.modules.media_tools import FFmpegMediaTools
        media_tools = FFmpegMediaTools()

    providers = ProviderFactory.create_many(config.providers, media_tools, names=provider_names)
    profiler = MediaProfiler(media_tools) if config.profiler.enabled else None

    if cache is None and config.cache.enabled:
        cache = ResultCache(
            JsonFileCacheStore(config.cache.cache_dir),
            retention_days=config.cache.retention_days,
        )

    visual = None
    if config.visual.enabled:
        try:
            backend = ProviderFactory.create_vision_backend(config.providers)
        except ConfigurationError as e:
            logger.warning(f"Visual pipeline unavailable: {e}")
        else:
            visual = VisualSynthesizer(media_tools, backend, config.visual)

    processor = None
    if config.splitter.enabled:
        processor = ParallelSegmentProcessor(SegmentSplitter(media_tools, config.splitter))

    logger.debug(
        f"Router: providers={[p.name for p in providers]}, cache={'on' if cache else 'off'}, "
        f"visual={'on' if visual else 'off'}, splitting={'on' if processor else 'off'}"
    )
    return TranscriptionRouter(
        providers,
        profiler=profiler,
        cache=cache,
        visual=visual,
        processor=processor,
        config=config,
    )
