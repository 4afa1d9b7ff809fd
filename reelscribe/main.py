#!/usr/bin/env python3
"""reelscribe command line entry point."""

import argparse
import signal
import sys
from pathlib import Path
from typing import List, Optional

from tqdm import tqdm

from reelscribe.__version__ import __version__
from reelscribe.config.errors import ConfigLoadError
from reelscribe.config.settings import AppConfig, dump_config, load_config
from reelscribe.modules.errors import AllMethodsExhaustedError, CancelledError, ReelscribeError
from reelscribe.modules.media_tools import check_ffmpeg
from reelscribe.modules.result_cache import JsonFileCacheStore, ResultCache
from reelscribe.modules.srt_io import write_srt
from reelscribe.modules.types import MediaSource, TranscriptionRequest
from reelscribe.pipelines.router import build_router
from reelscribe.providers.factory import ProviderFactory
from reelscribe.utils.cancellation import CancellationToken
from reelscribe.utils.logger import logger, setup_logger

EXIT_FAILURE = 1
EXIT_CANCELLED = 130


def parse_arguments(argv: Optional[List[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog="reelscribe",
        description="reelscribe - generate subtitles for videos with automatic provider fallback",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument("input", nargs="*", help="Input video file(s)")
    parser.add_argument("--language", default="auto",
                        help="Spoken language: a name (English) or code (en); default: auto-detect")
    parser.add_argument("--config", default=None, help="Path to a YAML configuration file")
    parser.add_argument("--instructions", default=None,
                        help="Extra guidance for prompt-driven backends (Gemini, visual analysis)")
    parser.add_argument("--providers", default=None,
                        help=f"Comma-separated provider order (available: {', '.join(ProviderFactory.list_providers())})")
    parser.add_argument("--version", action="version", version=f"reelscribe {__version__}")

    path_group = parser.add_argument_group("Path and Logging Options")
    path_group.add_argument("--output-dir", default=None, help="Output directory (default: next to each input)")
    path_group.add_argument("--log-level", choices=["DEBUG", "INFO", "WARNING", "ERROR"],
                            default=None, help="Logging level")
    path_group.add_argument("--log-file", help="Log file path")
    path_group.add_argument("--debug", action="store_true", help="Shorthand for --log-level DEBUG")
    path_group.add_argument("--no-progress", action="store_true", help="Disable the progress bar")

    cache_group = parser.add_argument_group("Cache Options")
    cache_group.add_argument("--no-cache", action="store_true", help="Do not read or write the result cache")
    cache_group.add_argument("--cache-dir", default=None, help="Result cache directory")
    cache_group.add_argument("--prune-cache", action="store_true", help="Delete expired cache entries and exit")
    cache_group.add_argument("--cache-stats", action="store_true", help="Print cache statistics and exit")

    parser.add_argument("--print-config", action="store_true", help="Print the effective configuration and exit")
    return parser.parse_args(argv)


def apply_overrides(config: AppConfig, args: argparse.Namespace) -> AppConfig:
    """Fold CLI flags into the loaded configuration."""
    if args.no_cache:
        config.cache.enabled = False
    if args.cache_dir:
        config.cache.cache_dir = args.cache_dir
    if args.providers:
        names = [name.strip() for name in args.providers.split(",") if name.strip()]
        unknown = [name for name in names if name not in ProviderFactory.list_providers()]
        if unknown:
            raise ValueError(
                f"Unknown provider(s): {', '.join(unknown)}. "
                f"Available: {', '.join(ProviderFactory.list_providers())}"
            )
        config.providers.order = names
    if args.debug:
        config.log_level = "DEBUG"
    elif args.log_level:
        config.log_level = args.log_level
    return config


def open_cache(config: AppConfig) -> ResultCache:
    return ResultCache(JsonFileCacheStore(config.cache.cache_dir), retention_days=config.cache.retention_days)


def print_cache_stats(cache: ResultCache) -> None:
    stats = cache.stats()
    print(f"Cache directory: {cache.store.cache_dir}")
    print(f"Entries:         {stats.entries} ({stats.complete} complete, {stats.partial} partial, "
          f"{stats.analysis} analysis)")
    print(f"Size:            {stats.total_bytes / 1024:.1f} KB")


class ProgressBar:
    """tqdm-backed progress sink: (stage, percent)."""

    def __init__(self, name: str, disable: bool = False):
        self._bar = tqdm(total=100, desc=name, unit="%", disable=disable,
                         bar_format="{desc}: {percentage:3.0f}%|{bar}| {postfix}")
        self._last = 0.0

    def __call__(self, stage: str, progress: float) -> None:
        progress = max(0.0, min(100.0, float(progress)))
        # Stages may report a lower value (retries restart their band)
        if progress > self._last:
            self._bar.update(progress - self._last)
            self._last = progress
        self._bar.set_postfix_str(stage, refresh=True)

    def close(self) -> None:
        self._bar.close()


def output_path_for(source: Path, output_dir: Optional[str]) -> Path:
    directory = Path(output_dir) if output_dir else source.parent
    directory.mkdir(parents=True, exist_ok=True)
    return directory / f"{source.stem}.srt"


def process_files(paths: List[Path], config: AppConfig, args: argparse.Namespace, cancel: CancellationToken) -> int:
    """Transcribe each input in turn. Returns the process exit code."""
    router = build_router(config)
    failed = []

    for i, path in enumerate(paths, 1):
        logger.info(f"[{i}/{len(paths)}] {path.name}")
        try:
            source = MediaSource.from_path(path)
        except (OSError, ReelscribeError) as e:
            logger.error(f"Cannot read {path}: {e}")
            failed.append(path)
            continue

        bar = ProgressBar(path.name, disable=args.no_progress)
        request = TranscriptionRequest(
            source=source,
            language_hint=args.language,
            instructions=args.instructions,
            on_progress=bar,
            cancel=cancel,
            use_cache=config.cache.enabled,
        )
        try:
            outcome = router.transcribe(request)
        except CancelledError:
            bar.close()
            logger.warning("Cancelled; partial progress is kept in the cache")
            return EXIT_CANCELLED
        except AllMethodsExhaustedError as e:
            bar.close()
            logger.error(str(e))
            for attempt in e.attempts:
                logger.debug(f"  {attempt.describe()}")
            failed.append(path)
            continue
        bar.close()

        out_path = write_srt(outcome.segments, output_path_for(path, args.output_dir))
        source_label = "cache" if outcome.from_cache else outcome.provider
        logger.info(
            f"Wrote {out_path} ({len(outcome.segments)} subtitles via {source_label}, "
            f"{outcome.elapsed_seconds:.1f}s)"
        )

    if failed:
        logger.error(f"{len(failed)} of {len(paths)} file(s) failed")
        return EXIT_FAILURE
    return 0


def main(argv: Optional[List[str]] = None) -> None:
    global logger
    args = parse_arguments(argv)

    try:
        config = apply_overrides(load_config(args.config), args)
    except (ConfigLoadError, ValueError) as e:
        setup_logger("reelscribe", "INFO")
        logger.error(str(e))
        sys.exit(EXIT_FAILURE)

    logger = setup_logger("reelscribe", config.log_level, args.log_file)

    if args.print_config:
        print(dump_config(config))
        sys.exit(0)

    if args.cache_stats or args.prune_cache:
        cache = open_cache(config)
        if args.prune_cache:
            removed = cache.prune()
            print(f"Removed {removed} expired cache entr{'y' if removed == 1 else 'ies'}")
        if args.cache_stats:
            print_cache_stats(cache)
        sys.exit(0)

    if not args.input:
        logger.error("No input files specified. Use -h for help.")
        sys.exit(EXIT_FAILURE)

    paths = [Path(p) for p in args.input]
    missing = [p for p in paths if not p.is_file()]
    if missing:
        logger.error(f"Input file(s) not found: {', '.join(str(p) for p in missing)}")
        sys.exit(EXIT_FAILURE)

    if not check_ffmpeg():
        logger.error("ffmpeg/ffprobe not found on PATH; install FFmpeg and try again.")
        sys.exit(EXIT_FAILURE)

    cancel = CancellationToken()

    def _on_sigint(signum, frame):
        if cancel.is_cancelled:
            # Second Ctrl+C: stop waiting for in-flight calls to unwind
            raise KeyboardInterrupt
        logger.warning("Cancelling... (press Ctrl+C again to force quit)")
        cancel.cancel()

    previous_handler = signal.signal(signal.SIGINT, _on_sigint)
    try:
        code = process_files(paths, config, args, cancel)
    except KeyboardInterrupt:
        code = EXIT_CANCELLED
    except Exception as e:
        logger.error(f"An unexpected error occurred: {e}", exc_info=args.debug)
        code = EXIT_FAILURE
    finally:
        signal.signal(signal.SIGINT, previous_handler)

    sys.exit(code)


if __name__ == "__main__":
    main()
