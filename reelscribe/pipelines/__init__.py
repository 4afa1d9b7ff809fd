"""Package initialization."""

from reelscribe.pipelines.router import TranscriptionRouter, build_router, estimate_processing_time

__all__ = ["TranscriptionRouter", "build_router", "estimate_processing_time"]
