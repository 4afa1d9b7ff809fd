"""reelscribe - resilient video-to-subtitle transcription"""

from reelscribe.__version__ import __version__, __version_info__


# Public API exports
from reelscribe.modules.types import (
    MediaSource,
    MediaProfile,
    SubtitleSegment,
    RouterOutcome,
    TranscriptionRequest,
    Pipeline,
)
from reelscribe.modules.errors import (
    AllMethodsExhaustedError,
    CancelledError,
    ReelscribeError,
)
from reelscribe.pipelines.router import TranscriptionRouter, build_router
from reelscribe.utils.logger import setup_logger


__all__ = [
    "MediaSource",
    "MediaProfile",
    "SubtitleSegment",
    "RouterOutcome",
    "TranscriptionRequest",
    "Pipeline",
    "AllMethodsExhaustedError",
    "CancelledError",
    "ReelscribeError",
    "TranscriptionRouter",
    "build_router",
    "setup_logger",
]

# main pulls in argparse and tqdm; import it lazily
def _run():
    from .main import main
    main()

if __name__ == "__main__":
    _run()
