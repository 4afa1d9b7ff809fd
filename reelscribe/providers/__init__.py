"""
Transcription backends.

Backends are imported lazily through ``ProviderFactory``; importing this
package does not import any provider SDK.
"""

from reelscribe.providers.base import (
    ProviderAdapter,
    TranscriptionProvider,
    error_for_status,
    scaled_timeout,
)
from reelscribe.providers.factory import ProviderFactory

__all__ = [
    "ProviderAdapter",
    "TranscriptionProvider",
    "ProviderFactory",
    "error_for_status",
    "scaled_timeout",
]
