"""
Factory for creating provider adapters.

Supports lazy loading so that an unused backend's SDK is never imported.
"""

import importlib
import importlib.util
from typing import Any, Dict, List, Optional, Tuple, Type

from reelscribe.config.settings import ProvidersSettings
from reelscribe.modules.errors import ConfigurationError
from reelscribe.utils.logger import logger

# Registry of available backends: name -> class path
_PROVIDER_REGISTRY: Dict[str, str] = {
    "deepgram": "reelscribe.providers.deepgram.DeepgramAdapter",
    "groq": "reelscribe.providers.whisper_api.WhisperApiAdapter",
    "openai": "reelscribe.providers.whisper_api.WhisperApiAdapter",
    "gemini": "reelscribe.providers.gemini.GeminiAdapter",
}

_VISION_REGISTRY: Dict[str, str] = {
    "gemini": "reelscribe.providers.gemini.GeminiVisionBackend",
}

_PROVIDER_CACHE: Dict[str, Type] = {}

# Dependency information for each backend
_PROVIDER_DEPENDENCIES: Dict[str, Dict[str, Any]] = {
    "deepgram": {"packages": ["requests"], "install_hint": "pip install requests"},
    "groq": {"packages": ["openai"], "install_hint": "pip install 'openai>=1.35.0'"},
    "openai": {"packages": ["openai"], "install_hint": "pip install 'openai>=1.35.0'"},
    "gemini": {"packages": ["google.genai"], "install_hint": "pip install 'google-genai>=1.39.0'"},
}


class ProviderFactory:
    """
    Creates provider adapters by name.

    Example:
        providers = ProviderFactory.create_many(config.providers, media_tools)
        available, hint = ProviderFactory.is_provider_available("gemini")
    """

    @staticmethod
    def list_providers() -> List[str]:
        return list(_PROVIDER_REGISTRY.keys())

    @staticmethod
    def is_provider_available(name: str) -> Tuple[bool, str]:
        """
        Check if a provider's SDK is installed without importing it.

        Returns:
            Tuple of (is_available, install_hint)
        """
        dep_info = _PROVIDER_DEPENDENCIES.get(name)
        if dep_info is None:
            return False, f"Unknown provider: {name}"

        for package in dep_info["packages"]:
            try:
                spec = importlib.util.find_spec(package)
            except ModuleNotFoundError:
                spec = None
            if spec is None:
                return False, dep_info["install_hint"]
        return True, ""

    @staticmethod
    def _load_class(path: str) -> Type:
        if path in _PROVIDER_CACHE:
            return _PROVIDER_CACHE[path]
        module_path, class_name = path.rsplit(".", 1)
        module = importlib.import_module(module_path)
        cls = getattr(module, class_name)
        _PROVIDER_CACHE[path] = cls
        return cls

    @staticmethod
    def create(name: str, settings: ProvidersSettings, audio_extractor=None, **kwargs):
        """
        Create the adapter registered as ``name``.

        Raises:
            ValueError: Unknown provider name
            ConfigurationError: Provider SDK not installed
        """
        if name not in _PROVIDER_REGISTRY:
            raise ValueError(
                f"Unknown provider: {name}. Available: {', '.join(_PROVIDER_REGISTRY)}"
            )

        available, hint = ProviderFactory.is_provider_available(name)
        if not available:
            raise ConfigurationError(f"{name} backend is not installed", provider=name, suggestion=hint)

        cls = ProviderFactory._load_class(_PROVIDER_REGISTRY[name])
        return cls(settings.get(name), audio_extractor=audio_extractor, name=name, **kwargs)

    @staticmethod
    def create_many(settings: ProvidersSettings, audio_extractor=None, names: Optional[List[str]] = None) -> List:
        """
        Adapters for ``names`` (default: the configured order).

        Providers that cannot be constructed are logged and skipped; a
        provider without an API key is still created so the router can
        report it as unconfigured.
        """
        adapters = []
        for name in names or settings.order:
            try:
                adapters.append(ProviderFactory.create(name, settings, audio_extractor))
            except (ValueError, ConfigurationError) as e:
                logger.warning(f"Skipping provider {name}: {e}")
        return adapters

    @staticmethod
    def create_vision_backend(settings: ProvidersSettings, backend: str = "gemini"):
        if backend not in _VISION_REGISTRY:
            raise ValueError(f"Unknown vision backend: {backend}")
        available, hint = ProviderFactory.is_provider_available(backend)
        if not available:
            raise ConfigurationError(f"{backend} vision backend is not installed", suggestion=hint)
        cls = ProviderFactory._load_class(_VISION_REGISTRY[backend])
        return cls(settings.vision)
