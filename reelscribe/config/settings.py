"""
Typed configuration for reelscribe.

All settings are pydantic models on a strict ``BaseConfig`` (unknown keys
are rejected so typos surface immediately). A YAML file can override any
subset; everything else keeps its default. API keys are never stored in
the file by default: each provider names the environment variable that
holds its key.

Example config.yaml::

    router:
      long_media_threshold_sec: 2400
    providers:
      order: [groq, deepgram]
      groq:
        model: whisper-large-v3
"""

import os
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

import yaml
from pydantic import BaseModel, ConfigDict, Field, ValidationError

from reelscribe.config.constants import DEFAULT_PROVIDER_ORDER
from reelscribe.config.errors import SettingsValidationError, YAMLParseError
from reelscribe.modules.types import RetryPolicy


class BaseConfig(BaseModel):
    """Base configuration: strict validation, re-validation on assignment."""

    model_config = ConfigDict(
        extra="forbid",
        validate_assignment=True,
        use_enum_values=True,
        populate_by_name=True,
    )


# ---------------------------------------------------------------------------
# Component settings
# ---------------------------------------------------------------------------


class RetrySettings(BaseConfig):
    max_retries: int = Field(default=3, ge=0, le=10)
    base_delay: float = Field(default=2.0, ge=0.0)
    overload_multiplier: float = Field(default=3.0, ge=1.0)
    max_delay: Optional[float] = Field(default=120.0, gt=0.0)

    def to_policy(self, on_retry=None) -> RetryPolicy:
        return RetryPolicy(
            max_retries=self.max_retries,
            base_delay=self.base_delay,
            overload_multiplier=self.overload_multiplier,
            max_delay=self.max_delay,
            on_retry=on_retry,
        )


class ProfilerSettings(BaseConfig):
    enabled: bool = True
    cache_profiles: bool = True


class SplitterSettings(BaseConfig):
    enabled: bool = True
    single_window_max_sec: float = Field(default=180.0, gt=0.0)
    window_sec: float = Field(default=120.0, gt=0.0)
    long_media_sec: float = Field(default=1800.0, gt=0.0)
    long_window_sec: float = Field(default=180.0, gt=0.0)
    max_windows: int = Field(default=40, ge=1)
    max_parallel: int = Field(default=3, ge=1, le=16)


class VisualSettings(BaseConfig):
    enabled: bool = True
    max_payload_mb: float = Field(default=3.5, gt=0.0)
    max_retries: int = Field(default=2, ge=0)
    base_delay: float = Field(default=1.5, ge=0.0)
    max_frame_width: int = Field(default=1280, ge=64)
    max_frame_height: int = Field(default=720, ge=64)


class CacheSettings(BaseConfig):
    enabled: bool = True
    cache_dir: str = "~/.cache/reelscribe"
    retention_days: float = Field(default=30.0, ge=0.0)


class SaverSettings(BaseConfig):
    interval_ms: float = Field(default=1500.0, ge=0.0)


class RouterSettings(BaseConfig):
    """
    Fallback-chain policy.

    ``long_media_threshold_sec`` and ``long_media_visual_fallback`` tune the
    sparse-dialogue heuristic: media longer than the threshold is always
    tried with audio first, and by default never falls back to visual.
    """

    long_media_threshold_sec: float = Field(default=1800.0, gt=0.0)
    long_media_visual_fallback: bool = False
    visual_fallback: bool = True


# ---------------------------------------------------------------------------
# Providers
# ---------------------------------------------------------------------------


class ProviderSettings(BaseConfig):
    enabled: bool = True
    api_key_env: str
    api_key: Optional[str] = Field(default=None, repr=False)
    model: str
    base_url: Optional[str] = None
    max_upload_mb: float = Field(default=25.0, gt=0.0)
    max_duration_sec: Optional[float] = Field(default=None, gt=0.0)
    options: Dict[str, Any] = Field(default_factory=dict)

    def resolve_api_key(self) -> Optional[str]:
        """Explicit key first, then the environment variable."""
        if self.api_key:
            return self.api_key
        return os.getenv(self.api_key_env) or None

    @property
    def is_configured(self) -> bool:
        return self.enabled and bool(self.resolve_api_key())


class ProvidersSettings(BaseConfig):
    order: List[str] = Field(default_factory=lambda: list(DEFAULT_PROVIDER_ORDER))
    deepgram: ProviderSettings = Field(default_factory=lambda: ProviderSettings(
        api_key_env="DEEPGRAM_API_KEY",
        model="nova-2",
        max_upload_mb=100.0,
        options={"smart_format": True, "punctuate": True},
    ))
    groq: ProviderSettings = Field(default_factory=lambda: ProviderSettings(
        api_key_env="GROQ_API_KEY",
        model="whisper-large-v3-turbo",
        base_url="https://api.groq.com/openai/v1",
        max_upload_mb=25.0,
    ))
    openai: ProviderSettings = Field(default_factory=lambda: ProviderSettings(
        api_key_env="OPENAI_API_KEY",
        model="whisper-1",
        max_upload_mb=25.0,
    ))
    gemini: ProviderSettings = Field(default_factory=lambda: ProviderSettings(
        api_key_env="GEMINI_API_KEY",
        model="gemini-2.5-flash",
        max_upload_mb=20.0,
        max_duration_sec=600.0,
    ))
    vision: ProviderSettings = Field(default_factory=lambda: ProviderSettings(
        api_key_env="GEMINI_API_KEY",
        model="gemini-2.5-flash",
        max_upload_mb=3.5,
    ))

    def get(self, name: str) -> ProviderSettings:
        settings = getattr(self, name, None)
        if not isinstance(settings, ProviderSettings):
            raise KeyError(f"Unknown provider: {name}")
        return settings

    def enabled_providers(self) -> List[str]:
        """Audio providers in fallback order that are enabled and have a key."""
        return [name for name in self.order if self.get(name).is_configured]


class AppConfig(BaseConfig):
    router: RouterSettings = Field(default_factory=RouterSettings)
    retry: RetrySettings = Field(default_factory=RetrySettings)
    profiler: ProfilerSettings = Field(default_factory=ProfilerSettings)
    splitter: SplitterSettings = Field(default_factory=SplitterSettings)
    visual: VisualSettings = Field(default_factory=VisualSettings)
    cache: CacheSettings = Field(default_factory=CacheSettings)
    saver: SaverSettings = Field(default_factory=SaverSettings)
    providers: ProvidersSettings = Field(default_factory=ProvidersSettings)
    log_level: str = "INFO"


# ---------------------------------------------------------------------------
# Loading
# ---------------------------------------------------------------------------


def _load_raw_yaml(file_path: Path) -> Dict[str, Any]:
    if not file_path.exists():
        raise YAMLParseError(f"File not found: {file_path}", file_path=file_path)

    try:
        with open(file_path, "r", encoding="utf-8") as f:
            data = yaml.safe_load(f)
    except yaml.YAMLError as e:
        line = column = None
        if hasattr(e, "problem_mark") and e.problem_mark:
            line = e.problem_mark.line + 1
            column = e.problem_mark.column + 1
        raise YAMLParseError(
            f"YAML syntax error: {e}", file_path=file_path, line=line, column=column
        ) from e

    if data is None:
        return {}
    if not isinstance(data, dict):
        raise YAMLParseError("YAML root must be a mapping (dict)", file_path=file_path)
    return data


def validate_config(data: Dict[str, Any], source_file: Optional[Path] = None) -> AppConfig:
    """Validate a raw mapping, converting pydantic errors to SettingsValidationError."""
    try:
        return AppConfig.model_validate(data)
    except ValidationError as e:
        errors = e.errors()
        if errors:
            first = errors[0]
            raise SettingsValidationError(
                message=first.get("msg", str(e)),
                field_path=".".join(str(p) for p in first.get("loc", [])),
                actual_value=first.get("input"),
                source_file=source_file,
            ) from e
        raise SettingsValidationError(message=str(e), source_file=source_file) from e


def load_config(path: Optional[Union[str, Path]] = None) -> AppConfig:
    """
    Load configuration from YAML, or defaults when ``path`` is None.

    ``REELSCRIBE_CONFIG`` names a default file when no path is given.
    """
    if path is None:
        path = os.getenv("REELSCRIBE_CONFIG")
        if not path:
            return AppConfig()

    file_path = Path(path).expanduser()
    return validate_config(_load_raw_yaml(file_path), source_file=file_path)


def dump_config(config: AppConfig) -> str:
    """YAML rendering of the effective configuration, without secrets."""
    data = config.model_dump(mode="json")
    for provider in data.get("providers", {}).values():
        if isinstance(provider, dict) and provider.get("api_key"):
            provider["api_key"] = "***"
    return yaml.safe_dump(data, sort_keys=False, allow_unicode=True)
