"""
Runtime settings resolved from explicit overrides, environment variables, and YAML files.
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field, fields, replace
from pathlib import Path
from typing import Any, Mapping

import yaml

DEFAULT_TEXT_MODEL = "gpt-4.1-mini"
DEFAULT_IMAGE_PROVIDERS = (
    "replicate:black-forest-labs/flux-schnell",
    "litellm:dall-e-3",
)
DEFAULT_SPEECH_MODEL = "openai/tts-1"
DEFAULT_DB_PATH = "~/.storyloom/stories.db"
DEFAULT_STORAGE_DIR = "~/.storyloom/assets"
DEFAULT_PUBLIC_BASE = "/static"

_TUPLE_FIELDS = {"text_models", "image_providers", "durable_hosts", "ephemeral_hosts"}


def _split_list(value: Any) -> tuple[str, ...]:
    if value is None:
        return ()
    if isinstance(value, str):
        parts = [item.strip() for item in value.split(",")]
    else:
        parts = [str(item).strip() for item in value]
    return tuple(filter(None, parts))


def _first_env(env: Mapping[str, str], *names: str) -> str | None:
    for name in names:
        value = env.get(name)
        if value is not None and value.strip():
            return value.strip()
    return None


def _coerce(name: str, value: Any, current: Any) -> Any:
    if name in _TUPLE_FIELDS:
        return _split_list(value)
    if isinstance(current, bool):
        if isinstance(value, str):
            return value.strip().lower() in {"1", "true", "yes", "on"}
        return bool(value)
    if isinstance(current, int) and not isinstance(current, bool):
        try:
            return int(value)
        except (TypeError, ValueError) as exc:
            raise ValueError(f"Setting '{name}' expects an integer, got {value!r}.") from exc
    if isinstance(current, float):
        try:
            return float(value)
        except (TypeError, ValueError) as exc:
            raise ValueError(f"Setting '{name}' expects a number, got {value!r}.") from exc
    if value is None:
        return None
    text = str(value).strip()
    return text or None


@dataclass(frozen=True)
class Settings:
    """
    All knobs used to wire providers, storage, and the generation pipeline.

    Attributes
    ----------
    text_models:
        LiteLLM model identifiers tried in order for narrative generation.
    image_providers:
        Ordered ``backend:model`` entries (``replicate:`` or ``litellm:``) forming the
        illustration fallback chain.
    speech_model:
        LiteLLM speech model. Narration is skipped when no speech credential resolves.
    durable_hosts / ephemeral_hosts:
        Extra host patterns appended to the classifier's built-in rule table.
    page_retry_budget:
        Illustration regenerations shared by every page of a story.
    narration_backoff_base / narration_backoff_max:
        Exponential backoff curve (seconds) between narration retries of one page.
    """

    text_models: tuple[str, ...] = (DEFAULT_TEXT_MODEL,)
    text_api_key: str | None = None
    image_providers: tuple[str, ...] = DEFAULT_IMAGE_PROVIDERS
    image_api_key: str | None = None
    replicate_api_token: str | None = None
    speech_model: str | None = DEFAULT_SPEECH_MODEL
    speech_api_key: str | None = None

    text_timeout: float = 90.0
    image_timeout: float = 120.0
    speech_timeout: float = 60.0
    download_timeout: float = 30.0

    storage_backend: str = "local"
    storage_dir: str = DEFAULT_STORAGE_DIR
    storage_public_base: str = DEFAULT_PUBLIC_BASE
    s3_endpoint_url: str | None = None
    s3_access_key: str | None = None
    s3_secret_key: str | None = None
    s3_bucket: str | None = None
    s3_region: str | None = None
    db_path: str = DEFAULT_DB_PATH

    durable_hosts: tuple[str, ...] = ()
    ephemeral_hosts: tuple[str, ...] = ()

    narrative_max_attempts: int = 2
    cover_regeneration_attempts: int = 2
    page_retry_budget: int = 3
    narration_delay_seconds: float = 2.0
    narration_max_attempts: int = 3
    narration_backoff_base: float = 2.0
    narration_backoff_max: float = 30.0
    sweep_interval_seconds: float = 3600.0

    extra: Mapping[str, Any] = field(default_factory=dict)

    def __post_init__(self) -> None:
        if not self.text_models:
            raise ValueError("At least one text model is required. Set STORYLOOM_TEXT_MODELS.")
        if self.storage_backend not in {"local", "s3"}:
            raise ValueError(
                f"Unsupported storage backend '{self.storage_backend}'. Use 'local' or 's3'."
            )
        for name in (
            "narrative_max_attempts",
            "narration_max_attempts",
        ):
            if getattr(self, name) < 1:
                raise ValueError(f"Setting '{name}' must be at least 1.")
        for name in ("cover_regeneration_attempts", "page_retry_budget"):
            if getattr(self, name) < 0:
                raise ValueError(f"Setting '{name}' cannot be negative.")

    @property
    def speech_enabled(self) -> bool:
        return bool(self.speech_model and self.speech_api_key)

    @classmethod
    def from_env(
        cls,
        env: Mapping[str, str] | None = None,
        **overrides: Any,
    ) -> "Settings":
        """
        Build settings from ``STORYLOOM_*`` variables, falling back to provider-specific ones.
        """
        env = os.environ if env is None else env
        openai_key = _first_env(env, "OPENAI_API_KEY", "LITELLM_API_KEY")

        values: dict[str, Any] = {
            "text_api_key": _first_env(env, "STORYLOOM_TEXT_API_KEY") or openai_key,
            "image_api_key": _first_env(env, "STORYLOOM_IMAGE_API_KEY") or openai_key,
            "replicate_api_token": _first_env(env, "STORYLOOM_REPLICATE_API_TOKEN", "REPLICATE_API_TOKEN"),
            "speech_api_key": _first_env(env, "STORYLOOM_SPEECH_API_KEY") or openai_key,
        }

        defaults = cls.__dataclass_fields__
        for item in fields(cls):
            if item.name in values or item.name == "extra":
                continue
            raw = env.get(f"STORYLOOM_{item.name.upper()}")
            if raw is not None and raw.strip():
                default = defaults[item.name].default
                values[item.name] = _coerce(item.name, raw, default)

        text_models = _first_env(env, "STORYLOOM_TEXT_MODELS", "LITELLM_STORY_MODEL", "LITELLM_MODEL")
        if text_models:
            values["text_models"] = _split_list(text_models)

        values.update({key: value for key, value in overrides.items() if value is not None})
        return cls(**values)

    @classmethod
    def from_file(
        cls,
        path: str | Path,
        *,
        env: Mapping[str, str] | None = None,
    ) -> "Settings":
        """
        Load a YAML settings file on top of the environment-derived defaults.
        """
        config_path = Path(path).expanduser()
        data = yaml.safe_load(config_path.read_text(encoding="utf-8")) or {}
        if not isinstance(data, Mapping):
            raise ValueError("Settings YAML must deserialize to a mapping.")
        return cls.from_env(env).merged(data)

    def merged(self, data: Mapping[str, Any]) -> "Settings":
        known = {item.name: item for item in fields(self)}
        updates: dict[str, Any] = {}
        extra: dict[str, Any] = dict(self.extra)
        for key, value in data.items():
            if key in known and key != "extra":
                updates[key] = _coerce(key, value, getattr(self, key))
            else:
                extra[key] = value
        return replace(self, extra=extra, **updates)
