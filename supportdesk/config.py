"""Configuration management for the support desk service."""
from __future__ import annotations

import os
from dataclasses import dataclass
from datetime import timedelta
from pathlib import Path
from typing import Dict, Optional

import yaml

from .database import resolve_database_path

DEFAULT_TEXT_MODEL = "Qwen/Qwen3-Coder-480B-A35B-Instruct"
DEFAULT_TEXT_URL = "https://router.huggingface.co/v1/chat/completions"
DEFAULT_IMAGE_MODEL = "stabilityai/stable-diffusion-xl-base-1.0"
DEFAULT_IMAGE_URL = "https://router.huggingface.co/hf-inference/models/{model}"


@dataclass(frozen=True)
class EndpointConfig:
    """Connection details for one AI provider endpoint."""

    url: str
    model: str
    api_key_env: str
    timeout: Optional[float] = None

    @staticmethod
    def from_dict(data: Dict[str, object], *, defaults: "EndpointConfig") -> "EndpointConfig":
        """Create an :class:`EndpointConfig`, filling gaps from ``defaults``."""
        if not isinstance(data, dict):
            raise ValueError("Endpoint configuration must be a mapping")

        model = str(data.get("model") or defaults.model).strip()
        if not model:
            raise ValueError("Endpoint configuration requires a model")

        raw_url = str(data.get("url") or defaults.url).strip()
        if not raw_url:
            raise ValueError("Endpoint configuration requires a url")

        raw_timeout = data.get("timeout", defaults.timeout)
        timeout = float(raw_timeout) if raw_timeout is not None else None
        if timeout is not None and timeout <= 0:
            raise ValueError("Endpoint timeout must be positive")

        return EndpointConfig(
            url=raw_url.replace("{model}", model),
            model=model,
            api_key_env=str(data.get("api_key_env") or defaults.api_key_env),
            timeout=timeout,
        )

    def api_key(self) -> Optional[str]:
        value = os.getenv(self.api_key_env, "").strip()
        return value or None


DEFAULT_TEXT_ENDPOINT = EndpointConfig(
    url=DEFAULT_TEXT_URL,
    model=DEFAULT_TEXT_MODEL,
    api_key_env="SUPPORTDESK_HF_TEXT_TOKEN",
)

_IMAGE_TEMPLATE = EndpointConfig(
    url=DEFAULT_IMAGE_URL,
    model=DEFAULT_IMAGE_MODEL,
    api_key_env="SUPPORTDESK_HF_IMAGE_TOKEN",
)

DEFAULT_IMAGE_ENDPOINT = EndpointConfig.from_dict({}, defaults=_IMAGE_TEMPLATE)


@dataclass(frozen=True)
class AISettings:
    text: EndpointConfig = DEFAULT_TEXT_ENDPOINT
    image: EndpointConfig = DEFAULT_IMAGE_ENDPOINT


@dataclass(frozen=True)
class Settings:
    database_path: Path
    secure_cookies: bool
    session_ttl: timedelta
    ai: AISettings


def env_flag(value: Optional[str], default: bool = False) -> bool:
    if value is None:
        return default
    return value.strip().lower() in {"1", "true", "yes", "on"}


def load_ai_settings(config_path: Optional[Path]) -> AISettings:
    """Load AI endpoint settings from a YAML file, or return the defaults."""
    if config_path is None:
        return AISettings()

    with config_path.open("r", encoding="utf-8") as handle:
        raw = yaml.safe_load(handle) or {}

    if not isinstance(raw, dict):
        raise ValueError("AI configuration file must contain a mapping")

    return AISettings(
        text=EndpointConfig.from_dict(raw.get("text") or {}, defaults=DEFAULT_TEXT_ENDPOINT),
        image=EndpointConfig.from_dict(raw.get("image") or {}, defaults=_IMAGE_TEMPLATE),
    )


def resolve_ai_config_path(env_value: Optional[str]) -> Optional[Path]:
    """Resolve the AI configuration file; ``None`` when none is configured."""
    if env_value:
        return Path(env_value).expanduser().resolve(strict=False)
    candidate = (Path(__file__).resolve().parent.parent / "config" / "ai.yaml").resolve(strict=False)
    if candidate.exists():
        return candidate
    return None


def load_settings() -> Settings:
    """Build the service settings from ``SUPPORTDESK_*`` environment variables."""
    raw_ttl = os.getenv("SUPPORTDESK_SESSION_TTL_HOURS", "8")
    try:
        ttl_hours = float(raw_ttl)
    except ValueError as exc:
        raise ValueError("SUPPORTDESK_SESSION_TTL_HOURS must be a number") from exc
    if ttl_hours <= 0:
        raise ValueError("SUPPORTDESK_SESSION_TTL_HOURS must be positive")

    return Settings(
        database_path=resolve_database_path(os.getenv("SUPPORTDESK_DB_PATH")),
        secure_cookies=env_flag(os.getenv("SUPPORTDESK_SESSION_SECURE"), True),
        session_ttl=timedelta(hours=ttl_hours),
        ai=load_ai_settings(resolve_ai_config_path(os.getenv("SUPPORTDESK_AI_CONFIG"))),
    )


__all__ = [
    "AISettings",
    "EndpointConfig",
    "Settings",
    "env_flag",
    "load_ai_settings",
    "load_settings",
    "resolve_ai_config_path",
]
