"""Configuration management using Pydantic Settings."""

from __future__ import annotations

import os
from pathlib import Path

import yaml
from pydantic import BaseModel
from pydantic_settings import BaseSettings, SettingsConfigDict

DEFAULT_BASE_URL = "https://api.openai.com/v1"


class HTTPConfig(BaseModel):
    timeout: float = 600.0
    connect_timeout: float = 10.0


class StreamConfig(BaseModel):
    # None disables the limit
    max_consecutive_decode_errors: int | None = 8
    debug: bool = False


class ClientSettings(BaseSettings):
    model_config = SettingsConfigDict(
        env_prefix="AISTREAM_",
        env_nested_delimiter="__",
    )

    api_key: str = ""
    organization: str | None = None
    project: str | None = None
    base_url: str = DEFAULT_BASE_URL

    http: HTTPConfig = HTTPConfig()
    stream: StreamConfig = StreamConfig()

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls,
        init_settings,
        env_settings,
        dotenv_settings,
        file_secret_settings,
    ):
        # Environment wins over values loaded from YAML.
        return env_settings, init_settings, dotenv_settings, file_secret_settings

    @classmethod
    def load(cls, config_path: Path | None = None) -> ClientSettings:
        """Load settings from YAML file, then overlay env vars."""
        data: dict = {}
        if config_path and config_path.exists():
            with open(config_path) as f:
                data = yaml.safe_load(f) or {}
        return cls(**data)

    def resolved_api_key(self) -> str:
        return self.api_key or os.environ.get("OPENAI_API_KEY", "")


def get_project_root() -> Path:
    """Walk up from CWD to find pyproject.toml, or fall back to CWD."""
    current = Path.cwd()
    for parent in [current, *current.parents]:
        if (parent / "pyproject.toml").exists():
            return parent
    return current


def load_settings() -> ClientSettings:
    """Load settings from the project root's config/settings.yaml."""
    root = get_project_root()
    return ClientSettings.load(root / "config" / "settings.yaml")
