"""
config.py — Environment-driven settings.

Values come from the process environment (a local .env is loaded by the CLI
through python-dotenv before settings are read).
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field

from .errors import ConfigurationError


@dataclass(frozen=True)
class Settings:
    api_key: str = field(default_factory=lambda: os.environ.get("GEMINI_API_KEY", "").strip())
    analysis_model: str = field(
        default_factory=lambda: os.environ.get("ICON_ANALYSIS_MODEL", "").strip() or "gemini-2.5-flash"
    )
    image_model: str = field(
        default_factory=lambda: os.environ.get("ICON_IMAGE_MODEL", "").strip() or "gemini-2.5-flash-image"
    )
    metadata_timeout: float = field(default_factory=lambda: float(os.environ.get("ICON_METADATA_TIMEOUT", "5")))
    max_retries: int = field(default_factory=lambda: int(os.environ.get("ICON_MAX_RETRIES", "3")))
    retry_delay: float = field(default_factory=lambda: float(os.environ.get("ICON_RETRY_DELAY", "5")))

    def require_api_key(self) -> str:
        if not self.api_key:
            raise ConfigurationError("GEMINI_API_KEY is not set in environment / .env")
        return self.api_key


def load_settings() -> Settings:
    return Settings()
