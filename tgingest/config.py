"""
Configuration for tgingest.

Supports loading from environment variables and config files.
"""

import os
import json
from dataclasses import asdict, dataclass, field
from pathlib import Path
from typing import Optional, List

from .errors import ConfigurationError
from .models import BackendType


def _parse_api_id(value) -> Optional[int]:
    """Parse the numeric application id; non-numeric values are fatal."""
    if value is None or value == "":
        return None
    try:
        return int(value)
    except (TypeError, ValueError):
        raise ConfigurationError("TG_API_ID must be a valid integer") from None


def _parse_int(name: str, value, default: int) -> int:
    """Parse an integer setting; non-numeric values are fatal."""
    if value is None or value == "":
        return default
    try:
        return int(value)
    except (TypeError, ValueError):
        raise ConfigurationError(f"{name} must be a valid integer") from None


@dataclass
class Config:
    """
    tgingest configuration with sensible defaults.

    All timing values are tuned to respect Telegram's rate limits:
    the public preview pages tolerate a call every ~20 seconds, the
    authenticated API should see one channel every 10 minutes at most.
    """

    # API credentials (required for the authenticated backend)
    api_id: Optional[int] = None
    api_hash: Optional[str] = None

    # Session settings
    sessions_dir: str = "./sessions"
    session_suffix: str = ".session"

    # Cache settings
    data_dir: str = "./data"
    cache_db: str = "tgingest_cache.db"

    # Backend selection, in order of preference
    backend_order: List[str] = field(default_factory=lambda: ["web", "api"])

    # Rate limiting (seconds)
    web_cooldown: float = 20.0
    api_cooldown: float = 600.0
    resolve_interval: float = 600.0

    # Fetch settings
    max_pages: int = 5  # Preview pages per scrape
    message_limit: int = 200  # Messages per authenticated fetch
    min_message_length: int = 32  # Shorter bodies are dropped
    scrape_timeout: float = 30.0  # Whole scrape, all pages
    page_delay: float = 0.5  # Politeness delay between pages

    # Logging
    log_level: str = "INFO"
    log_file: Optional[str] = None

    @classmethod
    def from_env(cls) -> "Config":
        """
        Load configuration from environment variables.

        Raises:
            ConfigurationError: TG_API_ID or TGINGEST_MAX_PAGES set but not numeric
        """
        backends = os.getenv("TGINGEST_BACKENDS")
        return cls(
            api_id=_parse_api_id(os.getenv("TG_API_ID")),
            api_hash=os.getenv("TG_API_HASH") or None,
            sessions_dir=os.getenv("TGINGEST_SESSIONS_DIR", "./sessions"),
            data_dir=os.getenv("TGINGEST_DATA_DIR", "./data"),
            backend_order=(
                [b.strip() for b in backends.split(",") if b.strip()]
                if backends else ["web", "api"]
            ),
            max_pages=_parse_int("TGINGEST_MAX_PAGES", os.getenv("TGINGEST_MAX_PAGES"), 5),
            log_level=os.getenv("TGINGEST_LOG_LEVEL", "INFO"),
        )

    @classmethod
    def from_file(cls, path: Path) -> "Config":
        """Load configuration from a JSON file."""
        with open(path) as f:
            data = json.load(f)
        if "api_id" in data:
            data["api_id"] = _parse_api_id(data["api_id"])
        return cls(**data)

    def to_file(self, path: Path) -> None:
        """Save configuration to a JSON file."""
        with open(path, 'w') as f:
            json.dump(asdict(self), f, indent=2)

    @property
    def backends(self) -> List[BackendType]:
        """Backend preference order as enum values."""
        return [BackendType.parse(b) for b in self.backend_order]

    @property
    def uses_api(self) -> bool:
        return BackendType.API in self.backends

    def validate(self, require_credentials: bool = True) -> List[str]:
        """Validate configuration, returns list of errors."""
        errors = []

        if require_credentials:
            if not self.api_id:
                errors.append("api_id is required (set TG_API_ID)")
            if not self.api_hash:
                errors.append("api_hash is required (set TG_API_HASH)")

        try:
            backends = self.backends
        except ValueError as e:
            errors.append(str(e))
        else:
            if not backends:
                errors.append("backend_order must name at least one backend")
            elif len(set(backends)) != len(backends):
                errors.append("backend_order must not repeat a backend")

        if self.max_pages < 1:
            errors.append("max_pages must be >= 1")
        if self.message_limit < 1:
            errors.append("message_limit must be >= 1")
        if self.web_cooldown < 0 or self.api_cooldown < 0:
            errors.append("cooldowns must be >= 0")

        return errors

    def require_valid(self) -> None:
        """
        Abort on invalid configuration.

        Credentials are only required when the authenticated backend is
        enabled.

        Raises:
            ConfigurationError: listing every problem found
        """
        try:
            needs_credentials = self.uses_api
        except ValueError:
            needs_credentials = True

        errors = self.validate(require_credentials=needs_credentials)
        if errors:
            raise ConfigurationError("; ".join(errors))
