"""
Configuration management for Banana Batch.
"""

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional

import yaml

from .errors import ConfigError
from .pricing import DEFAULT_MODEL, ImageModel, UnknownModelError


GLOBAL_CONFIG_DIR = Path.home() / ".banana_batch"
GLOBAL_CONFIG_FILE = GLOBAL_CONFIG_DIR / "config.yaml"

ASPECT_RATIOS = ("1:1", "2:3", "3:2", "3:4", "4:3", "4:5", "5:4", "9:16", "16:9", "21:9")
IMAGE_SIZES = ("1K", "2K", "4K")


@dataclass
class APIKeys:
    """API key configuration."""

    google: str = ""

    @classmethod
    def from_dict(cls, data: dict) -> "APIKeys":
        return cls(google=data.get("google", "") or "")

    @classmethod
    def from_env(cls) -> "APIKeys":
        """Load API keys from environment variables."""
        return cls(google=os.getenv("GEMINI_API_KEY") or os.getenv("GOOGLE_API_KEY", ""))

    def merge_env(self) -> "APIKeys":
        """Merge with environment variables (env takes precedence)."""
        env_keys = APIKeys.from_env()
        return APIKeys(google=env_keys.google or self.google)


@dataclass
class Defaults:
    """Default generation and autosave settings."""

    model: str = DEFAULT_MODEL.value
    aspect_ratio: str = "4:5"
    image_size: str = "2K"
    temperature: float = 1.0
    quiet_period_seconds: float = 5.0  # Prompt editor autosave
    simple_quiet_period_seconds: float = 10.0  # Plain list editor autosave
    tick_interval_seconds: float = 1.0

    @classmethod
    def from_dict(cls, data: dict) -> "Defaults":
        return cls(
            model=data.get("model", DEFAULT_MODEL.value),
            aspect_ratio=str(data.get("aspect_ratio", "4:5")),
            image_size=str(data.get("image_size", "2K")),
            temperature=float(data.get("temperature", 1.0)),
            quiet_period_seconds=float(data.get("quiet_period_seconds", 5.0)),
            simple_quiet_period_seconds=float(data.get("simple_quiet_period_seconds", 10.0)),
            tick_interval_seconds=float(data.get("tick_interval_seconds", 1.0)),
        )

    def to_dict(self) -> dict:
        return {
            "model": self.model,
            "aspect_ratio": self.aspect_ratio,
            "image_size": self.image_size,
            "temperature": self.temperature,
            "quiet_period_seconds": self.quiet_period_seconds,
            "simple_quiet_period_seconds": self.simple_quiet_period_seconds,
            "tick_interval_seconds": self.tick_interval_seconds,
        }


@dataclass
class Storage:
    """Where local and remote state lives."""

    data_dir: str = str(GLOBAL_CONFIG_DIR)
    user_id: str = ""

    @classmethod
    def from_dict(cls, data: dict) -> "Storage":
        return cls(
            data_dir=data.get("data_dir", str(GLOBAL_CONFIG_DIR)),
            user_id=data.get("user_id", "") or "",
        )

    def merge_env(self) -> "Storage":
        return Storage(
            data_dir=self.data_dir,
            user_id=os.getenv("BANANA_BATCH_USER") or self.user_id,
        )

    @property
    def data_path(self) -> Path:
        return Path(self.data_dir).expanduser()

    @property
    def documents_dir(self) -> Path:
        return self.data_path / "documents"

    @property
    def local_store_path(self) -> Path:
        return self.data_path / "local_store.json"


@dataclass
class Config:
    """Complete configuration."""

    api_keys: APIKeys = field(default_factory=APIKeys)
    defaults: Defaults = field(default_factory=Defaults)
    storage: Storage = field(default_factory=Storage)

    @classmethod
    def from_dict(cls, data: dict) -> "Config":
        return cls(
            api_keys=APIKeys.from_dict(data.get("api_keys", {}) or {}),
            defaults=Defaults.from_dict(data.get("defaults", {}) or {}),
            storage=Storage.from_dict(data.get("storage", {}) or {}),
        )

    def to_dict(self) -> dict:
        return {
            "api_keys": {
                "google": self.api_keys.google,
            },
            "defaults": self.defaults.to_dict(),
            "storage": {
                "data_dir": self.storage.data_dir,
                "user_id": self.storage.user_id,
            },
        }

    @classmethod
    def load(cls, config_path: Optional[Path] = None) -> "Config":
        """Load configuration from file and environment."""
        config_path = config_path or GLOBAL_CONFIG_FILE

        # Start with defaults
        config = cls()

        # Load from file if exists
        if config_path.exists():
            with open(config_path) as f:
                data = yaml.safe_load(f) or {}
                config = cls.from_dict(data)

        # Merge environment variables (they take precedence)
        config.api_keys = config.api_keys.merge_env()
        config.storage = config.storage.merge_env()

        return config

    def save(self, config_path: Optional[Path] = None) -> None:
        """Save configuration to file."""
        config_path = config_path or GLOBAL_CONFIG_FILE
        config_path.parent.mkdir(parents=True, exist_ok=True)

        with open(config_path, "w") as f:
            yaml.dump(self.to_dict(), f, default_flow_style=False)

    def to_text(self) -> str:
        return yaml.dump(self.to_dict(), default_flow_style=False)

    def validate_settings(self) -> list[str]:
        """Check the generation and autosave settings; credentials are not checked."""
        issues = []

        try:
            ImageModel.from_string(self.defaults.model)
        except UnknownModelError as e:
            issues.append(str(e))

        if self.defaults.aspect_ratio not in ASPECT_RATIOS:
            issues.append(
                f"Unsupported aspect ratio {self.defaults.aspect_ratio} "
                f"(use one of {', '.join(ASPECT_RATIOS)})"
            )
        if self.defaults.image_size not in IMAGE_SIZES:
            issues.append(
                f"Unsupported image size {self.defaults.image_size} "
                f"(use one of {', '.join(IMAGE_SIZES)})"
            )
        if not 0.0 <= self.defaults.temperature <= 2.0:
            issues.append(f"Temperature {self.defaults.temperature} must be between 0 and 2")
        if self.defaults.quiet_period_seconds <= 0 or self.defaults.simple_quiet_period_seconds <= 0:
            issues.append("Quiet periods must be positive")
        if self.defaults.tick_interval_seconds <= 0:
            issues.append("Tick interval must be positive")

        return issues

    def validate(self) -> list[str]:
        """Validate configuration and return list of issues."""
        issues = []

        if not self.api_keys.google:
            issues.append("Google API key not configured (GEMINI_API_KEY or GOOGLE_API_KEY)")
        if not self.storage.user_id:
            issues.append("User not configured (storage.user_id or BANANA_BATCH_USER)")

        return issues + self.validate_settings()

    def apply_text(self, text: str) -> "Config":
        """Parse edited YAML text into a new validated Config.

        Raises ConfigError on a parse or validation failure; self is never
        modified.
        """
        try:
            data = yaml.safe_load(text)
        except yaml.YAMLError as e:
            raise ConfigError(f"Invalid YAML: {e}") from e

        if not isinstance(data, dict):
            raise ConfigError("Configuration must be a mapping")
        missing = [key for key in ("defaults", "storage") if key not in data]
        if missing:
            raise ConfigError(f"Missing required config keys ({', '.join(missing)})")

        try:
            candidate = Config.from_dict(data)
        except (TypeError, ValueError, AttributeError) as e:
            raise ConfigError(f"Invalid configuration value: {e}") from e

        issues = candidate.validate_settings()
        if issues:
            raise ConfigError("; ".join(issues), issues=issues)
        return candidate


def ensure_global_config_dir() -> Path:
    """Ensure global config directory exists and return path."""
    GLOBAL_CONFIG_DIR.mkdir(parents=True, exist_ok=True)
    return GLOBAL_CONFIG_DIR
