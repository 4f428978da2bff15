"""Configuration management for production and test environments.

Paths for the database and the generated Markdown live in an
``EnvironmentConfig`` that can be switched between production and test mode.
API settings (OpenAI credentials, concurrency, timeouts) are loaded once into a
``Settings`` value and handed explicitly to the components that need them.
"""

import os
from pathlib import Path
from typing import Literal

from pydantic import BaseModel, Field, ValidationError

from ..utils.log import get_logger
from .errors import ConfigError

log = get_logger(__name__)

EnvironmentMode = Literal["production", "test"]

_DEFAULT_PRODUCTION_PATHS = {
    "db_path": Path("data/arxiv_explorer.sqlite"),
    "summary_dir": Path("data/summary"),
    "export_path": Path("data/autoresearch.md"),
}

# Test paths (completely separate from production)
_DEFAULT_TEST_PATHS = {
    "db_path": Path("test_data/arxiv_explorer.sqlite"),
    "summary_dir": Path("test_data/summary"),
    "export_path": Path("test_data/autoresearch.md"),
}

DEFAULT_MODEL = "gpt-4o-mini"
DEFAULT_TAG_FOCUS = "conditioning of musical generative models or related fields"


class EnvironmentConfig:
    """Manages environment-specific paths for the database and Markdown output."""

    def __init__(self, mode: EnvironmentMode = "production") -> None:
        self._mode: EnvironmentMode = mode
        self._paths: dict[str, Path] = {}
        self._load_paths()
        log.debug("environment_config_initialized", mode=mode, paths=str(self._paths))

    def _load_paths(self) -> None:
        if self._mode == "test":
            self._paths = _DEFAULT_TEST_PATHS.copy()
        else:
            self._paths = _DEFAULT_PRODUCTION_PATHS.copy()

    @property
    def mode(self) -> EnvironmentMode:
        """Get current environment mode."""
        return self._mode

    @property
    def db_path(self) -> Path:
        """Get SQLite database file path."""
        return self._paths["db_path"]

    @property
    def summary_dir(self) -> Path:
        """Get the directory receiving per-query Markdown summaries."""
        return self._paths["summary_dir"]

    @property
    def export_path(self) -> Path:
        """Get the path of the full Markdown export."""
        return self._paths["export_path"]

    def set_mode(self, mode: EnvironmentMode) -> None:
        """Change environment mode and reload paths."""
        if mode != self._mode:
            old_mode = self._mode
            self._mode = mode
            self._load_paths()
            log.info(
                "environment_mode_changed",
                old_mode=old_mode,
                new_mode=mode,
                new_paths=str(self._paths),
            )

    def get_summary(self) -> dict[str, str]:
        return {
            "mode": self._mode,
            **{k: str(v) for k, v in self._paths.items()},
        }


_config: EnvironmentConfig | None = None


def get_config() -> EnvironmentConfig:
    """Get the global configuration instance, initializing it in production mode."""
    global _config
    if _config is None:
        _config = EnvironmentConfig(mode="production")
    return _config


def set_test_mode() -> None:
    """Switch to test mode globally."""
    global _config
    if _config is None:
        _config = EnvironmentConfig(mode="test")
        log.info("initialized_in_test_mode", paths=_config.get_summary())
    else:
        _config.set_mode("test")
        log.info("switched_to_test_mode", paths=_config.get_summary())


class Settings(BaseModel):
    """Run settings for the enrichment pipeline."""

    openai_api_key: str = Field(min_length=1, repr=False)
    openai_model: str = DEFAULT_MODEL
    max_concurrent: int = Field(default=8, ge=1)
    enrich_timeout: float = Field(default=60.0, gt=0)
    max_results: int | None = Field(default=None, ge=1)
    tag_focus: str = DEFAULT_TAG_FOCUS


def load_settings(env: dict[str, str] | None = None) -> Settings:
    """
    Build ``Settings`` from environment variables.

    ``.env`` is expected to have been loaded already (the CLI calls
    ``load_dotenv`` at import time).

    Args:
        env: Mapping to read from instead of ``os.environ`` (used in tests)

    Raises:
        ConfigError: If ``OPENAI_API_KEY`` is missing or a value fails validation
    """
    source = os.environ if env is None else env

    api_key = source.get("OPENAI_API_KEY")
    if not api_key:
        log.error("openai_api_key_missing")
        raise ConfigError("OPENAI_API_KEY not set. Please set it in the environment or the .env file.")

    raw: dict[str, object] = {"openai_api_key": api_key}
    optional = {
        "OPENAI_MODEL": "openai_model",
        "ARXIV_EXPLORER_MAX_CONCURRENT": "max_concurrent",
        "ARXIV_EXPLORER_ENRICH_TIMEOUT": "enrich_timeout",
        "ARXIV_EXPLORER_MAX_RESULTS": "max_results",
        "ARXIV_EXPLORER_TAG_FOCUS": "tag_focus",
    }
    for env_name, field_name in optional.items():
        value = source.get(env_name)
        if value:
            raw[field_name] = value

    try:
        settings = Settings.model_validate(raw)
    except ValidationError as e:
        log.error("settings_invalid", error=str(e))
        raise ConfigError(f"Invalid configuration: {e}") from e

    log.debug(
        "settings_loaded",
        model=settings.openai_model,
        max_concurrent=settings.max_concurrent,
        enrich_timeout=settings.enrich_timeout,
        max_results=settings.max_results,
    )
    return settings
