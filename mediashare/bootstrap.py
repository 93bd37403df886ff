"""Bootstrap logic that validates the shared source and prepares cache directories."""

from __future__ import annotations

import logging
import shutil
from pathlib import Path
from typing import Any, Optional

from . import config as config_module
from .config import AppConfig, load_config

LOGGER = logging.getLogger(__name__)


class BootstrapError(RuntimeError):
    """Raised when initialization cannot be completed."""


class Bootstrapper:
    """High level object orchestrating initialization steps."""

    def __init__(self, config: AppConfig) -> None:
        self._config = config

    @property
    def config(self) -> AppConfig:
        return self._config

    def initialize(self) -> None:
        """Run all bootstrap tasks."""

        LOGGER.debug("Starting bootstrap sequence")
        self._ensure_source()
        self._ensure_directories()
        LOGGER.info("Bootstrap completed successfully")

    def _ensure_source(self) -> None:
        source_root = self._config.source_root
        if not source_root.exists():
            raise BootstrapError(f"Shared source '{source_root}' does not exist.")
        if not source_root.is_dir():
            raise BootstrapError(f"Shared source '{source_root}' is not a directory.")
        LOGGER.debug("Serving %s source from %s", self._config.source_kind, source_root)

    def _ensure_directories(self) -> None:
        cache_root = self._config.cache_root
        if not config_module._ensure_writable_directory(cache_root):
            raise BootstrapError(f"Cache directory '{cache_root}' is not writable.")

        # Outputs from a previous process are never reused; cache state is process-lifetime only.
        for path in (
            self._config.transcode_root,
            self._config.archive_root,
            self._config.poster_root,
        ):
            path.mkdir(parents=True, exist_ok=True)
            for child in path.iterdir():
                try:
                    if child.is_dir():
                        shutil.rmtree(child)
                    else:
                        child.unlink()
                except OSError as error:  # pragma: no cover - best effort cleanup
                    LOGGER.warning("Could not remove stale cache entry %s: %s", child, error)
            LOGGER.debug("Cleared cache directory: %s", path)


def initialize_app(config_path: Optional[Path] = None, **overrides: Any) -> AppConfig:
    """Convenience helper that loads configuration and runs initialization."""

    config = load_config(config_path=config_path).with_overrides(**overrides)
    bootstrapper = Bootstrapper(config)
    bootstrapper.initialize()
    return config


__all__ = ["BootstrapError", "Bootstrapper", "initialize_app"]
