"""Bootstrap logic that prepares the scratch and log directories."""

from __future__ import annotations

import logging
from pathlib import Path

from . import config as config_module
from .config import AppConfig, load_config
from .services.naming import SOURCE_EXTENSION, TARGET_EXTENSION

_SCRATCH_SUFFIXES = (SOURCE_EXTENSION, TARGET_EXTENSION)

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

    def initialize(self, *, clear_temp: bool = False) -> None:
        """Run all bootstrap tasks.

        ``clear_temp`` removes scratch GIF/MP4 files left behind by a previous
        server process; only the server passes it, and only at startup.
        """

        LOGGER.debug("Starting bootstrap sequence")
        self._ensure_directories()
        if clear_temp:
            self._clear_stale_temp_files()
        if not self._config.has_credentials:
            LOGGER.warning(
                "No Google service account configured; Drive endpoints will report errors."
            )
        LOGGER.info("Bootstrap completed successfully")

    def _ensure_directories(self) -> None:
        for label, path in (("temp", self._config.temp_root), ("log", self._config.log_root)):
            if not config_module._ensure_writable_directory(path):
                raise BootstrapError(f"The {label} directory '{path}' is not writable")
            LOGGER.debug("Ensured directory exists: %s", path)

    def _clear_stale_temp_files(self) -> None:
        # Only top-level <id>.gif / <id>.mp4 files belong to conversion runs.
        temp_root = self._config.temp_root
        for child in temp_root.iterdir():
            if not child.is_file() or child.suffix.lower() not in _SCRATCH_SUFFIXES:
                continue
            try:
                child.unlink()
            except OSError as error:  # pragma: no cover - best effort cleanup
                LOGGER.warning("Could not remove stale temp file %s: %s", child, error)
        LOGGER.debug("Cleared stale conversion files from %s", temp_root)


def initialize_app(config_path: Path | None = None, *, clear_temp: bool = False) -> AppConfig:
    """Convenience helper that loads configuration and runs initialization."""

    config = load_config(config_path=config_path)
    bootstrapper = Bootstrapper(config)
    bootstrapper.initialize(clear_temp=clear_temp)
    return config


__all__ = ["BootstrapError", "Bootstrapper", "initialize_app"]
