"""Configuration loading utilities for the Drive GIF gallery."""

from __future__ import annotations

import contextlib
import json
import logging
import os
import tempfile
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Iterable, Mapping, Optional, Tuple

from dotenv import load_dotenv


LOGGER = logging.getLogger(__name__)


_PERMISSION_SENTINEL = ".drive_gif_gallery_write_check"

ENV_SERVICE_ACCOUNT_KEY = "GOOGLE_SERVICE_ACCOUNT_KEY"
ENV_SERVICE_ACCOUNT_FILE = "GOOGLE_SERVICE_ACCOUNT_FILE"
ENV_SOURCE_FOLDER = "GOOGLE_DRIVE_FOLDER_ID"
ENV_TARGET_FOLDER = "GOOGLE_DRIVE_MP4_FOLDER_ID"
ENV_HOST = "HOST"
ENV_PORT = "PORT"


def _ensure_writable_directory(path: Path) -> bool:
    """Return ``True`` if *path* can be created and written to."""

    try:
        path.mkdir(parents=True, exist_ok=True)
    except OSError:
        return False

    test_file = path / _PERMISSION_SENTINEL
    try:
        with test_file.open("w", encoding="utf-8") as handle:
            handle.write("ok")
    except OSError:
        return False
    finally:
        with contextlib.suppress(OSError):
            test_file.unlink()

    return True


def _select_writable_directory(
    preferred: Path,
    *,
    label: str,
    fallbacks: Iterable[Path] = (),
) -> Tuple[Path, bool]:
    """Return a usable directory based on ``preferred`` and ``fallbacks``.

    The first writable candidate wins. When neither ``preferred`` nor any of
    the fallbacks can be prepared, ``preferred`` is returned unchanged and the
    bootstrap step reports the problem.
    """

    preferred = preferred.resolve()
    if _ensure_writable_directory(preferred):
        return preferred, False

    for fallback in fallbacks:
        candidate = fallback.resolve()
        if candidate == preferred:
            continue
        if _ensure_writable_directory(candidate):
            LOGGER.warning(
                "Preferred %s directory '%s' is not writable; using fallback '%s'.",
                label,
                preferred,
                candidate,
            )
            return candidate, True

    LOGGER.warning(
        "%s directory '%s' is not writable and no fallback is available.",
        label.capitalize(),
        preferred,
    )
    return preferred, False


def _clean(value: Optional[str]) -> Optional[str]:
    if value is None:
        return None
    stripped = value.strip()
    return stripped or None


def _parse_service_account_key(raw: Optional[str]) -> Optional[Dict[str, Any]]:
    raw = _clean(raw)
    if raw is None:
        return None
    try:
        parsed = json.loads(raw)
    except json.JSONDecodeError as error:
        LOGGER.warning("%s is not valid JSON: %s", ENV_SERVICE_ACCOUNT_KEY, error)
        return None
    if not isinstance(parsed, dict) or not parsed:
        LOGGER.warning("%s must contain a JSON object", ENV_SERVICE_ACCOUNT_KEY)
        return None
    return parsed


def _parse_port(raw: Optional[str], default: int) -> int:
    raw = _clean(raw)
    if raw is None:
        return default
    try:
        port = int(raw)
    except ValueError:
        LOGGER.warning("Ignoring invalid %s value %r; using %s", ENV_PORT, raw, default)
        return default
    if not 0 < port < 65536:
        LOGGER.warning("Ignoring out-of-range %s value %s; using %s", ENV_PORT, port, default)
        return default
    return port


@dataclass(frozen=True)
class EncoderSettings:
    """FFmpeg options applied to every GIF to MP4 conversion."""

    video_codec: str = "libx264"
    pixel_format: str = "yuv420p"
    frame_rate: int = 30
    crf: int = 23
    preset: str = "medium"

    @classmethod
    def from_mapping(cls, mapping: Optional[Mapping[str, Any]]) -> "EncoderSettings":
        if not mapping:
            return cls()
        defaults = cls()
        return cls(
            video_codec=str(mapping.get("video_codec", defaults.video_codec)),
            pixel_format=str(mapping.get("pixel_format", defaults.pixel_format)),
            frame_rate=int(mapping.get("frame_rate", defaults.frame_rate)),
            crf=int(mapping.get("crf", defaults.crf)),
            preset=str(mapping.get("preset", defaults.preset)),
        )


@dataclass(frozen=True)
class AppConfig:
    """Runtime settings: scratch paths, Drive folders, credentials and scheduling."""

    temp_root: Path
    log_root: Path
    source_folder_id: Optional[str] = None
    target_folder_id: Optional[str] = None
    service_account_info: Optional[Dict[str, Any]] = None
    service_account_file: Optional[Path] = None
    host: str = "127.0.0.1"
    port: int = 3000
    sweep_interval_seconds: float = 60.0
    sweep_initial_delay_seconds: float = 10.0
    max_concurrent_conversions: int = 2
    dedupe_in_flight: bool = True
    encoder: EncoderSettings = field(default_factory=EncoderSettings)

    @property
    def has_credentials(self) -> bool:
        return bool(self.service_account_info) or self.service_account_file is not None

    @property
    def sweep_enabled(self) -> bool:
        return self.sweep_interval_seconds > 0

    @classmethod
    def from_mapping(
        cls,
        mapping: Mapping[str, Any],
        *,
        base_path: Path,
        environ: Optional[Mapping[str, str]] = None,
    ) -> "AppConfig":
        env = os.environ if environ is None else environ

        preferred_temp = (base_path / mapping.get("temp_root", "temp")).resolve()
        home_root = Path.home() / ".drive_gif_gallery"
        temp_root, _ = _select_writable_directory(
            preferred_temp,
            label="temp",
            fallbacks=(home_root / "temp",),
        )

        preferred_logs = (base_path / mapping.get("log_root", "logs")).resolve()
        log_root, _ = _select_writable_directory(
            preferred_logs,
            label="log",
            fallbacks=(home_root / "logs", Path(tempfile.gettempdir()) / "drive_gif_gallery_logs"),
        )

        service_account_file = _clean(env.get(ENV_SERVICE_ACCOUNT_FILE))
        default_port = int(mapping.get("port", 3000))

        max_concurrent = int(mapping.get("max_concurrent_conversions", 2))
        if max_concurrent < 1:
            LOGGER.warning(
                "max_concurrent_conversions must be at least 1 (got %s); using 1",
                max_concurrent,
            )
            max_concurrent = 1

        return cls(
            temp_root=temp_root,
            log_root=log_root,
            source_folder_id=_clean(env.get(ENV_SOURCE_FOLDER)),
            target_folder_id=_clean(env.get(ENV_TARGET_FOLDER)),
            service_account_info=_parse_service_account_key(env.get(ENV_SERVICE_ACCOUNT_KEY)),
            service_account_file=Path(service_account_file) if service_account_file else None,
            host=_clean(env.get(ENV_HOST)) or str(mapping.get("host", "127.0.0.1")),
            port=_parse_port(env.get(ENV_PORT), default_port),
            sweep_interval_seconds=max(float(mapping.get("sweep_interval_seconds", 60)), 0.0),
            sweep_initial_delay_seconds=max(
                float(mapping.get("sweep_initial_delay_seconds", 10)), 0.0
            ),
            max_concurrent_conversions=max_concurrent,
            dedupe_in_flight=bool(mapping.get("dedupe_in_flight", True)),
            encoder=EncoderSettings.from_mapping(mapping.get("encoder")),
        )


def load_config(
    config_path: Path | None = None,
    *,
    environ: Optional[Mapping[str, str]] = None,
) -> AppConfig:
    """Load ``config/default.json`` and apply environment overrides.

    When *environ* is omitted the process environment is used, after loading a
    ``.env`` file from the working directory if one exists.
    """

    base_path = Path(__file__).resolve().parent.parent
    if config_path is None:
        config_path = base_path / "config" / "default.json"

    if environ is None:
        load_dotenv()

    with config_path.open("r", encoding="utf-8") as config_file:
        raw_config = json.load(config_file)

    return AppConfig.from_mapping(raw_config, base_path=base_path, environ=environ)


__all__ = ["AppConfig", "EncoderSettings", "load_config"]
