"""FFmpeg helpers that turn GIFs into web and social-media friendly MP4s."""

from __future__ import annotations

import logging
import shutil
import subprocess
from pathlib import Path
from typing import List, Optional

from ..config import EncoderSettings


LOGGER = logging.getLogger(__name__)

# Odd widths or heights are rejected by yuv420p H.264 encoders.
EVEN_DIMENSIONS_FILTER = "scale=trunc(iw/2)*2:trunc(ih/2)*2"


class TranscodeError(RuntimeError):
    """Raised when FFmpeg is missing or exits with a failure status."""


def build_ffmpeg_command(
    ffmpeg_path: str,
    source: Path,
    destination: Path,
    settings: EncoderSettings,
) -> List[str]:
    """Return the FFmpeg argument vector converting *source* into *destination*."""

    return [
        ffmpeg_path,
        "-hide_banner",
        "-loglevel",
        "error",
        "-y",
        "-i",
        str(source),
        "-movflags",
        "+faststart",
        "-c:v",
        settings.video_codec,
        "-pix_fmt",
        settings.pixel_format,
        "-vf",
        EVEN_DIMENSIONS_FILTER,
        "-r",
        str(settings.frame_rate),
        "-crf",
        str(settings.crf),
        "-preset",
        settings.preset,
        "-an",
        str(destination),
    ]


def transcode_gif_to_mp4(
    source: Path,
    destination: Path,
    settings: Optional[EncoderSettings] = None,
) -> Path:
    """Convert the GIF at *source* into an MP4 at *destination*.

    Raises :class:`TranscodeError` when FFmpeg is unavailable or fails. A
    partially written *destination* is removed before raising.
    """

    settings = settings or EncoderSettings()
    ffmpeg_path = shutil.which("ffmpeg")
    if ffmpeg_path is None:
        raise TranscodeError("GIF conversion requires FFmpeg to be installed on the server.")

    destination.parent.mkdir(parents=True, exist_ok=True)
    command = build_ffmpeg_command(ffmpeg_path, source, destination, settings)
    LOGGER.debug("Executing FFmpeg command: %s", " ".join(command))
    try:
        completed = subprocess.run(
            command, stdout=subprocess.PIPE, stderr=subprocess.PIPE, check=False
        )
    except OSError as error:
        raise TranscodeError(f"Unable to start FFmpeg: {error}") from error

    if completed.returncode != 0:
        destination.unlink(missing_ok=True)
        stderr = completed.stderr.decode("utf-8", errors="ignore").strip()
        stdout = completed.stdout.decode("utf-8", errors="ignore").strip()
        details = (stderr or stdout or "FFmpeg exited with a non-zero status.").splitlines()
        LOGGER.debug(
            "FFmpeg conversion failed (code=%s). stderr=%s stdout=%s",
            completed.returncode,
            stderr,
            stdout,
        )
        raise TranscodeError(
            f"Unable to convert GIF to MP4: {details[0] if details else 'Unknown error.'}"
        )

    LOGGER.debug("FFmpeg conversion succeeded; output stored at %s", destination)
    return destination


def ffmpeg_available() -> bool:
    """Return ``True`` when an FFmpeg binary is on ``PATH``."""

    return shutil.which("ffmpeg") is not None


__all__ = [
    "EVEN_DIMENSIONS_FILTER",
    "TranscodeError",
    "build_ffmpeg_command",
    "ffmpeg_available",
    "transcode_gif_to_mp4",
]
