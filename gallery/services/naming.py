"""Helpers for derived file names, Drive URLs and Drive query strings."""

from __future__ import annotations

__all__ = [
    "SOURCE_EXTENSION",
    "TARGET_EXTENSION",
    "derive_target_name",
    "escape_query_value",
    "gif_display_url",
    "mp4_download_url",
    "temp_paths",
]

from pathlib import Path
from typing import Tuple

SOURCE_EXTENSION = ".gif"
TARGET_EXTENSION = ".mp4"


def derive_target_name(source_name: str) -> str:
    """Return the MP4 name for the GIF called *source_name*.

    The trailing ``.gif`` (any case) is replaced with ``.mp4``. Names without
    the extension get ``.mp4`` appended so the mapping stays total.
    """

    if source_name.lower().endswith(SOURCE_EXTENSION):
        return source_name[: -len(SOURCE_EXTENSION)] + TARGET_EXTENSION
    return source_name + TARGET_EXTENSION


def escape_query_value(value: str) -> str:
    """Escape *value* for use inside a single-quoted Drive ``q`` literal."""

    return value.replace("\\", "\\\\").replace("'", "\\'")


def gif_display_url(file_id: str) -> str:
    return f"https://drive.google.com/thumbnail?id={file_id}&sz=w1000"


def mp4_download_url(file_id: str) -> str:
    return f"https://drive.google.com/uc?export=download&id={file_id}"


def temp_paths(temp_root: Path, source_id: str) -> Tuple[Path, Path]:
    """Return the scratch ``(gif, mp4)`` paths owned by a run for *source_id*."""

    return (
        temp_root / f"{source_id}{SOURCE_EXTENSION}",
        temp_root / f"{source_id}{TARGET_EXTENSION}",
    )
