"""Structured log lines for Drive calls, scratch files and conversion runs.

Every event is one log record on ``drive_gif_gallery.events`` rendered as
``[KIND] message (key=value, ...)``. The cleaned fields are also attached to
the record as ``event_context`` so handlers can index them.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, Optional


DEFAULT_EVENT_LOGGER = logging.getLogger("drive_gif_gallery.events")

_MAX_VALUE_LENGTH = 200


def sanitize_context_value(value: Any) -> Any:
    """Return *value* as a number, a short string, or ``None`` when blank."""

    if value is None or isinstance(value, (bool, int, float)):
        return value
    text = str(value).strip()
    if not text:
        return None
    if len(text) > _MAX_VALUE_LENGTH:
        return text[:_MAX_VALUE_LENGTH] + "…"
    return text


def normalize_context(values: Optional[Dict[str, Any]]) -> Dict[str, Any]:
    """Drop unnamed and blank fields, keeping insertion order."""

    cleaned: Dict[str, Any] = {}
    for key, raw_value in (values or {}).items():
        value = sanitize_context_value(raw_value)
        if key and value is not None:
            cleaned[str(key)] = value
    return cleaned


def emit_structured_event(
    event_type: str,
    message: str,
    *,
    context: Optional[Dict[str, Any]] = None,
    duration_ms: Optional[float] = None,
    level: int = logging.INFO,
    logger: logging.Logger | logging.LoggerAdapter = DEFAULT_EVENT_LOGGER,
) -> None:
    summary = str(message).strip()
    fields = normalize_context(context)
    rendered = dict(fields)
    if duration_ms is not None:
        rendered["duration_ms"] = round(float(duration_ms), 1)

    line = f"[{event_type}] {summary}" if event_type else summary
    if rendered:
        line += " (" + ", ".join(f"{key}={value}" for key, value in rendered.items()) + ")"

    extra: Dict[str, Any] = {"event": summary, "event_type": event_type or ""}
    if fields:
        extra["event_context"] = fields
    if duration_ms is not None:
        extra["event_duration_ms"] = float(duration_ms)
    logger.log(level, line, extra=extra)


def emit_drive_event(action: str, **kwargs: Any) -> None:
    """Log a Drive API call such as ``files.list`` or ``files.create``."""

    kwargs.setdefault("level", logging.DEBUG)
    emit_structured_event("DRIVE_CALL", action, **kwargs)


def emit_file_event(operation: str, **kwargs: Any) -> None:
    """Log a scratch-file operation (download target written, cleanup)."""

    kwargs.setdefault("level", logging.DEBUG)
    emit_structured_event("FILE_OP", operation, **kwargs)


def emit_task_event(
    phase: str,
    message: str,
    *,
    context: Optional[Dict[str, Any]] = None,
    **kwargs: Any,
) -> None:
    """Log a conversion lifecycle change; *phase* leads the fields."""

    emit_structured_event(
        "TASK_STATE", message or phase, context={"phase": phase, **(context or {})}, **kwargs
    )


__all__ = [
    "DEFAULT_EVENT_LOGGER",
    "emit_drive_event",
    "emit_file_event",
    "emit_structured_event",
    "emit_task_event",
    "normalize_context",
    "sanitize_context_value",
]
