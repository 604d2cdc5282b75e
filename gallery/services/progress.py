"""Utilities for reporting deterministic progress percentages."""

from __future__ import annotations

from typing import Optional


# fetch, transcode, upload, cleanup
CONVERSION_TOTAL_STEPS: int = 4

CONVERSION_STEP_LABELS = {
    1: "Downloading GIF",
    2: "Converting to MP4",
    3: "Uploading MP4",
    4: "Cleaning up",
}


def format_progress_message(
    message: str,
    completed_steps: Optional[float],
    total_steps: Optional[float],
) -> str:
    """Append a percentage indicator to ``message`` when possible.

    ``completed_steps`` is the number of stages that already finished and
    ``total_steps`` the number of stages in the pipeline. When the totals are
    unavailable (``None`` or zero) the message is returned unchanged.
    Percentages are clamped to ``[0, 100]``.
    """

    if completed_steps is None or total_steps in {None, 0}:
        return message

    try:
        ratio = float(completed_steps) / float(total_steps)
    except (TypeError, ValueError):
        return message

    clamped = max(0.0, min(ratio, 1.0))
    percent = int(round(clamped * 100))
    return f"{message} ({percent}%)"


def build_conversion_step_message(step: int, subject: str) -> str:
    """Return ``"Step n/4 – <label> for <subject> (pct%)"`` for pipeline *step*."""

    label = CONVERSION_STEP_LABELS.get(step, "Working")
    message = f"Step {step}/{CONVERSION_TOTAL_STEPS} – {label} for {subject}"
    return format_progress_message(message, step - 1, CONVERSION_TOTAL_STEPS)


__all__ = [
    "CONVERSION_STEP_LABELS",
    "CONVERSION_TOTAL_STEPS",
    "build_conversion_step_message",
    "format_progress_message",
]
