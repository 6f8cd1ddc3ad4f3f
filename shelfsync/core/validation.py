"""Validation of reading state before it is written to any store."""

import math
from typing import Any, Optional

from .exceptions import ValidationError

MIN_PROGRESS = 0.0
MAX_PROGRESS = 1.0
MIN_FONT_SIZE = 10
MAX_FONT_SIZE = 72
DEFAULT_FONT_SIZE = 18


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def validate_progress(progress: Any) -> float:
    """
    Validate a reading progress fraction.

    Raises:
        ValidationError: If progress is not a number in [0, 1]
    """
    if not _is_number(progress) or math.isnan(progress):
        raise ValidationError(
            f"Progress must be a number, got {progress!r}",
            field="progress",
            value=progress,
        )
    if not MIN_PROGRESS <= progress <= MAX_PROGRESS:
        raise ValidationError(
            f"Progress {progress} outside [{MIN_PROGRESS}, {MAX_PROGRESS}]",
            field="progress",
            value=progress,
        )
    return float(progress)


def validate_font_size(font_size: Any) -> int:
    """
    Validate a reader font size in pixels.

    Raises:
        ValidationError: If font size is not a whole number in [10, 72]
    """
    if not _is_number(font_size) or not math.isfinite(font_size) or int(font_size) != font_size:
        raise ValidationError(
            f"Font size must be a whole number, got {font_size!r}",
            field="font_size",
            value=font_size,
        )
    if not MIN_FONT_SIZE <= font_size <= MAX_FONT_SIZE:
        raise ValidationError(
            f"Font size {font_size} outside [{MIN_FONT_SIZE}, {MAX_FONT_SIZE}]",
            field="font_size",
            value=font_size,
        )
    return int(font_size)


def validate_reading_state(progress: Any, font_size: Optional[Any] = None) -> None:
    """Validate progress and, when given, font size."""
    validate_progress(progress)
    if font_size is not None:
        validate_font_size(font_size)


def validate_record(record: Any) -> None:
    """
    Validate the reading state carried by a record.

    Raises:
        ValidationError: If the record has no id or invalid reading state
    """
    if not getattr(record, "id", None):
        raise ValidationError("Record has no id", field="id")
    validate_reading_state(record.progress, record.font_size)
