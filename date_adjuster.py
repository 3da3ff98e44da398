#!/usr/bin/env python3
"""
Date Adjuster

Computes the new "date taken" value of a photo from a requested adjustment,
and parses the human-readable adjustments accepted on the command line.
"""

import re
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Optional, Union

from exif_date_codec import parse_exif_datetime_string


class TimeParsingError(Exception):
    """Exception raised when time format cannot be parsed."""

    pass


class MissingOriginalDateError(Exception):
    """Exception raised when a shift needs a recorded date the file lacks."""

    pass


class DateOutOfRangeError(Exception):
    """Exception raised when an adjusted date falls outside years 1 to 9999."""

    pass


@dataclass(frozen=True)
class AbsoluteDate:
    """Replace the date taken with ``target``."""

    target: datetime


@dataclass(frozen=True)
class OffsetFromReference:
    """Set the date taken to ``reference_point + delta``."""

    delta: timedelta
    reference_point: datetime


@dataclass(frozen=True)
class OffsetFromOriginal:
    """Shift the file's own recorded date taken by ``delta``."""

    delta: timedelta


DateAdjustment = Union[AbsoluteDate, OffsetFromReference, OffsetFromOriginal]


def set_absolute(target: datetime) -> AbsoluteDate:
    return AbsoluteDate(target)


def shift_from_now(delta: timedelta, now: Optional[datetime] = None) -> OffsetFromReference:
    """
    Offset relative to the moment of invocation.

    The reference is captured once here, so every file in a batch gets the
    same value no matter how long the batch takes.
    """
    if now is None:
        now = datetime.now()
    return OffsetFromReference(delta, now.replace(microsecond=0))


def shift_from_original(delta: timedelta) -> OffsetFromOriginal:
    return OffsetFromOriginal(delta)


def _shift(start: datetime, delta: timedelta) -> datetime:
    try:
        return start + delta
    except OverflowError:
        raise DateOutOfRangeError(
            f"Shifting {start:%Y:%m:%d %H:%M:%S} by {delta} leaves years 1 to 9999"
        )


def compute_new_date(
    adjustment: DateAdjustment, old_value: Optional[datetime]
) -> datetime:
    """
    Compute the new date taken for one file.

    Args:
        adjustment: The requested adjustment
        old_value: The file's current date taken, if it has one

    Returns:
        The date to write

    Raises:
        MissingOriginalDateError: If shifting from the original and there is none
        DateOutOfRangeError: If the shifted date is not representable
    """
    if isinstance(adjustment, AbsoluteDate):
        return adjustment.target

    if isinstance(adjustment, OffsetFromReference):
        return _shift(adjustment.reference_point, adjustment.delta)

    if isinstance(adjustment, OffsetFromOriginal):
        if old_value is None:
            raise MissingOriginalDateError("File has no recorded date taken to shift")
        return _shift(old_value, adjustment.delta)

    raise TypeError(f"Unsupported date adjustment: {adjustment!r}")


_UNIT_LENGTHS = {
    "y": timedelta(days=365),  # Approximate, ignoring leap years
    "m": timedelta(days=30),  # Approximate month length
    "w": timedelta(weeks=1),
    "d": timedelta(days=1),
    "h": timedelta(hours=1),
    "min": timedelta(minutes=1),
    "s": timedelta(seconds=1),
}


def parse_time_adjustment(time_string: str) -> timedelta:
    """
    Parse human-readable time adjustment string to timedelta.

    Supports formats like:
    - +5 (days)
    - +1y 2m 3d (1 year, 2 months, 3 days)
    - -2w 1d (subtract 2 weeks, 1 day)
    - +1h 30min 15s (camera clock drift)

    Args:
        time_string: Human-readable time adjustment string

    Returns:
        timedelta object representing the time adjustment

    Raises:
        TimeParsingError: If the format cannot be parsed
    """
    time_string = time_string.strip()

    if not time_string.startswith(("+", "-")):
        raise TimeParsingError(
            f"Time adjustment must start with + or -: {time_string}"
        )

    is_positive = time_string.startswith("+")
    time_string = time_string[1:].strip()

    # If it's just a number, assume days
    if time_string.isdigit():
        days = int(time_string)
        return timedelta(days=days if is_positive else -days)

    matches = re.findall(r"(\d+)\s*([a-z]+)", time_string.lower())
    if not matches:
        raise TimeParsingError(f"Invalid time format: {time_string}")

    total = timedelta()
    for value_str, unit in matches:
        if unit not in _UNIT_LENGTHS:
            raise TimeParsingError(f"Unsupported time unit: {unit}")
        try:
            total += int(value_str) * _UNIT_LENGTHS[unit]
        except OverflowError:
            raise TimeParsingError(f"Time adjustment too large: {time_string}")

    return total if is_positive else -total


def parse_absolute_date(date_string: str) -> datetime:
    """
    Parse a target date in EXIF notation ('2013:08:15 10:30:00') or ISO 8601.

    Raises:
        TimeParsingError: If neither notation matches
    """
    parsed = parse_exif_datetime_string(date_string)
    if parsed is not None:
        return parsed

    try:
        return datetime.fromisoformat(date_string.strip())
    except ValueError:
        raise TimeParsingError(f"Invalid date: {date_string}")
