#!/usr/bin/env python3
"""
EXIF Date Codec

Encodes and decodes the fixed-width "date taken" value stored in the EXIF
DateTimeOriginal tag: the ASCII text 'yyyy:MM:dd HH:mm:ss' followed by a
single NUL byte, 20 bytes in total.
"""

import re
from datetime import datetime
from typing import Optional

DATE_TAKEN_TAG_ID = 36867  # DateTimeOriginal
ASCII_TYPE = 2
ENCODED_DATE_LENGTH = 20
EXIF_DATE_FORMAT = "%Y:%m:%d %H:%M:%S"

_ENCODED_DATE_PATTERN = re.compile(
    rb"(\d{4}):(\d{2}):(\d{2}) (\d{2}):(\d{2}):(\d{2})\x00"
)


class DateCodecError(Exception):
    """Exception raised when a date tag value cannot be decoded."""

    pass


class MalformedDateError(DateCodecError):
    """Exception raised when tag bytes do not match the fixed EXIF date format."""

    pass


def decode_date_taken(value: bytes) -> datetime:
    """
    Decode a 20-byte EXIF date value into a datetime.

    The trailing NUL is part of the format: a value without it is rejected,
    as is any value of the wrong length or with non-numeric fields.

    Args:
        value: Raw tag bytes, including the terminating NUL

    Returns:
        Naive datetime with second precision

    Raises:
        MalformedDateError: If the bytes do not hold a valid EXIF date
    """
    if not isinstance(value, (bytes, bytearray)):
        raise MalformedDateError(
            f"Date value must be bytes, got {type(value).__name__}"
        )

    if len(value) != ENCODED_DATE_LENGTH:
        raise MalformedDateError(
            f"Date value must be {ENCODED_DATE_LENGTH} bytes, got {len(value)}"
        )

    match = _ENCODED_DATE_PATTERN.fullmatch(bytes(value))
    if not match:
        raise MalformedDateError(f"Date value does not match EXIF format: {value!r}")

    year, month, day, hour, minute, second = (int(field) for field in match.groups())
    try:
        return datetime(year, month, day, hour, minute, second)
    except ValueError as e:
        raise MalformedDateError(f"Date value is not a valid date: {value!r} ({e})")


def encode_date_taken(when: datetime) -> bytes:
    """
    Encode a datetime into the 20-byte EXIF date value.

    Microseconds are dropped. The year is always zero-padded to four digits so
    the result never changes length.
    """
    text = (
        f"{when.year:04d}:{when.month:02d}:{when.day:02d} "
        f"{when.hour:02d}:{when.minute:02d}:{when.second:02d}"
    )
    return text.encode("ascii") + b"\x00"


def parse_exif_datetime_string(date_string: str) -> Optional[datetime]:
    """Parse EXIF datetime string to datetime object."""
    try:
        return datetime.strptime(date_string.strip(), EXIF_DATE_FORMAT)
    except ValueError:
        return None
