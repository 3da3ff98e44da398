#!/usr/bin/env python3
"""
Image Persistence

Writes a modified image back to disk without risking the original: the image
is fully re-encoded into an in-memory staging buffer first, and the file on
disk is only truncated once encoding has succeeded.
"""

import io
import os
import shutil
import subprocess
import sys
from datetime import datetime
from pathlib import Path
from typing import NamedTuple, Optional

from exif_image_codec import ExifImage


class PersistError(Exception):
    """Exception raised when a modified image cannot be persisted."""

    pass


class EncodeFailedError(PersistError):
    """Re-encoding failed; the file on disk was not touched."""

    pass


class WriteFailedError(PersistError):
    """Writing the staged image failed; the file may be partially written."""

    pass


class TimestampSyncError(PersistError):
    """File system timestamps could not be set."""

    pass


class CommitResult(NamedTuple):
    written: bool
    staged_size: int


def stage_image(image: ExifImage) -> io.BytesIO:
    """
    Re-encode ``image`` into a staging buffer positioned at its start.

    Raises:
        EncodeFailedError: If the codec cannot encode the image
    """
    staging_buffer = io.BytesIO()
    try:
        image.encode(staging_buffer)
    except Exception as e:
        staging_buffer.close()
        raise EncodeFailedError(f"Could not encode {image.format} image: {e}")

    staging_buffer.seek(0)
    return staging_buffer


def write_staged_image(staging_buffer: io.BytesIO, target_path: Path) -> None:
    """
    Replace the contents of ``target_path`` with the staging buffer.

    Raises:
        WriteFailedError: If the file cannot be opened or written
    """
    try:
        with open(target_path, "wb") as output_file:
            shutil.copyfileobj(staging_buffer, output_file)
            output_file.flush()
    except OSError as e:
        raise WriteFailedError(f"Could not write {target_path}: {e}")


def commit_image(
    image: ExifImage,
    target_path: Path,
    preview: bool = False,
    sync_file_times: bool = False,
    new_date: Optional[datetime] = None,
) -> CommitResult:
    """
    Persist a modified image.

    The image and its read stream are always released before the target is
    opened for writing. In preview mode the image is still encoded, so encode
    failures surface, but nothing on disk changes.

    Args:
        image: Image with its modified tags already applied
        target_path: File to overwrite
        preview: If True, encode only and leave the file untouched
        sync_file_times: If True, set file system timestamps to ``new_date``
        new_date: New date taken, used for the file system timestamps

    Returns:
        CommitResult describing what was done

    Raises:
        EncodeFailedError: If encoding failed (file untouched)
        WriteFailedError: If writing failed
        TimestampSyncError: If the image was written but timestamps were not set
    """
    try:
        staging_buffer = stage_image(image)
    finally:
        image.close()

    with staging_buffer:
        staged_size = staging_buffer.seek(0, io.SEEK_END)
        staging_buffer.seek(0)
        if preview:
            return CommitResult(False, staged_size)
        write_staged_image(staging_buffer, target_path)

    if sync_file_times and new_date is not None:
        set_file_system_timestamps(target_path, new_date)

    return CommitResult(True, staged_size)


def set_file_system_timestamps(file_path: Path, when: datetime) -> None:
    """
    Set creation, modification and access time of a file to ``when``.

    Access and modification time are set everywhere. Creation time is set on
    Windows and on macOS (when SetFile is installed); Linux has no settable
    creation time.

    Raises:
        TimestampSyncError: If the timestamps could not be set
    """
    try:
        timestamp_value = when.timestamp()
        os.utime(file_path, (timestamp_value, timestamp_value))
    except (OSError, OverflowError, ValueError) as e:
        raise TimestampSyncError(
            f"Could not set file system timestamps for {file_path}: {e}"
        )

    if os.name == "nt":
        _set_windows_creation_time(file_path, when)
    elif sys.platform == "darwin" and shutil.which("SetFile"):
        _set_macos_creation_time(file_path, when)


def _set_windows_creation_time(file_path: Path, when: datetime) -> None:
    import pywintypes
    import win32con
    import win32file

    try:
        handle = win32file.CreateFile(
            str(file_path),
            win32file.GENERIC_WRITE,
            win32file.FILE_SHARE_READ | win32file.FILE_SHARE_WRITE,
            None,
            win32con.OPEN_EXISTING,
            win32con.FILE_ATTRIBUTE_NORMAL,
            None,
        )
        try:
            file_time = pywintypes.Time(when)
            win32file.SetFileTime(handle, file_time, file_time, file_time)
        finally:
            handle.Close()
    except pywintypes.error as e:
        raise TimestampSyncError(f"Could not set creation time for {file_path}: {e}")


def _set_macos_creation_time(file_path: Path, when: datetime) -> None:
    # SetFile expects MM/DD/YYYY HH:MM:SS
    date_str = when.strftime("%m/%d/%Y %H:%M:%S")
    try:
        subprocess.run(
            ["SetFile", "-d", date_str, str(file_path)],
            capture_output=True,
            text=True,
            check=True,
        )
    except (OSError, subprocess.CalledProcessError) as e:
        raise TimestampSyncError(f"Could not set creation time for {file_path}: {e}")
