#!/usr/bin/env python3
"""
Date Taken Changer

Changes the EXIF "date taken" (DateTimeOriginal) of photos, either to an
absolute date or by a human-readable offset, and optionally sets the file
system timestamps to the same value.
"""

import argparse
import glob
import json
import signal
import sys
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Tuple, Union

from date_adjuster import (
    DateAdjustment,
    DateOutOfRangeError,
    MissingOriginalDateError,
    TimeParsingError,
    compute_new_date,
    parse_absolute_date,
    parse_time_adjustment,
    set_absolute,
    shift_from_now,
    shift_from_original,
)
from exif_date_codec import MalformedDateError, decode_date_taken, encode_date_taken
from exif_image_codec import CodecOpenError, ExifImage, MetadataTag
from exif_tag_locator import TagSynthesisError, locate_date_tag
from image_persistence import PersistError, TimestampSyncError, commit_image


class PathError(Exception):
    """Exception raised when a path does not resolve to an existing file."""

    pass


class OutcomeStatus(Enum):
    UPDATED = "updated"
    SKIPPED = "skipped"
    FAILED = "failed"


@dataclass(frozen=True)
class FileDateOutcome:
    """Result of processing one file."""

    path: Path
    old_date_taken: Optional[datetime]
    new_date_taken: Optional[datetime]
    status: OutcomeStatus
    reason: Optional[str] = None
    written: bool = False

    def to_record(self) -> Dict[str, Any]:
        """Return the outcome as a JSON-serializable pass-through record."""
        return {
            "path": str(self.path),
            "old_date_taken": (
                self.old_date_taken.isoformat() if self.old_date_taken else None
            ),
            "new_date_taken": (
                self.new_date_taken.isoformat() if self.new_date_taken else None
            ),
            "status": self.status.value,
            "reason": self.reason,
            "written": self.written,
        }


class DateTakenChanger:
    """Applies one date adjustment to a batch of image files."""

    IMAGE_EXTENSIONS = {
        ".jpg",
        ".jpeg",
        ".png",
        ".tiff",
        ".tif",
        ".webp",
    }

    def __init__(
        self,
        adjustment: DateAdjustment,
        preview: bool = False,
        sync_file_times: bool = False,
        stop_on_failure: bool = False,
    ):
        """
        Initialize the date taken changer.

        Args:
            adjustment: Date adjustment applied to every file
            preview: If True, encode each image but never write to disk
            sync_file_times: If True, set file system timestamps to the new date
            stop_on_failure: If True, stop the batch at the first failed file
        """
        self.adjustment = adjustment
        self.preview = preview
        self.sync_file_times = sync_file_times
        self.stop_on_failure = stop_on_failure
        self.warnings: List[str] = []
        self.abort_requested = False

    def request_abort(self) -> None:
        """Stop the batch before the next file; the current file is finished."""
        self.abort_requested = True

    def find_image_files(self, directory: Path) -> List[Path]:
        """
        Recursively find all supported image files below a directory.

        Returns:
            Sorted list of Path objects for found image files
        """
        return sorted(
            file_path
            for file_path in directory.rglob("*")
            if self._is_supported_image_file(file_path)
        )

    def _is_supported_image_file(self, file_path: Path) -> bool:
        """Check if a file is a supported image file."""
        return (
            file_path.is_file() and file_path.suffix.lower() in self.IMAGE_EXTENSIONS
        )

    def resolve_paths(
        self, path_specifiers: Iterable[Union[str, Path]]
    ) -> Tuple[List[Path], List[str]]:
        """
        Resolve path specifiers to concrete files.

        Plain file paths are kept as given. Directories are searched
        recursively and glob patterns expanded; both only yield files with a
        supported image extension. A specifier naming an existing path is
        never expanded as a pattern.

        Returns:
            Tuple of (resolved files in order, specifiers that matched nothing)
        """
        resolved_files: List[Path] = []
        unresolved: List[str] = []
        seen = set()

        for specifier in path_specifiers:
            specifier = str(specifier)
            # Existing names such as IMG[1].jpg are taken literally
            is_pattern = not Path(specifier).exists() and any(
                char in specifier for char in "*?["
            )
            if is_pattern:
                candidates = []
                for match in sorted(glob.glob(specifier, recursive=True)):
                    match_path = Path(match)
                    if match_path.is_dir():
                        candidates.extend(self.find_image_files(match_path))
                    elif self._is_supported_image_file(match_path):
                        candidates.append(match_path)
            else:
                candidate_path = Path(specifier)
                if candidate_path.is_dir():
                    candidates = self.find_image_files(candidate_path)
                elif candidate_path.is_file():
                    candidates = [candidate_path]
                else:
                    candidates = []

            if not candidates:
                unresolved.append(specifier)

            for candidate_path in candidates:
                if candidate_path not in seen:
                    seen.add(candidate_path)
                    resolved_files.append(candidate_path)

        return resolved_files, unresolved

    def _write_date_tag(
        self, image: ExifImage, date_tag: MetadataTag, new_date: datetime
    ) -> None:
        encoded_date = encode_date_taken(new_date)
        date_tag.value = encoded_date
        date_tag.length = len(encoded_date)
        image.properties.set_property_item(date_tag)

    def _report(
        self,
        file_path: Path,
        status: OutcomeStatus,
        old_date_taken: Optional[datetime] = None,
        new_date_taken: Optional[datetime] = None,
        error: Optional[Exception] = None,
        written: bool = False,
    ) -> FileDateOutcome:
        reason = str(error) if error is not None else None
        if reason is not None:
            self.warnings.append(f"{file_path}: {reason}")
        return FileDateOutcome(
            file_path, old_date_taken, new_date_taken, status, reason, written
        )

    def process_single_file(self, file_path: Union[str, Path]) -> FileDateOutcome:
        """
        Process a single image: read its date taken, adjust it and write back.

        Every failure is turned into an outcome plus one warning; nothing
        propagates to the caller.

        Args:
            file_path: Path to the image file

        Returns:
            FileDateOutcome for the file
        """
        file_path = Path(file_path)
        if not file_path.is_file():
            return self._report(
                file_path,
                OutcomeStatus.FAILED,
                error=PathError(f"Path does not exist: {file_path}"),
            )

        old_date_taken = None
        new_date_taken = None
        try:
            with ExifImage.open(file_path) as image:
                located = locate_date_tag(image.properties)
                if not located.synthesized:
                    old_date_taken = decode_date_taken(located.tag.value)

                new_date_taken = compute_new_date(self.adjustment, old_date_taken)
                self._write_date_tag(image, located.tag, new_date_taken)

                commit_result = commit_image(
                    image,
                    file_path,
                    preview=self.preview,
                    sync_file_times=self.sync_file_times,
                    new_date=new_date_taken,
                )
        except (
            MalformedDateError,
            MissingOriginalDateError,
            DateOutOfRangeError,
        ) as e:
            return self._report(
                file_path, OutcomeStatus.SKIPPED, old_date_taken, error=e
            )
        except TimestampSyncError as e:
            # The image itself was written; only the file times are off
            return self._report(
                file_path,
                OutcomeStatus.UPDATED,
                old_date_taken,
                new_date_taken,
                error=e,
                written=True,
            )
        except (CodecOpenError, TagSynthesisError, PersistError) as e:
            return self._report(
                file_path, OutcomeStatus.FAILED, old_date_taken, new_date_taken, e
            )

        return self._report(
            file_path,
            OutcomeStatus.UPDATED,
            old_date_taken,
            new_date_taken,
            written=commit_result.written,
        )

    def process(
        self, path_specifiers: Iterable[Union[str, Path]]
    ) -> List[FileDateOutcome]:
        """
        Process every file the path specifiers resolve to, one at a time.

        A failing file does not stop the batch unless ``stop_on_failure`` is
        set. An abort request is honored between files only.
        """
        resolved_files, unresolved = self.resolve_paths(path_specifiers)

        outcomes = [
            self._report(
                Path(specifier),
                OutcomeStatus.FAILED,
                error=PathError(f"No image files found for: {specifier}"),
            )
            for specifier in unresolved
        ]
        if self.stop_on_failure and outcomes:
            return outcomes

        for file_path in resolved_files:
            if self.abort_requested:
                break

            outcome = self.process_single_file(file_path)
            outcomes.append(outcome)

            if self.stop_on_failure and outcome.status is OutcomeStatus.FAILED:
                break

        return outcomes

    @staticmethod
    def summarize(outcomes: List[FileDateOutcome]) -> Dict[str, int]:
        """Count outcomes per status."""
        counts = {status.value: 0 for status in OutcomeStatus}
        for outcome in outcomes:
            counts[outcome.status.value] += 1
        return counts


def build_adjustment(parsed_arguments: argparse.Namespace) -> DateAdjustment:
    """Turn command line arguments into a date adjustment."""
    if parsed_arguments.set_date is not None:
        return set_absolute(parse_absolute_date(parsed_arguments.set_date))

    time_delta = parse_time_adjustment(parsed_arguments.shift)
    if parsed_arguments.relative_to == "now":
        return shift_from_now(time_delta)
    return shift_from_original(time_delta)


def main():
    """Main entry point for the script."""
    parser = argparse.ArgumentParser(
        description="Change the EXIF date taken of photos",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  %(prog)s photo.jpg --set "1964:03:21 00:00:00"    # Backdate a scan
  %(prog)s /path/to/photos --shift "+1h 30min"       # Fix camera clock drift
  %(prog)s "trip/*.jpg" --shift=-2d --dry-run        # Preview changes
  %(prog)s scans --shift +0 --relative-to now        # Stamp with current time
  %(prog)s photo.jpg --set 2013-08-15T10:30:00 --decorate

Supported time units:
  y = years, m = months, w = weeks, d = days, h = hours, min = minutes, s = seconds
        """,
    )

    parser.add_argument(
        "paths", nargs="+", help="Image files, directories or glob patterns"
    )
    adjustment_group = parser.add_mutually_exclusive_group(required=True)
    adjustment_group.add_argument(
        "--set",
        dest="set_date",
        help="Absolute date taken ('yyyy:MM:dd HH:mm:ss' or ISO 8601)",
    )
    adjustment_group.add_argument(
        "--shift",
        help="Time adjustment (e.g., '+1y 2m 3d', '+2h 15min'). Write negative "
        "values as --shift=-5d.",
    )
    parser.add_argument(
        "--relative-to",
        choices=["original", "now"],
        default="original",
        help="Apply --shift to each photo's recorded date or to the current time",
    )
    parser.add_argument(
        "--sync-file-times",
        action="store_true",
        help="Also set file creation, modification and access times",
    )
    parser.add_argument(
        "--decorate",
        action="store_true",
        help="Print one JSON record per processed file",
    )
    parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Show what would be changed without modifying files",
    )
    parser.add_argument(
        "--stop-on-failure",
        action="store_true",
        help="Stop at the first file that cannot be updated",
    )

    parsed_arguments = parser.parse_args()

    try:
        adjustment = build_adjustment(parsed_arguments)
    except TimeParsingError as error:
        print(f"Error: {error}", file=sys.stderr)
        sys.exit(1)

    changer = DateTakenChanger(
        adjustment,
        preview=parsed_arguments.dry_run,
        sync_file_times=parsed_arguments.sync_file_times,
        stop_on_failure=parsed_arguments.stop_on_failure,
    )
    previous_handler = signal.signal(
        signal.SIGINT, lambda signum, frame: changer.request_abort()
    )
    try:
        outcomes = changer.process(parsed_arguments.paths)
    finally:
        signal.signal(signal.SIGINT, previous_handler)

    if parsed_arguments.decorate:
        for outcome in outcomes:
            print(json.dumps(outcome.to_record()))
    else:
        counts = changer.summarize(outcomes)
        print(f"{'DRY RUN ' if parsed_arguments.dry_run else ''}SUMMARY:")
        print(
            f"Files {'that would be ' if parsed_arguments.dry_run else ''}"
            f"updated: {counts['updated']}"
        )
        print(f"Files skipped: {counts['skipped']}")
        print(f"Files failed: {counts['failed']}")
        if changer.abort_requested:
            print("Aborted before all files were processed.")

    for warning in changer.warnings:
        print(f"\033[93mWARNING: {warning}\033[0m", file=sys.stderr)  # Yellow text

    if any(outcome.status is OutcomeStatus.FAILED for outcome in outcomes):
        sys.exit(1)


if __name__ == "__main__":
    main()
