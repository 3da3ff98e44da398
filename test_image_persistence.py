#!/usr/bin/env python3
"""
Tests for the image_persistence module.
"""

import shutil
import tempfile
from datetime import datetime
from pathlib import Path
from unittest import mock

import piexif
import pytest
from PIL import Image

from exif_image_codec import ExifImage
from image_persistence import (
    EncodeFailedError,
    PersistError,
    WriteFailedError,
    commit_image,
    set_file_system_timestamps,
    stage_image,
)


class TestCommitImage:
    """Test suite for staged write-back of modified images."""

    def setup_method(self):
        """Set up test environment with a JPEG carrying a date taken."""
        self.test_directory = Path(tempfile.mkdtemp())
        self.test_image = self.test_directory / "photo.jpg"
        exif_dict = {"0th": {274: 1}, "Exif": {36867: b"2013:08:15 10:30:00"}}
        Image.new("RGB", (16, 16), color="blue").save(
            self.test_image, "JPEG", exif=piexif.dump(exif_dict)
        )
        self.original_bytes = self.test_image.read_bytes()

    def teardown_method(self):
        """Clean up after each test."""
        shutil.rmtree(self.test_directory)

    def open_with_new_date(self):
        image = ExifImage.open(self.test_image)
        date_tag = image.properties.try_get(36867)
        date_tag.value = b"1964:03:21 00:00:00\x00"
        image.properties.set_property_item(date_tag)
        return image

    def test_commit_writes_new_date(self):
        """Commit overwrites the file with the modified image."""
        # Arrange
        image = self.open_with_new_date()

        # Act
        result = commit_image(image, self.test_image)

        # Assert
        assert result.written is True
        assert result.staged_size == self.test_image.stat().st_size
        exif_dict = piexif.load(str(self.test_image))
        assert exif_dict["Exif"][36867] == b"1964:03:21 00:00:00"
        assert image.closed is True

    def test_commit_encode_failure_leaves_file_untouched(self):
        """If encoding fails the file on disk is byte-identical afterwards."""
        # Arrange
        image = self.open_with_new_date()

        # Act
        with mock.patch("exif_image_codec.piexif.dump", side_effect=ValueError("boom")):
            with pytest.raises(EncodeFailedError, match="boom"):
                commit_image(image, self.test_image)

        # Assert
        assert self.test_image.read_bytes() == self.original_bytes
        assert image.closed is True
        assert image.stream.closed is True

    def test_commit_preview_leaves_file_untouched(self):
        """Preview mode encodes the image but never writes it."""
        # Arrange
        image = self.open_with_new_date()
        original_mtime = self.test_image.stat().st_mtime

        # Act
        result = commit_image(
            image,
            self.test_image,
            preview=True,
            sync_file_times=True,
            new_date=datetime(2001, 2, 3, 4, 5, 6),
        )

        # Assert
        assert result.written is False
        assert result.staged_size > 0
        assert self.test_image.read_bytes() == self.original_bytes
        assert self.test_image.stat().st_mtime == original_mtime
        assert image.closed is True

    def test_commit_write_failure_raises(self):
        """A target that cannot be written raises WriteFailedError."""
        # Arrange
        image = self.open_with_new_date()
        blocked_target = self.test_directory / "blocked"
        blocked_target.mkdir()

        # Act & Assert
        with pytest.raises(WriteFailedError):
            commit_image(image, blocked_target)
        assert self.test_image.read_bytes() == self.original_bytes

    def test_commit_syncs_file_times(self):
        """Commit can set the file's timestamps to the new date taken."""
        # Arrange
        image = self.open_with_new_date()
        new_date = datetime(2001, 2, 3, 4, 5, 6)

        # Act
        commit_image(image, self.test_image, sync_file_times=True, new_date=new_date)

        # Assert
        file_stat = self.test_image.stat()
        modification_time = datetime.fromtimestamp(file_stat.st_mtime)
        access_time = datetime.fromtimestamp(file_stat.st_atime)
        assert abs((modification_time - new_date).total_seconds()) < 1
        assert abs((access_time - new_date).total_seconds()) < 1

    def test_stage_image_rewinds_buffer(self):
        """The staging buffer is positioned at its start, ready to copy."""
        # Arrange
        image = self.open_with_new_date()

        # Act
        with image:
            staging_buffer = stage_image(image)

        # Assert
        assert staging_buffer.tell() == 0
        assert staging_buffer.read(2) == b"\xff\xd8"

    def test_persist_errors_share_base_class(self):
        """Encode and write failures are both persistence errors."""
        # Act & Assert
        assert issubclass(EncodeFailedError, PersistError)
        assert issubclass(WriteFailedError, PersistError)


class TestFileSystemTimestamps:
    """Test suite for setting file system timestamps."""

    def setup_method(self):
        """Set up test environment before each test."""
        self.test_directory = Path(tempfile.mkdtemp())

    def teardown_method(self):
        """Clean up after each test."""
        shutil.rmtree(self.test_directory)

    def test_set_file_system_timestamps(self):
        """Modification and access time are both set to the given date."""
        # Arrange
        test_file = self.test_directory / "test_file.txt"
        test_file.write_text("test content")
        target_datetime = datetime(2023, 12, 25, 14, 30, 45)

        # Act
        set_file_system_timestamps(test_file, target_datetime)

        # Assert
        file_stat = test_file.stat()
        modification_time = datetime.fromtimestamp(file_stat.st_mtime)
        access_time = datetime.fromtimestamp(file_stat.st_atime)
        assert abs((modification_time - target_datetime).total_seconds()) < 1
        assert abs((access_time - target_datetime).total_seconds()) < 1
