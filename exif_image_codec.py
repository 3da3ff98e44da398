#!/usr/bin/env python3
"""
EXIF Image Codec

Wraps Pillow and piexif behind a small in-memory image object that exposes
its EXIF properties as a flat list of numerically identified tags, and can
re-encode itself (with any modified tags) into a byte stream of its original
format.
"""

import copy
import io
from dataclasses import dataclass
from pathlib import Path
from typing import Any, BinaryIO, Dict, Iterator, Optional, Tuple

import piexif
from PIL import Image

from exif_date_codec import ASCII_TYPE

BYTE_TYPE = 1
UNDEFINED_TYPE = 7
RATIONAL_TYPES = {5, 10}

# IFDs flattened into the property list, in lookup order
FLATTENED_IFDS = ("0th", "Exif")
_TAG_TABLES = {"0th": "Image", "Exif": "Exif"}

# Offsets to sub-IFDs; piexif regenerates them on dump
POINTER_TAGS = {
    piexif.ImageIFD.ExifTag,
    piexif.ImageIFD.GPSTag,
    piexif.ExifIFD.InteroperabilityTag,
}


class CodecOpenError(Exception):
    """Exception raised when a stream cannot be decoded as an image."""

    pass


def empty_exif_dict() -> Dict[str, Any]:
    """Return the piexif dictionary layout of an image without EXIF data."""
    return {"0th": {}, "Exif": {}, "GPS": {}, "Interop": {}, "1st": {}, "thumbnail": None}


def _tag_type(ifd_name: str, tag_id: int) -> int:
    table = piexif.TAGS[_TAG_TABLES[ifd_name]]
    return table.get(tag_id, {}).get("type", UNDEFINED_TYPE)


def _home_ifd(tag_id: int) -> str:
    """Pick the IFD a tag belongs to when it is not on the image yet."""
    if tag_id in piexif.TAGS["Exif"]:
        return "Exif"
    return "0th"


def _component_count(data_type: int, value: Any) -> int:
    if isinstance(value, (bytes, bytearray)):
        return len(value)
    if isinstance(value, tuple):
        if value and isinstance(value[0], tuple):
            return len(value)
        # A single rational is a (numerator, denominator) pair
        return 1 if data_type in RATIONAL_TYPES else len(value)
    return 1


@dataclass
class MetadataTag:
    """One EXIF property of an image.

    Byte-valued tags (BYTE, ASCII, UNDEFINED) hold raw bytes in ``value`` and
    ``length == len(value)``; ASCII values include their terminating NUL.
    Numeric tags keep piexif's decoded value and ``length`` counts components.
    """

    id: int
    data_type: int
    length: int
    value: Any

    def __post_init__(self):
        if isinstance(self.value, (bytes, bytearray)) and self.length != len(
            self.value
        ):
            raise ValueError(
                f"Tag {self.id} length {self.length} does not match "
                f"value size {len(self.value)}"
            )

    @classmethod
    def from_codec_value(
        cls, tag_id: int, data_type: int, raw_value: Any, terminator: bytes = b"\x00"
    ):
        """
        Build a tag from a value as decoded by piexif.

        piexif drops the last stored byte of ASCII values on load;
        ``terminator`` is that byte as it was stored.
        """
        if data_type == ASCII_TYPE and isinstance(raw_value, (bytes, bytearray)):
            value = bytes(raw_value) + terminator
        else:
            value = raw_value
        return cls(tag_id, data_type, _component_count(data_type, value), value)

    def to_codec_value(self) -> Any:
        """Convert back to the value piexif expects on dump."""
        if self.data_type == ASCII_TYPE and isinstance(self.value, (bytes, bytearray)):
            # piexif appends the terminator on dump
            if self.value.endswith(b"\x00"):
                return bytes(self.value[:-1])
            return bytes(self.value)
        return self.value

    def clone(self) -> "MetadataTag":
        """Return a shallow copy that can be relabelled independently."""
        return copy.copy(self)


class PropertyTagList:
    """Typed accessor over the EXIF tags of one image, keyed by tag id."""

    def __init__(
        self,
        exif_dict: Dict[str, Any],
        terminators: Optional[Dict[Tuple[str, int], bytes]] = None,
    ):
        self.exif_dict = exif_dict
        terminators = terminators or {}
        self._tags: Dict[int, MetadataTag] = {}
        self._homes: Dict[int, str] = {}

        for ifd_name in FLATTENED_IFDS:
            for tag_id, raw_value in exif_dict.get(ifd_name, {}).items():
                if tag_id in POINTER_TAGS or tag_id in self._tags:
                    continue
                self._tags[tag_id] = MetadataTag.from_codec_value(
                    tag_id,
                    _tag_type(ifd_name, tag_id),
                    raw_value,
                    terminators.get((ifd_name, tag_id), b"\x00"),
                )
                self._homes[tag_id] = ifd_name

    def __len__(self) -> int:
        return len(self._tags)

    def __iter__(self) -> Iterator[MetadataTag]:
        return iter(list(self._tags.values()))

    def __contains__(self, tag_id: int) -> bool:
        return tag_id in self._tags

    def try_get(self, tag_id: int) -> Optional[MetadataTag]:
        """Return the tag with ``tag_id``, or None if the image has none."""
        return self._tags.get(tag_id)

    def first(self) -> Optional[MetadataTag]:
        """Return the first tag in lookup order, or None if there are none."""
        return next(iter(self._tags.values()), None)

    def set_property_item(self, tag: MetadataTag) -> None:
        """Store ``tag`` on the image, replacing any tag with the same id."""
        home = self._homes.get(tag.id) or _home_ifd(tag.id)
        self.exif_dict.setdefault(home, {})[tag.id] = tag.to_codec_value()
        self._tags[tag.id] = tag
        self._homes[tag.id] = home


def _load_exif_dict(data: bytes, pil_image) -> Dict[str, Any]:
    exif_bytes = pil_image.info.get("exif")
    if exif_bytes:
        return piexif.load(exif_bytes)
    if pil_image.format == "TIFF":
        # TIFF tags live in the file header rather than an embedded block
        return piexif.load(data)
    return empty_exif_dict()


def _stored_terminators(
    pil_image, exif_dict: Dict[str, Any]
) -> Dict[Tuple[str, int], bytes]:
    """
    Find ASCII tags whose last stored byte is not a NUL.

    Pillow strips only a trailing NUL from ASCII values, so a Pillow string one
    character longer than piexif's bytes ends in the byte piexif dropped.
    """
    pillow_exif = pil_image.getexif()
    pillow_ifds = {
        "0th": dict(pillow_exif),
        "Exif": dict(pillow_exif.get_ifd(piexif.ImageIFD.ExifTag)),
    }

    terminators = {}
    for ifd_name, pillow_values in pillow_ifds.items():
        for tag_id, raw_value in exif_dict.get(ifd_name, {}).items():
            pillow_value = pillow_values.get(tag_id)
            if not isinstance(raw_value, bytes) or not isinstance(pillow_value, str):
                continue
            if len(pillow_value) == len(raw_value) + 1:
                terminators[(ifd_name, tag_id)] = pillow_value[-1].encode("latin-1")
    return terminators


class ExifImage:
    """
    An image held in memory together with its backing read stream.

    Use as a context manager so the Pillow image and the stream are released
    on every exit path, image first.
    """

    # Formats whose EXIF block can be replaced without re-encoding pixels
    LOSSLESS_INSERT_FORMATS = {"JPEG", "MPO", "WEBP"}

    def __init__(self, stream: BinaryIO, data: bytes, pil_image, properties):
        self.stream = stream
        self.data = data
        self.pil_image = pil_image
        self.format = pil_image.format
        self.properties = properties
        self.closed = False

    @classmethod
    def open(cls, file_path: Path) -> "ExifImage":
        """
        Open and decode an image file.

        Raises:
            CodecOpenError: If the file cannot be read or is not an image
        """
        try:
            stream = open(file_path, "rb")
        except OSError as e:
            raise CodecOpenError(f"Could not open {file_path}: {e}")

        pil_image = None
        try:
            data = stream.read()
            pil_image = Image.open(io.BytesIO(data))
            exif_dict = _load_exif_dict(data, pil_image)
            properties = PropertyTagList(
                exif_dict, _stored_terminators(pil_image, exif_dict)
            )
        except Exception as e:
            if pil_image is not None:
                pil_image.close()
            stream.close()
            raise CodecOpenError(f"Could not decode {file_path} as an image: {e}")

        return cls(stream, data, pil_image, properties)

    def encode(self, output: BinaryIO) -> None:
        """
        Write the image, with its current properties, to ``output``.

        JPEG and WebP get the new EXIF block spliced in losslessly; other
        formats are re-encoded by Pillow.
        """
        exif_bytes = piexif.dump(self.properties.exif_dict)
        if self.format in self.LOSSLESS_INSERT_FORMATS:
            piexif.insert(exif_bytes, self.data, output)
        else:
            self.pil_image.save(output, format=self.format, exif=exif_bytes)

    def close(self) -> None:
        if self.closed:
            return
        self.pil_image.close()
        self.stream.close()
        self.closed = True

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_value, traceback):
        self.close()
        return False
