#!/usr/bin/env python3
"""
EXIF Tag Locator

Finds the DateTimeOriginal tag on an image, or fabricates one.

Some metadata writers cannot add a property key that does not exist yet;
they can only change the identity and payload of an existing slot. A missing
date tag is therefore synthesized by cloning an unrelated tag already on the
image and relabelling the copy.
"""

from typing import NamedTuple

from exif_date_codec import ASCII_TYPE, DATE_TAKEN_TAG_ID, ENCODED_DATE_LENGTH
from exif_image_codec import MetadataTag, PropertyTagList

ORIENTATION_TAG_ID = 274

# Tags tried as templates before falling back to the first tag on the image
PREFERRED_TEMPLATE_IDS = (ORIENTATION_TAG_ID,)

PLACEHOLDER_DATE_VALUE = b" " * (ENCODED_DATE_LENGTH - 1) + b"\x00"


class TagSynthesisError(Exception):
    """Exception raised when a date tag cannot be synthesized."""

    pass


class NoTemplateAvailableError(TagSynthesisError):
    """Exception raised when an image has no property to clone."""

    pass


class LocatedTag(NamedTuple):
    tag: MetadataTag
    synthesized: bool


def choose_template(properties: PropertyTagList) -> MetadataTag:
    """
    Pick the tag to clone when synthesizing a date tag.

    Raises:
        NoTemplateAvailableError: If the image carries no properties at all
    """
    for tag_id in PREFERRED_TEMPLATE_IDS:
        template = properties.try_get(tag_id)
        if template is not None:
            return template

    template = properties.first()
    if template is None:
        raise NoTemplateAvailableError("Image has no property tag to use as template")
    return template


def synthesize_from(template: MetadataTag) -> MetadataTag:
    """
    Clone ``template`` and relabel the copy as an empty DateTimeOriginal tag.

    The template itself is left untouched on the image.
    """
    date_tag = template.clone()
    date_tag.id = DATE_TAKEN_TAG_ID
    date_tag.data_type = ASCII_TYPE
    date_tag.length = ENCODED_DATE_LENGTH
    date_tag.value = PLACEHOLDER_DATE_VALUE
    return date_tag


def locate_date_tag(properties: PropertyTagList) -> LocatedTag:
    """
    Return the image's date tag, synthesizing one if the image has none.

    Raises:
        NoTemplateAvailableError: If the tag is absent and cannot be synthesized
    """
    existing_tag = properties.try_get(DATE_TAKEN_TAG_ID)
    if existing_tag is not None:
        return LocatedTag(existing_tag, False)

    return LocatedTag(synthesize_from(choose_template(properties)), True)
