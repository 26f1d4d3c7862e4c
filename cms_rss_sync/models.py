"""Data models for CMS RSS Sync."""

from dataclasses import dataclass, field
from typing import Any


def read_flag(data: dict, key: str) -> bool:
    """Read an optional JSON boolean, treating a missing or null value as False.

    Raises:
        ValueError: If the value is present but not a boolean
    """
    value = data.get(key)
    if value is None:
        return False
    if not isinstance(value, bool):
        raise ValueError(f"{key} must be a boolean, got {value!r}")
    return value


@dataclass
class Item:
    """Represents a single RSS feed entry."""

    title: str
    link: str
    guid: str
    description: str
    pub_date: str  # RFC 2822 text, e.g. "Mon, 01 Jan 2024 00:00:00 GMT"
    body: str
    image_url: str | None = None

    def __post_init__(self):
        # An empty URL means no image, the same as a missing one
        if not self.image_url:
            self.image_url = None


@dataclass
class Channel:
    """Represents the RSS channel and its ordered items."""

    title: str
    link: str
    description: str
    self_link: str
    items: list[Item] = field(default_factory=list)


@dataclass
class Feed:
    """Represents the whole feed document."""

    channel: Channel
    version: str = "2.0"


@dataclass
class CmsRecord:
    """Represents a CMS collection item as returned by the read API."""

    id: str
    name: str
    slug: str
    excerpt: str
    posted_date: str | None
    image_url: str | None
    body: str | None
    is_archived: bool = False
    is_draft: bool = False

    @classmethod
    def from_api(cls, data: Any, field_mapping: Any) -> "CmsRecord":
        """Build a record from the CMS JSON body.

        Args:
            data: Decoded JSON body of the item
            field_mapping: FieldMapping naming the fieldData keys

        Returns:
            CmsRecord instance

        Raises:
            ValueError: If the body is not an object or lacks a slug
        """
        if not isinstance(data, dict):
            raise ValueError("CMS record must be a JSON object")

        field_data = data.get("fieldData")
        if not isinstance(field_data, dict):
            raise ValueError("CMS record has no fieldData object")

        slug = field_data.get(field_mapping.slug)
        if not slug or not isinstance(slug, str):
            raise ValueError(f"CMS record is missing '{field_mapping.slug}'")

        image = field_data.get(field_mapping.image)
        if isinstance(image, dict):
            image_url = image.get("url") or None
        elif isinstance(image, str):
            image_url = image or None
        else:
            image_url = None

        return cls(
            id=str(data.get("id", "")),
            name=str(field_data.get(field_mapping.title) or ""),
            slug=slug,
            excerpt=str(field_data.get(field_mapping.excerpt) or ""),
            posted_date=field_data.get(field_mapping.posted_date) or None,
            image_url=image_url,
            body=field_data.get(field_mapping.body) or None,
            is_archived=read_flag(data, "isArchived"),
            is_draft=read_flag(data, "isDraft"),
        )
