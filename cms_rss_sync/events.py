"""Inbound webhook event schema for CMS RSS Sync."""

import base64
import binascii
import json
from dataclasses import dataclass
from enum import Enum
from typing import Any

from .models import read_flag


class InvalidEventError(ValueError):
    """Raised when an inbound event envelope is malformed."""


class TriggerType(str, Enum):
    """Kinds of CMS collection item events."""

    ITEM_CREATED = "collection_item_created"
    ITEM_CHANGED = "collection_item_changed"
    ITEM_DELETED = "collection_item_deleted"

    @property
    def is_upsert(self) -> bool:
        return self in (TriggerType.ITEM_CREATED, TriggerType.ITEM_CHANGED)


@dataclass
class EventPayload:
    """The item-level part of a webhook event."""

    collection_id: str
    item_id: str | None = None
    slug: str | None = None
    is_archived: bool = False
    is_draft: bool = False

    @property
    def delete_key(self) -> str | None:
        """Identifier used to derive the guid of a deleted item."""
        return self.slug or self.item_id


@dataclass
class WebhookEvent:
    """A CMS webhook event."""

    trigger_type: TriggerType
    payload: EventPayload

    @classmethod
    def from_dict(cls, data: Any) -> "WebhookEvent":
        """Validate a decoded event envelope.

        Raises:
            InvalidEventError: If required fields are missing or of the wrong type
        """
        if not isinstance(data, dict):
            raise InvalidEventError("Event body must be a JSON object")

        raw_trigger = data.get("triggerType")
        try:
            trigger_type = TriggerType(raw_trigger)
        except ValueError as e:
            raise InvalidEventError(f"Unsupported triggerType: {raw_trigger!r}") from e

        payload = data.get("payload")
        if not isinstance(payload, dict):
            raise InvalidEventError("Event has no payload object")

        collection_id = payload.get("collectionId")
        if not collection_id or not isinstance(collection_id, str):
            raise InvalidEventError("Event payload is missing collectionId")

        field_data = payload.get("fieldData")
        slug = payload.get("slug")
        if not slug and isinstance(field_data, dict):
            slug = field_data.get("slug")

        try:
            is_archived = read_flag(payload, "isArchived")
            is_draft = read_flag(payload, "isDraft")
        except ValueError as e:
            raise InvalidEventError(f"Invalid event payload: {e}") from e

        item_id = payload.get("id")
        event_payload = EventPayload(
            collection_id=collection_id,
            item_id=str(item_id) if item_id else None,
            slug=str(slug) if slug else None,
            is_archived=is_archived,
            is_draft=is_draft,
        )

        if trigger_type.is_upsert and not event_payload.item_id:
            raise InvalidEventError(f"{trigger_type.value} event payload is missing id")
        if trigger_type is TriggerType.ITEM_DELETED and not event_payload.delete_key:
            raise InvalidEventError("Delete event payload is missing slug and id")

        return cls(trigger_type=trigger_type, payload=event_payload)


def parse_event(event: dict[str, Any]) -> WebhookEvent:
    """Decode a Lambda proxy event into a WebhookEvent.

    The body may be a JSON string, a base64-encoded JSON string, or an
    already decoded object.

    Raises:
        InvalidEventError: If the body is missing or not valid JSON
    """
    if not isinstance(event, dict):
        raise InvalidEventError("Lambda event must be an object")

    body = event.get("body")
    if body is None:
        raise InvalidEventError("Lambda event has no body")

    if isinstance(body, (str, bytes)):
        if event.get("isBase64Encoded"):
            try:
                body = base64.b64decode(body)
            except (binascii.Error, ValueError) as e:
                raise InvalidEventError(f"Event body is not valid base64: {e}") from e
        try:
            body = json.loads(body)
        except (json.JSONDecodeError, UnicodeDecodeError) as e:
            raise InvalidEventError(f"Event body is not valid JSON: {e}") from e

    return WebhookEvent.from_dict(body)
