"""RSS 2.0 document serialization for CMS RSS Sync.

The feed document is read with ElementTree and written as indented text so
that successive versions of the stored object diff line by line. Item bodies
are emitted as CDATA sections, which ElementTree cannot produce itself.
"""

import html
import re
import xml.etree.ElementTree as ET

from .models import Channel, Feed, Item

ATOM_NS = "http://www.w3.org/2005/Atom"
MEDIA_NS = "http://search.yahoo.com/mrss/"
CONTENT_NS = "http://purl.org/rss/1.0/modules/content/"

NAMESPACES = {
    "atom": ATOM_NS,
    "media": MEDIA_NS,
    "content": CONTENT_NS,
}

INDENT = "  "

# Characters that are not allowed anywhere in an XML 1.0 document
_INVALID_XML_RE = re.compile(r"[\x00-\x08\x0b\x0c\x0e-\x1f\ud800-\udfff\ufffe\uffff]")


class FeedParseError(ValueError):
    """Raised when a stored document cannot be decoded as an RSS 2.0 feed."""


def _clean(text: str | None) -> str:
    return _INVALID_XML_RE.sub("", text or "")


def _text(value: str | None) -> str:
    # Parsers fold a bare CR into LF, a character reference survives
    return html.escape(_clean(value), quote=False).replace("\r", "&#13;")


def _attr(value: str | None) -> str:
    escaped = html.escape(_clean(value), quote=True)
    return escaped.replace("\r", "&#13;").replace("\n", "&#10;").replace("\t", "&#9;")


def _cdata(value: str) -> str:
    # "]]>" would close the section early and CR cannot be written literally,
    # so both are moved outside the section
    value = _clean(value).replace("]]>", "]]]]><![CDATA[>")
    value = value.replace("\r", "]]>&#13;<![CDATA[")
    return f"<![CDATA[{value}]]>"


def _as_list(value) -> list:
    """Normalize a zero/one/many value into a list."""
    if value is None:
        return []
    if isinstance(value, list):
        return value
    return [value]


def _serialize_item(item: Item, depth: int) -> list[str]:
    pad = INDENT * depth
    inner = INDENT * (depth + 1)
    lines = [f"{pad}<item>"]
    lines.append(f"{inner}<title>{_text(item.title)}</title>")
    lines.append(f"{inner}<link>{_text(item.link)}</link>")
    lines.append(f"{inner}<guid>{_text(item.guid)}</guid>")
    lines.append(f"{inner}<description>{_text(item.description)}</description>")
    lines.append(f"{inner}<pubDate>{_text(item.pub_date)}</pubDate>")
    if item.image_url:
        url = _attr(item.image_url)
        lines.append(f'{inner}<media:content url="{url}" medium="image"/>')
        lines.append(f'{inner}<media:thumbnail url="{url}"/>')
    lines.append(
        f'{inner}<content:encoded xmlns:content="{CONTENT_NS}">'
        f"{_cdata(item.body)}</content:encoded>"
    )
    lines.append(f"{pad}</item>")
    return lines


def serialize(feed: Feed) -> bytes:
    """Render a Feed as an RSS 2.0 document.

    Namespace declarations are written once on the root element whatever
    the number of items; content:encoded repeats its own declaration so each
    body stays self-describing when an item is copied out of the document.

    Args:
        feed: The feed to render

    Returns:
        UTF-8 encoded document
    """
    channel = feed.channel
    lines = ['<?xml version="1.0" encoding="UTF-8"?>']
    declarations = " ".join(
        f'xmlns:{prefix}="{uri}"' for prefix, uri in NAMESPACES.items()
    )
    lines.append(f'<rss version="{_attr(feed.version)}" {declarations}>')
    lines.append(f"{INDENT}<channel>")
    pad = INDENT * 2
    lines.append(f"{pad}<title>{_text(channel.title)}</title>")
    lines.append(f"{pad}<link>{_text(channel.link)}</link>")
    lines.append(f"{pad}<description>{_text(channel.description)}</description>")
    lines.append(
        f'{pad}<atom:link href="{_attr(channel.self_link)}" rel="self" '
        'type="application/rss+xml"/>'
    )
    for item in channel.items:
        lines.extend(_serialize_item(item, 2))
    lines.append(f"{INDENT}</channel>")
    lines.append("</rss>")
    return ("\n".join(lines) + "\n").encode("utf-8")


def _child_text(element: ET.Element, tag: str) -> str:
    child = element.find(tag)
    if child is None or child.text is None:
        return ""
    return child.text


def _parse_item(element: ET.Element) -> Item:
    link = _child_text(element, "link")
    guid = _child_text(element, "guid") or link

    image_url = None
    media = _as_list(element.find(f"{{{MEDIA_NS}}}content"))
    if not media:
        media = _as_list(element.find(f"{{{MEDIA_NS}}}thumbnail"))
    if media:
        image_url = media[0].get("url") or None

    return Item(
        title=_child_text(element, "title"),
        link=link,
        guid=guid,
        description=_child_text(element, "description"),
        pub_date=_child_text(element, "pubDate"),
        body=_child_text(element, f"{{{CONTENT_NS}}}encoded"),
        image_url=image_url,
    )


def parse(document: bytes) -> Feed:
    """Decode an RSS 2.0 document into a Feed.

    Args:
        document: Raw document bytes

    Returns:
        Feed whose channel.items is always a list (possibly empty)

    Raises:
        FeedParseError: If the document is not well-formed RSS 2.0
    """
    try:
        root = ET.fromstring(document)
    except ET.ParseError as e:
        raise FeedParseError(f"Feed document is not well-formed XML: {e}") from e

    if root.tag != "rss":
        raise FeedParseError(f"Unexpected root element: {root.tag}")

    version = root.get("version", "")
    if version != "2.0":
        raise FeedParseError(f"Unsupported RSS version: {version!r}")

    channel_element = root.find("channel")
    if channel_element is None:
        raise FeedParseError("Feed document has no channel element")

    self_link = ""
    for link in channel_element.findall(f"{{{ATOM_NS}}}link"):
        if link.get("rel", "alternate") == "self":
            self_link = link.get("href", "")
            break

    items = [_parse_item(node) for node in _as_list(channel_element.findall("item"))]

    return Feed(
        version=version,
        channel=Channel(
            title=_child_text(channel_element, "title"),
            link=_child_text(channel_element, "link"),
            description=_child_text(channel_element, "description"),
            self_link=self_link,
            items=items,
        ),
    )
