"""RSS/Atom feed parsing for feed-based job sources."""

import xml.etree.ElementTree as ET
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Optional

import structlog
from dateutil import parser as date_parser

logger = structlog.get_logger()

ATOM = "{http://www.w3.org/2005/Atom}"
CONTENT_ENCODED = "{http://purl.org/rss/1.0/modules/content/}encoded"
DC_CREATOR = "{http://purl.org/dc/elements/1.1/}creator"


@dataclass
class FeedItem:
    title: str
    link: str
    description: Optional[str] = None
    content: Optional[str] = None
    guid: Optional[str] = None
    author: Optional[str] = None
    published: Optional[datetime] = None
    categories: list[str] = field(default_factory=list)


@dataclass
class Feed:
    title: str
    link: str
    description: str
    items: list[FeedItem]


def _get_text(element: ET.Element, tag: str) -> Optional[str]:
    """Get text content of a child element."""
    child = element.find(tag)
    if child is not None and child.text:
        return child.text.strip()
    return None


def _get_attr(element: ET.Element, tag: str, attr: str) -> Optional[str]:
    child = element.find(tag)
    if child is not None:
        return child.get(attr)
    return None


def parse_date(value: Optional[str]) -> Optional[datetime]:
    """Parse RFC 822 / ISO 8601 dates; naive results are taken as UTC."""
    if not value:
        return None
    try:
        parsed = date_parser.parse(str(value))
    except (ValueError, OverflowError):
        logger.debug("Unparseable feed date", value=value)
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def _parse_item(item: ET.Element) -> Optional[FeedItem]:
    title = _get_text(item, "title") or _get_text(item, f"{ATOM}title")
    link = _get_text(item, "link") or _get_attr(item, f"{ATOM}link", "href")

    if not title and not link:
        return None

    categories = [
        c.text.strip() for c in item.findall("category") if c.text and c.text.strip()
    ]
    categories += [
        c.get("term") for c in item.findall(f"{ATOM}category") if c.get("term")
    ]

    return FeedItem(
        title=title or "",
        link=link or "",
        description=_get_text(item, "description") or _get_text(item, f"{ATOM}summary"),
        content=_get_text(item, CONTENT_ENCODED) or _get_text(item, f"{ATOM}content"),
        guid=_get_text(item, "guid") or _get_text(item, f"{ATOM}id"),
        author=(
            _get_text(item, "author")
            or _get_text(item, DC_CREATOR)
            or _get_text(item, f"{ATOM}author/{ATOM}name")
        ),
        published=parse_date(
            _get_text(item, "pubDate")
            or _get_text(item, f"{ATOM}published")
            or _get_text(item, f"{ATOM}updated")
        ),
        categories=categories,
    )


def parse_feed(xml_text: str) -> Feed:
    """Parse an RSS 2.0 or Atom document.

    Raises ET.ParseError when the document is not well-formed XML.
    """
    root = ET.fromstring(xml_text)

    channel = root.find("channel")
    if channel is None:
        channel = root

    # Handle both RSS and Atom feeds
    elements = root.findall(".//item") or root.findall(f".//{ATOM}entry")
    items = [parsed for parsed in (_parse_item(el) for el in elements) if parsed]

    return Feed(
        title=_get_text(channel, "title") or _get_text(channel, f"{ATOM}title") or "",
        link=_get_text(channel, "link") or _get_attr(channel, f"{ATOM}link", "href") or "",
        description=(
            _get_text(channel, "description") or _get_text(channel, f"{ATOM}subtitle") or ""
        ),
        items=items,
    )
