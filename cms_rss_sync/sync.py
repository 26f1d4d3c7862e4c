"""Feed synchronization engine for CMS RSS Sync."""

from datetime import UTC, datetime
from email.utils import format_datetime

from dateutil import parser as date_parser

from .cms import ContentFetcher
from .config import SyncConfig
from .logging_config import create_execution_logger
from .models import CmsRecord, Feed, Item
from .sanitizer import HtmlSanitizer
from .store import FeedStore


def parse_date(value: str | None) -> datetime | None:
    """Parse a CMS or RSS date string into an aware UTC datetime.

    Naive values are taken as UTC. Returns None when the value is empty or
    not a date.
    """
    if not value:
        return None
    try:
        parsed = date_parser.parse(value)
    except (ValueError, TypeError, OverflowError):
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=UTC)
    return parsed.astimezone(UTC)


def format_pub_date(value: datetime) -> str:
    """Render a datetime as RFC 2822 text in GMT."""
    return format_datetime(value.astimezone(UTC), usegmt=True)


def _sort_key(item: Item) -> tuple[int, float]:
    published = parse_date(item.pub_date)
    if published is None:
        return (0, 0.0)
    return (1, published.timestamp())


def sort_items(items: list[Item]) -> list[Item]:
    """Order items newest first.

    The sort is stable, so items with equal dates keep their relative order
    and sorting an already sorted list changes nothing. Items whose date
    cannot be parsed go last.
    """
    return sorted(items, key=_sort_key, reverse=True)


class SyncEngine:
    """Applies CMS changes to the feed and persists the result."""

    def __init__(
        self,
        store: FeedStore,
        fetcher: ContentFetcher | None,
        sanitizer: HtmlSanitizer,
        config: SyncConfig,
        execution_id: str | None = None,
    ):
        """Initialize the engine with its collaborators.

        Args:
            store: Feed document storage
            fetcher: CMS client, only needed by sync_item()
            sanitizer: HTML sanitizer for item bodies
            config: Link template and placeholders
            execution_id: Execution ID for logging context
        """
        self.store = store
        self.fetcher = fetcher
        self.sanitizer = sanitizer
        self.config = config
        self.logger = create_execution_logger("sync_engine", execution_id)

    def link_for(self, slug: str) -> str:
        """Derive an item's canonical link, which is also its guid."""
        return self.config.link_template.format(slug=slug)

    def build_item(self, record: CmsRecord) -> Item:
        """Build a feed item from a CMS record."""
        link = self.link_for(record.slug)

        published = parse_date(record.posted_date)
        if published is None:
            self.logger.warning(
                f"Unparseable post date for {record.slug}, using current time",
                item_guid=link,
                posted_date=record.posted_date,
            )
            published = datetime.now(UTC)

        body = record.body or self.config.missing_body

        return Item(
            title=record.name,
            link=link,
            guid=link,
            description=record.excerpt,
            pub_date=format_pub_date(published),
            body=self.sanitizer.sanitize(body),
            image_url=record.image_url,
        )

    def apply_upsert(self, feed: Feed, item: Item) -> Feed:
        """Replace or append an item, then restore date ordering."""
        items = feed.channel.items
        for index, existing in enumerate(items):
            if existing.guid == item.guid:
                items[index] = item
                self.logger.log_item_change(item.guid, "replaced")
                break
        else:
            items.append(item)
            self.logger.log_item_change(item.guid, "added")

        feed.channel.items = sort_items(items)
        return feed

    def apply_delete(self, feed: Feed, guid: str) -> bool:
        """Remove the item with the given guid.

        Returns:
            True if an item was removed, False if none matched
        """
        items = feed.channel.items
        for index, existing in enumerate(items):
            if existing.guid == guid:
                del items[index]
                self.logger.log_item_change(guid, "removed")
                return True

        self.logger.info(f"Item not found in feed, nothing to remove: {guid}", item_guid=guid)
        return False

    def upsert(self, feed: Feed, record: CmsRecord) -> Feed:
        """Add or update the feed entry for a CMS record and store the feed.

        Archived and draft records are never represented; they leave the
        feed and storage untouched.

        Raises:
            FeedWriteError: If storing the feed fails
        """
        if record.is_archived or record.is_draft:
            self.logger.info(
                f"Skipping archived or draft record: {record.slug}",
                item_guid=self.link_for(record.slug),
                is_archived=record.is_archived,
                is_draft=record.is_draft,
            )
            return feed

        item = self.build_item(record)
        self.apply_upsert(feed, item)
        self.store.put(feed)
        return feed

    def delete(self, feed: Feed, item_id: str) -> Feed:
        """Remove the feed entry derived from an item slug and store the feed.

        Deleting an item that is not in the feed is not an error.

        Raises:
            FeedWriteError: If storing the feed fails
        """
        guid = self.link_for(item_id)
        self.apply_delete(feed, guid)
        self.store.put(feed)
        return feed

    def sync_item(self, item_id: str) -> Feed:
        """Read the feed, fetch a CMS item and upsert it."""
        if self.fetcher is None:
            raise RuntimeError("SyncEngine has no ContentFetcher configured")
        feed = self.store.get()
        record = self.fetcher.fetch(item_id)
        return self.upsert(feed, record)

    def remove_item(self, item_id: str) -> Feed:
        """Read the feed and delete the entry for an item slug."""
        feed = self.store.get()
        return self.delete(feed, item_id)
