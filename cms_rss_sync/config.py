"""Configuration management for CMS RSS Sync."""

import os
from dataclasses import dataclass, field
from enum import Enum


class ReadPolicy(str, Enum):
    """What FeedStore.get does when the stored document is missing or corrupt."""

    DEFAULT = "default"  # on-missing-or-corrupt -> default feed
    RAISE = "raise"


@dataclass
class FieldMapping:
    """Names of the CMS fieldData keys used to build a feed item."""

    title: str = "name"
    slug: str = "slug"
    excerpt: str = "post-excerpt"
    posted_date: str = "post---posted-date"
    image: str = "post-main-image"
    body: str = "post-body"


@dataclass
class StorageConfig:
    """Configuration for the S3 feed object."""

    bucket: str
    key: str = "rss.xml"
    region: str = "us-east-1"
    content_type: str = "application/rss+xml"
    read_policy: ReadPolicy = ReadPolicy.DEFAULT
    conditional_writes: bool = False
    connect_timeout: int = 5
    read_timeout: int = 10


@dataclass
class CmsConfig:
    """Configuration for the CMS read API."""

    collection_id: str
    api_token: str = ""
    api_base_url: str = "https://api.webflow.com/v2"
    token_secret_name: str = "cms-rss-sync-api-token"
    timeout: int = 10
    fields: FieldMapping = field(default_factory=FieldMapping)


@dataclass
class ChannelConfig:
    """Channel metadata used when no valid feed document exists."""

    title: str = "Website Channel Title"
    link: str = "https://www.example.com"
    description: str = "Website Channel Description"
    self_link: str = "https://example-bucket.s3.amazonaws.com/rss.xml"


@dataclass
class SyncConfig:
    """Configuration for item construction."""

    link_template: str = "https://www.example.com/blog/{slug}"
    missing_body: str = "No content available"


def _env_flag(name: str, default: bool = False) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


class Config:
    """Main configuration manager."""

    def __init__(self):
        """Initialize configuration from environment variables."""
        self.aws_region = os.getenv(
            "CURRENT_AWS_REGION", os.getenv("AWS_DEFAULT_REGION", "us-east-1")
        )
        self.feed_bucket = os.getenv("FEED_BUCKET_NAME", "")
        self.feed_key = os.getenv("FEED_OBJECT_KEY", "rss.xml")
        self.read_policy = os.getenv("FEED_READ_POLICY", ReadPolicy.DEFAULT.value)
        self.conditional_writes = _env_flag("FEED_CONDITIONAL_WRITES")

        self.collection_id = os.getenv("CMS_COLLECTION_ID", "")
        self.api_token = os.getenv("CMS_API_TOKEN", "")
        self.api_base_url = os.getenv("CMS_API_BASE_URL", "https://api.webflow.com/v2")
        self.token_secret_name = os.getenv(
            "CMS_TOKEN_SECRET_NAME", "cms-rss-sync-api-token"
        )
        self.cms_timeout = int(os.getenv("CMS_TIMEOUT_SECONDS", "10"))

        self.item_link_template = os.getenv(
            "ITEM_LINK_TEMPLATE", "https://www.example.com/blog/{slug}"
        )
        self.channel_title = os.getenv("FEED_TITLE", "Website Channel Title")
        self.channel_link = os.getenv("FEED_LINK", "https://www.example.com")
        self.channel_description = os.getenv(
            "FEED_DESCRIPTION", "Website Channel Description"
        )
        self.channel_self_link = os.getenv(
            "FEED_SELF_LINK",
            f"https://{self.feed_bucket or 'example-bucket'}.s3.amazonaws.com/{self.feed_key}",
        )

    def validate(self) -> None:
        """Check that required settings are present.

        Raises:
            ValueError: Listing every missing or invalid setting
        """
        problems = []
        if not self.feed_bucket.strip():
            problems.append("FEED_BUCKET_NAME is required")
        if not self.collection_id.strip():
            problems.append("CMS_COLLECTION_ID is required")
        if "{slug}" not in self.item_link_template:
            problems.append("ITEM_LINK_TEMPLATE must contain '{slug}'")
        else:
            try:
                self.item_link_template.format(slug="slug")
            except (KeyError, IndexError, ValueError) as e:
                problems.append(
                    f"ITEM_LINK_TEMPLATE must have '{{slug}}' as its only field ({e!r})"
                )
        if self.read_policy not in {policy.value for policy in ReadPolicy}:
            problems.append("FEED_READ_POLICY must be one of 'default', 'raise'")

        if problems:
            raise ValueError("Invalid configuration: " + "; ".join(problems))

    def get_storage_config(self) -> StorageConfig:
        """Get feed storage configuration."""
        return StorageConfig(
            bucket=self.feed_bucket,
            key=self.feed_key,
            region=self.aws_region,
            read_policy=ReadPolicy(self.read_policy),
            conditional_writes=self.conditional_writes,
        )

    def get_cms_config(self) -> CmsConfig:
        """Get CMS configuration."""
        # Token may be populated from Secrets Manager at runtime
        return CmsConfig(
            collection_id=self.collection_id,
            api_token=self.api_token,
            api_base_url=self.api_base_url.rstrip("/"),
            token_secret_name=self.token_secret_name,
            timeout=self.cms_timeout,
        )

    def get_channel_config(self) -> ChannelConfig:
        """Get default channel configuration."""
        return ChannelConfig(
            title=self.channel_title,
            link=self.channel_link,
            description=self.channel_description,
            self_link=self.channel_self_link,
        )

    def get_sync_config(self) -> SyncConfig:
        """Get sync engine configuration."""
        return SyncConfig(link_template=self.item_link_template)
