"""Feed document storage on S3 for CMS RSS Sync."""

import boto3
from botocore.config import Config as BotoConfig
from botocore.exceptions import BotoCoreError, ClientError

from .config import ChannelConfig, ReadPolicy, StorageConfig
from .logging_config import create_execution_logger
from .models import Channel, Feed
from .serializer import FeedParseError, parse, serialize

MISSING_OBJECT_CODES = frozenset(["NoSuchKey", "404", "NotFound"])
PRECONDITION_CODES = frozenset(["PreconditionFailed", "412", "ConditionalRequestConflict"])


class FeedWriteError(RuntimeError):
    """Raised when the feed document cannot be written."""


class ConcurrentModificationError(FeedWriteError):
    """Raised when a conditional write finds the object changed since it was read."""


def default_feed(channel: ChannelConfig) -> Feed:
    """Build the empty feed used when no valid document is stored."""
    return Feed(
        channel=Channel(
            title=channel.title,
            link=channel.link,
            description=channel.description,
            self_link=channel.self_link,
            items=[],
        )
    )


class FeedStore:
    """Reads and writes the single feed document in S3.

    Writes replace the whole object. Without conditional writes two
    overlapping get/put cycles lose the earlier update (last writer wins).
    With conditional writes enabled the ETag seen by get() guards put(),
    and a conflict surfaces as ConcurrentModificationError; nothing is
    retried here.

    The execution role needs s3:ListBucket on the bucket as well as
    s3:GetObject and s3:PutObject on the key. Without ListBucket, S3 reports
    a missing object as AccessDenied, which get() propagates instead of
    falling back to the default feed, so the first event never creates it.
    """

    def __init__(
        self,
        config: StorageConfig,
        channel: ChannelConfig,
        s3_client=None,
        execution_id: str | None = None,
    ):
        """Initialize the FeedStore with S3 configuration.

        Args:
            config: Bucket, key and policy settings
            channel: Channel metadata for the default feed
            s3_client: Optional preconfigured boto3 S3 client
            execution_id: Execution ID for logging context
        """
        self.config = config
        self.channel = channel
        self.logger = create_execution_logger("feed_store", execution_id)
        self.s3 = s3_client or boto3.client(
            "s3",
            region_name=config.region,
            config=BotoConfig(
                connect_timeout=config.connect_timeout,
                read_timeout=config.read_timeout,
                retries={"max_attempts": 1, "mode": "standard"},
            ),
        )
        self.etag: str | None = None
        self._has_read = False

        self.logger.info(
            "FeedStore initialized",
            bucket=config.bucket,
            key=config.key,
            read_policy=config.read_policy.value,
            conditional_writes=config.conditional_writes,
        )

    def get(self) -> Feed:
        """Fetch and parse the stored feed document.

        Under ReadPolicy.DEFAULT a missing or unparsable document is replaced
        by default_feed(); the discarded error is logged and the previous
        content is lost on the next put(). Other S3 failures propagate.

        Returns:
            Parsed feed, or the default feed

        Raises:
            ClientError: For S3 errors other than a missing object, or for a
                missing object under ReadPolicy.RAISE
            FeedParseError: For a corrupt document under ReadPolicy.RAISE
        """
        self.etag = None
        self._has_read = True

        try:
            response = self.s3.get_object(Bucket=self.config.bucket, Key=self.config.key)
            document = response["Body"].read()
        except ClientError as e:
            error_code = e.response.get("Error", {}).get("Code", "Unknown")
            if error_code not in MISSING_OBJECT_CODES:
                self.logger.error(
                    f"Error reading feed document: {error_code}",
                    key=self.config.key,
                    error=str(e),
                )
                raise
            return self._fallback(e, "Feed document not found")

        self.etag = response.get("ETag")

        try:
            feed = parse(document)
        except FeedParseError as e:
            return self._fallback(e, "Feed document could not be parsed")

        self.logger.info(
            "Feed document loaded",
            key=self.config.key,
            items_count=len(feed.channel.items),
        )
        return feed

    def _fallback(self, error: Exception, reason: str) -> Feed:
        if self.config.read_policy is ReadPolicy.RAISE:
            self.logger.error(f"{reason}: {error}", key=self.config.key, error=str(error))
            raise error

        self.logger.warning(
            f"{reason}, discarding it and using the default feed: {error}",
            key=self.config.key,
            error=str(error),
            read_policy=self.config.read_policy.value,
        )
        return default_feed(self.channel)

    def put(self, feed: Feed) -> None:
        """Serialize and overwrite the stored feed document.

        Args:
            feed: Feed to store

        Raises:
            ConcurrentModificationError: If a conditional write was rejected
            FeedWriteError: If the S3 write failed
        """
        document = serialize(feed)
        params = {
            "Bucket": self.config.bucket,
            "Key": self.config.key,
            "Body": document,
            "ContentType": self.config.content_type,
        }
        if self.config.conditional_writes and self._has_read:
            if self.etag:
                params["IfMatch"] = self.etag
            else:
                params["IfNoneMatch"] = "*"

        try:
            response = self.s3.put_object(**params)
        except ClientError as e:
            error_code = e.response.get("Error", {}).get("Code", "Unknown")
            if error_code in PRECONDITION_CODES:
                self.logger.error(
                    "Feed document changed since it was read",
                    key=self.config.key,
                    error=str(e),
                )
                raise ConcurrentModificationError(
                    f"Feed document {self.config.key} was modified concurrently"
                ) from e
            self.logger.error(
                f"Error writing feed document: {error_code}",
                key=self.config.key,
                error=str(e),
            )
            raise FeedWriteError(f"Failed to write feed document {self.config.key}") from e
        except BotoCoreError as e:
            self.logger.error(
                f"Error writing feed document: {e}", key=self.config.key, error=str(e)
            )
            raise FeedWriteError(f"Failed to write feed document {self.config.key}") from e

        self.etag = response.get("ETag")
        self.logger.info(
            "Feed document updated successfully",
            key=self.config.key,
            items_count=len(feed.channel.items),
            content_length=len(document),
        )
