"""CMS read API client for CMS RSS Sync."""

import requests

from .config import CmsConfig
from .logging_config import create_execution_logger
from .models import CmsRecord


class CmsFetchError(RuntimeError):
    """Raised when a CMS record cannot be retrieved."""


class ContentFetcher:
    """Retrieves collection items from the CMS read API."""

    def __init__(
        self,
        config: CmsConfig,
        session: requests.Session | None = None,
        execution_id: str | None = None,
    ):
        """Initialize ContentFetcher with configuration.

        Args:
            config: CMS configuration including the bearer token
            session: Optional preconfigured HTTP session
            execution_id: Execution ID for logging context
        """
        self.config = config
        self.logger = create_execution_logger("content_fetcher", execution_id)
        self.session = session or requests.Session()
        self.session.headers.update(
            {
                "Accept": "application/json",
                "Authorization": f"Bearer {config.api_token}",
                "User-Agent": "CMS-RSS-Sync/1.0",
            }
        )

        self.logger.info(
            "ContentFetcher initialized",
            collection_id=config.collection_id,
            timeout=config.timeout,
        )

    def item_url(self, item_id: str) -> str:
        """Build the read API URL for one collection item."""
        return (
            f"{self.config.api_base_url}/collections/"
            f"{self.config.collection_id}/items/{item_id}"
        )

    def fetch(self, item_id: str) -> CmsRecord:
        """Fetch one CMS record by id.

        Args:
            item_id: CMS item identifier

        Returns:
            CmsRecord built from the response body

        Raises:
            CmsFetchError: On network failure, non-success status or a
                response body that is not a usable record
        """
        if not item_id or not item_id.strip():
            raise CmsFetchError("CMS item id cannot be empty")

        url = self.item_url(item_id)
        try:
            self.logger.info("Fetching CMS item", item_id=item_id)
            response = self.session.get(url, timeout=self.config.timeout)
            response.raise_for_status()
            self.logger.info(
                "CMS item fetched successfully",
                item_id=item_id,
                status_code=response.status_code,
            )
        except requests.RequestException as e:
            self.logger.error(
                f"Failed to fetch CMS item {item_id}: {e}",
                item_id=item_id,
                error=str(e),
            )
            raise CmsFetchError(f"Failed to fetch CMS item {item_id}") from e

        try:
            return CmsRecord.from_api(response.json(), self.config.fields)
        except ValueError as e:
            # requests' JSONDecodeError is a ValueError as well
            self.logger.error(
                f"Invalid CMS record for {item_id}: {e}",
                item_id=item_id,
                error=str(e),
            )
            raise CmsFetchError(f"Invalid CMS record for {item_id}") from e
