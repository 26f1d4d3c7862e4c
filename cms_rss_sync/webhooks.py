"""One-time webhook registration for CMS RSS Sync.

Usage: python -m cms_rss_sync.webhooks <handler_url>

Reads CMS_API_TOKEN and CMS_SITE_ID from the environment and registers the
handler URL for every collection item trigger type.
"""

import os
import sys
from typing import Any

import requests

from .events import TriggerType
from .logging_config import create_execution_logger, setup_structured_logging


class WebhookRegistrar:
    """Registers the sync handler URL as a CMS webhook target."""

    def __init__(
        self,
        api_token: str,
        api_base_url: str = "https://api.webflow.com/v2",
        timeout: int = 10,
        session: requests.Session | None = None,
        execution_id: str | None = None,
    ):
        self.api_base_url = api_base_url.rstrip("/")
        self.timeout = timeout
        self.logger = create_execution_logger("webhooks", execution_id)
        self.session = session or requests.Session()
        self.session.headers.update(
            {
                "Accept": "application/json",
                "Content-Type": "application/json",
                "Authorization": f"Bearer {api_token}",
            }
        )

    def create_webhook(
        self, site_id: str, trigger_type: TriggerType, url: str
    ) -> dict[str, Any]:
        """Create one webhook for a site.

        Raises:
            requests.RequestException: If the API call fails
        """
        self.logger.info(
            f"Creating webhook: {trigger_type.value}", trigger_type=trigger_type.value
        )
        response = self.session.post(
            f"{self.api_base_url}/sites/{site_id}/webhooks",
            json={"triggerType": trigger_type.value, "url": url},
            timeout=self.timeout,
        )
        response.raise_for_status()
        webhook = response.json()
        self.logger.info(
            f"Webhook created: {trigger_type.value}",
            trigger_type=trigger_type.value,
            webhook_id=webhook.get("id"),
        )
        return webhook

    def register_webhooks(self, site_id: str, url: str) -> list[dict[str, Any]]:
        """Create a webhook for every collection item trigger type."""
        return [self.create_webhook(site_id, trigger, url) for trigger in TriggerType]


def main(argv: list[str] | None = None) -> int:
    argv = sys.argv[1:] if argv is None else argv
    if len(argv) != 1:
        print("Usage: python -m cms_rss_sync.webhooks <handler_url>", file=sys.stderr)
        return 2

    api_token = os.getenv("CMS_API_TOKEN", "")
    site_id = os.getenv("CMS_SITE_ID", "")
    if not api_token or not site_id:
        print("CMS_API_TOKEN and CMS_SITE_ID must be set", file=sys.stderr)
        return 2

    setup_structured_logging(os.getenv("LOG_LEVEL", "INFO"))
    registrar = WebhookRegistrar(
        api_token, os.getenv("CMS_API_BASE_URL", "https://api.webflow.com/v2")
    )
    try:
        webhooks = registrar.register_webhooks(site_id, argv[0])
    except requests.RequestException as e:
        registrar.logger.error(f"Webhook registration failed: {e}", error=str(e))
        return 1

    for webhook in webhooks:
        print(f"{webhook.get('triggerType')}: {webhook.get('id')}")
    return 0


if __name__ == "__main__":
    sys.exit(main())
