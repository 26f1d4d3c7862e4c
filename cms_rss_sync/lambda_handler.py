"""Main Lambda handler for CMS RSS Sync."""

import json
import os
from datetime import UTC, datetime
from typing import Any

import boto3
from botocore.exceptions import ClientError

from .cms import ContentFetcher
from .config import Config
from .events import TriggerType, WebhookEvent, parse_event
from .logging_config import create_execution_logger, setup_structured_logging
from .sanitizer import HtmlSanitizer
from .store import FeedStore
from .sync import SyncEngine

# Setup structured logging
setup_structured_logging(os.getenv("LOG_LEVEL", "INFO"))


def _new_metrics() -> dict[str, Any]:
    return {
        "events_received": 0,
        "items_upserted": 0,
        "items_deleted": 0,
        "events_ignored": 0,
        "errors": [],
    }


def lambda_handler(event: dict[str, Any], context: Any) -> dict[str, Any]:
    """
    Main Lambda handler that applies one CMS webhook event to the feed.

    Args:
        event: Lambda proxy event carrying the webhook body
        context: Lambda context object

    Returns:
        200 with a JSON acknowledgment, or 500 with a plain-text error
    """
    execution_id = f"lambda_{datetime.now(UTC).strftime('%Y%m%d_%H%M%S_%f')}"
    main_logger = create_execution_logger("main", execution_id)

    main_logger.log_execution_start(
        lambda_request_id=getattr(context, "aws_request_id", "unknown"),
        lambda_function_name=getattr(context, "function_name", "unknown"),
    )

    metrics = _new_metrics()
    config = None

    try:
        config = Config()
        config.validate()
        main_logger.info("Configuration initialized")

        webhook_event = parse_event(event)
        metrics["events_received"] += 1
        main_logger.info(
            f"Processing {webhook_event.trigger_type.value} event",
            trigger_type=webhook_event.trigger_type.value,
            collection_id=webhook_event.payload.collection_id,
        )

        message = route_event(webhook_event, config, metrics, execution_id)

        main_logger.log_metrics(metrics)
        send_cloudwatch_metrics(metrics, config.aws_region, execution_id)
        main_logger.log_execution_end(success=True, metrics=metrics)

        return {
            "statusCode": 200,
            "headers": {"Content-Type": "application/json"},
            "body": json.dumps({"message": message, "execution_id": execution_id}),
        }

    except Exception as e:
        error_msg = f"Critical error in Lambda handler: {str(e)}"
        main_logger.error(error_msg, error=str(e), exc_info=True)
        metrics["errors"].append(error_msg)

        send_cloudwatch_metrics(
            metrics,
            config.aws_region if config is not None else "us-east-1",
            execution_id,
        )

        main_logger.log_execution_end(success=False, metrics=metrics, error=error_msg)

        return {
            "statusCode": 500,
            "headers": {"Content-Type": "text/plain"},
            "body": "Internal Server Error",
        }


def route_event(
    webhook_event: WebhookEvent,
    config: Config,
    metrics: dict[str, Any],
    execution_id: str,
    engine: SyncEngine | None = None,
) -> str:
    """
    Map a webhook event onto a SyncEngine operation.

    Events for other collections and archived/draft records are
    acknowledged without reading or writing the feed.

    Args:
        webhook_event: Validated webhook event
        config: Application configuration
        metrics: Metrics dictionary updated in place
        execution_id: Execution ID for logging context
        engine: Optional prebuilt engine (built from config when omitted)

    Returns:
        Acknowledgment message for the response body
    """
    router_logger = create_execution_logger("main", execution_id)
    payload = webhook_event.payload

    if payload.collection_id != config.collection_id:
        router_logger.info(
            "Ignoring event for another collection",
            collection_id=payload.collection_id,
        )
        metrics["events_ignored"] += 1
        return "Event for another collection received successfully"

    trigger_type = webhook_event.trigger_type

    if trigger_type.is_upsert and (payload.is_archived or payload.is_draft):
        router_logger.info(
            f"Ignoring archived or draft item {payload.item_id}",
            trigger_type=trigger_type.value,
            is_archived=payload.is_archived,
            is_draft=payload.is_draft,
        )
        metrics["events_ignored"] += 1
        return "Webhook received successfully"

    if engine is None:
        engine = build_engine(config, execution_id)

    if trigger_type.is_upsert:
        engine.sync_item(payload.item_id)
        metrics["items_upserted"] += 1
    elif trigger_type is TriggerType.ITEM_DELETED:
        engine.remove_item(payload.delete_key)
        metrics["items_deleted"] += 1

    return "Webhook received successfully"


def build_engine(config: Config, execution_id: str) -> SyncEngine:
    """Wire a SyncEngine and its collaborators from configuration."""
    cms_config = config.get_cms_config()
    if not cms_config.api_token:
        cms_config.api_token = get_api_token(
            cms_config.token_secret_name, config.aws_region, execution_id
        )

    store = FeedStore(
        config.get_storage_config(),
        config.get_channel_config(),
        execution_id=execution_id,
    )
    fetcher = ContentFetcher(cms_config, execution_id=execution_id)
    sanitizer = HtmlSanitizer(execution_id=execution_id)
    return SyncEngine(
        store, fetcher, sanitizer, config.get_sync_config(), execution_id=execution_id
    )


def get_api_token(secret_name: str, aws_region: str, execution_id: str) -> str:
    """
    Retrieve the CMS API token from AWS Secrets Manager.

    Supports both plain string and JSON secret formats. The token value is
    never logged.

    Args:
        secret_name: Name of the secret in Secrets Manager
        aws_region: AWS region for Secrets Manager client
        execution_id: Execution ID for logging context

    Returns:
        CMS API bearer token

    Raises:
        RuntimeError: If the secret cannot be retrieved or holds no token
        ValueError: If secret name or region is empty
    """
    secrets_logger = create_execution_logger("secrets_manager", execution_id)

    if not secret_name or not secret_name.strip():
        raise ValueError("Secret name cannot be empty")

    if not aws_region or not aws_region.strip():
        raise ValueError("AWS region cannot be empty")

    try:
        secrets_logger.info(f"Retrieving CMS API token from Secrets Manager: {secret_name}")
        secrets_client = boto3.client("secretsmanager", region_name=aws_region)

        response = secrets_client.get_secret_value(SecretId=secret_name)

        if "SecretString" not in response:
            raise ValueError(f"Secret {secret_name} does not contain a string value")

        secret_value = response["SecretString"]

        if not secret_value or not secret_value.strip():
            raise ValueError(f"Secret {secret_name} contains empty value")

        try:
            secret_data = json.loads(secret_value)
        except json.JSONDecodeError:
            secrets_logger.info("Successfully retrieved token from plain text secret")
            return secret_value.strip()

        if not isinstance(secret_data, dict):
            raise ValueError(f"JSON secret {secret_name} must be an object")

        for key in ["token", "api_token", "access_token", "webflow_api_access_token"]:
            value = secret_data.get(key)
            if isinstance(value, str) and value.strip():
                secrets_logger.info("Successfully retrieved token from JSON secret")
                return value.strip()

        raise ValueError(f"No token found in JSON secret {secret_name}")

    except ClientError as e:
        error_code = e.response.get("Error", {}).get("Code", "Unknown")
        secrets_logger.error(
            f"AWS Secrets Manager error retrieving {secret_name}: {error_code}"
        )
        raise RuntimeError(f"Failed to retrieve secret {secret_name}") from e
    except ValueError as e:
        secrets_logger.error(f"Invalid secret format for {secret_name}: {e}")
        raise RuntimeError(f"Invalid secret format for {secret_name}") from e


def send_cloudwatch_metrics(
    metrics: dict[str, Any], aws_region: str, execution_id: str
) -> None:
    """
    Send custom metrics to CloudWatch.

    Args:
        metrics: Dictionary containing execution metrics
        aws_region: AWS region for CloudWatch client
        execution_id: Execution ID for logging context
    """
    metrics_logger = create_execution_logger("cloudwatch_metrics", execution_id)

    try:
        metrics_logger.info("Sending metrics to CloudWatch", metrics=metrics)
        cloudwatch = boto3.client("cloudwatch", region_name=aws_region)

        total_errors = len(metrics["errors"])
        execution_success = total_errors == 0
        status = "Success" if execution_success else "Failure"

        counters = [
            ("EventsReceived", metrics["events_received"]),
            ("ItemsUpserted", metrics["items_upserted"]),
            ("ItemsDeleted", metrics["items_deleted"]),
            ("EventsIgnored", metrics["events_ignored"]),
            ("Errors", total_errors),
        ]
        metric_data = [
            {
                "MetricName": name,
                "Value": value,
                "Unit": "Count",
                "Dimensions": [{"Name": "ExecutionId", "Value": execution_id}],
            }
            for name, value in counters
        ]
        metric_data.extend(
            [
                {
                    "MetricName": "ExecutionSuccess",
                    "Value": 1 if execution_success else 0,
                    "Unit": "Count",
                    "Dimensions": [{"Name": "Status", "Value": status}],
                },
                {
                    "MetricName": "ExecutionFailure",
                    "Value": 0 if execution_success else 1,
                    "Unit": "Count",
                    "Dimensions": [{"Name": "Status", "Value": status}],
                },
            ]
        )

        # CloudWatch accepts at most 20 metrics per call
        batch_size = 20
        for i in range(0, len(metric_data), batch_size):
            batch = metric_data[i : i + batch_size]
            cloudwatch.put_metric_data(Namespace="CMS-RSS-Sync", MetricData=batch)
            metrics_logger.debug(f"Sent batch of {len(batch)} metrics to CloudWatch")

        metrics_logger.info(
            "Successfully sent metrics to CloudWatch",
            metrics_sent=len(metric_data),
            namespace="CMS-RSS-Sync",
            execution_success=execution_success,
        )

    except Exception as e:
        metrics_logger.error(f"Failed to send CloudWatch metrics: {e}", error=str(e))
        # Don't raise - metrics failure shouldn't break the main flow
