"""Unit tests for the Lambda handler and event routing."""

import base64
import json
import os
from unittest.mock import Mock, patch

import boto3
import pytest
from botocore.exceptions import ClientError
from moto import mock_aws

from cms_rss_sync.config import Config
from cms_rss_sync.events import EventPayload, TriggerType, WebhookEvent
from cms_rss_sync.lambda_handler import (
    _new_metrics,
    build_engine,
    get_api_token,
    lambda_handler,
    route_event,
)

ENV = {
    "FEED_BUCKET_NAME": "feed-bucket",
    "CMS_COLLECTION_ID": "coll-1",
    "CMS_API_TOKEN": "token",
    "CURRENT_AWS_REGION": "us-east-1",
}


def webhook(trigger_type, collection_id="coll-1", **payload):
    return WebhookEvent(
        trigger_type=trigger_type,
        payload=EventPayload(collection_id=collection_id, **payload),
    )


def proxy_event(trigger_type="collection_item_created", collection_id="coll-1", **payload):
    body = {
        "triggerType": trigger_type,
        "payload": {"collectionId": collection_id, **payload},
    }
    return {"body": json.dumps(body)}


def make_config() -> Config:
    with patch.dict(os.environ, ENV, clear=True):
        return Config()


class TestRouteEventUnit:
    """Unit tests for route_event."""

    def test_foreign_collection_never_touches_the_feed(self):
        """Scenario 5: events for other collections skip storage entirely."""
        metrics = _new_metrics()

        with patch("cms_rss_sync.lambda_handler.build_engine") as mock_build:
            message = route_event(
                webhook(TriggerType.ITEM_CREATED, collection_id="other", item_id="i1"),
                make_config(),
                metrics,
                "exec-1",
            )

        assert message == "Event for another collection received successfully"
        mock_build.assert_not_called()
        assert metrics["events_ignored"] == 1

    def test_created_event_syncs_item(self):
        """Created events fetch and upsert the item by id."""
        engine = Mock()
        metrics = _new_metrics()

        message = route_event(
            webhook(TriggerType.ITEM_CREATED, item_id="i1"), make_config(), metrics, "e", engine
        )

        assert message == "Webhook received successfully"
        engine.sync_item.assert_called_once_with("i1")
        assert metrics["items_upserted"] == 1

    def test_changed_event_syncs_item(self):
        """Changed events are upserts as well."""
        engine = Mock()

        route_event(
            webhook(TriggerType.ITEM_CHANGED, item_id="i2"), make_config(), _new_metrics(), "e", engine
        )

        engine.sync_item.assert_called_once_with("i2")

    def test_deleted_event_removes_by_slug(self):
        """Delete events remove the entry derived from the slug."""
        engine = Mock()
        metrics = _new_metrics()

        route_event(
            webhook(TriggerType.ITEM_DELETED, item_id="i3", slug="post-3"),
            make_config(),
            metrics,
            "e",
            engine,
        )

        engine.remove_item.assert_called_once_with("post-3")
        engine.sync_item.assert_not_called()
        assert metrics["items_deleted"] == 1

    @pytest.mark.parametrize("flags", [{"is_archived": True}, {"is_draft": True}])
    def test_archived_or_draft_upsert_is_ignored(self, flags):
        """Archived and draft items are acknowledged without any feed access."""
        engine = Mock()
        metrics = _new_metrics()

        route_event(
            webhook(TriggerType.ITEM_CHANGED, item_id="i4", **flags),
            make_config(),
            metrics,
            "e",
            engine,
        )

        engine.sync_item.assert_not_called()
        engine.remove_item.assert_not_called()
        assert metrics["events_ignored"] == 1


class TestLambdaHandlerUnit:
    """Unit tests for lambda_handler."""

    def test_success_returns_json_acknowledgment(self):
        """A handled event yields 200 with a JSON message."""
        engine = Mock()
        with (
            patch.dict(os.environ, ENV, clear=True),
            patch("cms_rss_sync.lambda_handler.build_engine", return_value=engine),
            patch("cms_rss_sync.lambda_handler.send_cloudwatch_metrics") as mock_metrics,
        ):
            response = lambda_handler(proxy_event(id="i1"), Mock())

        assert response["statusCode"] == 200
        assert response["headers"]["Content-Type"] == "application/json"
        body = json.loads(response["body"])
        assert body["message"] == "Webhook received successfully"
        assert body["execution_id"].startswith("lambda_")
        engine.sync_item.assert_called_once_with("i1")
        sent = mock_metrics.call_args.args[0]
        assert sent["items_upserted"] == 1
        assert sent["errors"] == []

    def test_base64_body_is_accepted(self):
        """API gateways that base64-encode the body are supported."""
        engine = Mock()
        raw = json.dumps(
            {
                "triggerType": "collection_item_deleted",
                "payload": {"collectionId": "coll-1", "slug": "gone"},
            }
        ).encode()
        event = {"body": base64.b64encode(raw).decode(), "isBase64Encoded": True}

        with (
            patch.dict(os.environ, ENV, clear=True),
            patch("cms_rss_sync.lambda_handler.build_engine", return_value=engine),
            patch("cms_rss_sync.lambda_handler.send_cloudwatch_metrics"),
        ):
            response = lambda_handler(event, Mock())

        assert response["statusCode"] == 200
        engine.remove_item.assert_called_once_with("gone")

    def test_engine_failure_returns_500(self):
        """Failures while applying the event yield a plain-text 500."""
        engine = Mock()
        engine.sync_item.side_effect = RuntimeError("S3 unavailable")

        with (
            patch.dict(os.environ, ENV, clear=True),
            patch("cms_rss_sync.lambda_handler.build_engine", return_value=engine),
            patch("cms_rss_sync.lambda_handler.send_cloudwatch_metrics") as mock_metrics,
        ):
            response = lambda_handler(proxy_event(id="i1"), Mock())

        assert response["statusCode"] == 500
        assert response["headers"]["Content-Type"] == "text/plain"
        assert response["body"] == "Internal Server Error"
        assert "S3 unavailable" not in response["body"]
        assert len(mock_metrics.call_args.args[0]["errors"]) == 1

    def test_invalid_event_returns_500(self):
        """A malformed body never reaches the engine."""
        with (
            patch.dict(os.environ, ENV, clear=True),
            patch("cms_rss_sync.lambda_handler.build_engine") as mock_build,
            patch("cms_rss_sync.lambda_handler.send_cloudwatch_metrics"),
        ):
            response = lambda_handler({"body": "not json"}, Mock())

        assert response["statusCode"] == 500
        mock_build.assert_not_called()

    def test_missing_configuration_returns_500(self):
        """Missing required settings fail the invocation."""
        with (
            patch.dict(os.environ, {}, clear=True),
            patch("cms_rss_sync.lambda_handler.send_cloudwatch_metrics") as mock_metrics,
        ):
            response = lambda_handler(proxy_event(id="i1"), Mock())

        assert response["statusCode"] == 500
        assert mock_metrics.call_args.args[1] == "us-east-1"

    def test_missing_document_is_created_end_to_end(self):
        """Scenario 4: a first event writes a fresh feed with one item."""
        record = {
            "id": "i1",
            "fieldData": {
                "name": "First post",
                "slug": "first-post",
                "post-excerpt": "Hello",
                "post---posted-date": "2024-01-01T00:00:00.000Z",
                "post-body": "<p>Hi</p>",
            },
        }
        response_mock = Mock()
        response_mock.json.return_value = record
        response_mock.raise_for_status.return_value = None

        with (
            patch.dict(os.environ, ENV, clear=True),
            mock_aws(),
            patch("cms_rss_sync.cms.requests.Session.get", return_value=response_mock),
            patch("cms_rss_sync.lambda_handler.send_cloudwatch_metrics"),
        ):
            s3 = boto3.client("s3", region_name="us-east-1")
            s3.create_bucket(Bucket="feed-bucket")

            response = lambda_handler(proxy_event(id="i1"), Mock())

            stored = s3.get_object(Bucket="feed-bucket", Key="rss.xml")["Body"].read()

        assert response["statusCode"] == 200
        assert b"<guid>https://www.example.com/blog/first-post</guid>" in stored
        assert stored.count(b"<item>") == 1


class TestBuildEngineUnit:
    """Unit tests for build_engine."""

    def test_token_from_environment_skips_secrets_manager(self):
        """A configured token is used directly."""
        with patch("cms_rss_sync.lambda_handler.get_api_token") as mock_secret:
            engine = build_engine(make_config(), "e")

        mock_secret.assert_not_called()
        assert engine.fetcher.config.api_token == "token"
        assert engine.store.config.bucket == "feed-bucket"

    def test_token_from_secrets_manager(self):
        """Without a configured token the secret is read."""
        env = {key: value for key, value in ENV.items() if key != "CMS_API_TOKEN"}
        with patch.dict(os.environ, env, clear=True):
            config = Config()

        with patch(
            "cms_rss_sync.lambda_handler.get_api_token", return_value="from-secret"
        ) as mock_secret:
            engine = build_engine(config, "e")

        mock_secret.assert_called_once_with("cms-rss-sync-api-token", "us-east-1", "e")
        assert engine.fetcher.config.api_token == "from-secret"


class TestGetApiTokenUnit:
    """Unit tests for get_api_token."""

    @pytest.mark.parametrize(
        "secret_string",
        [
            "plain-token",
            '{"token": "plain-token"}',
            '{"api_token": "plain-token"}',
            '{"webflow_api_access_token": "plain-token"}',
        ],
    )
    def test_secret_formats(self, secret_string):
        """Plain string and JSON secrets are both supported."""
        with patch("boto3.client") as mock_client:
            mock_client.return_value.get_secret_value.return_value = {
                "SecretString": secret_string
            }

            assert get_api_token("name", "us-east-1", "e") == "plain-token"

    def test_json_secret_without_token(self):
        """A JSON secret without a known key is rejected."""
        with patch("boto3.client") as mock_client:
            mock_client.return_value.get_secret_value.return_value = {
                "SecretString": '{"other": "x"}'
            }

            with pytest.raises(RuntimeError):
                get_api_token("name", "us-east-1", "e")

    def test_client_error(self):
        """Secrets Manager errors surface as RuntimeError."""
        with patch("boto3.client") as mock_client:
            mock_client.return_value.get_secret_value.side_effect = ClientError(
                {"Error": {"Code": "ResourceNotFoundException", "Message": "nope"}},
                "GetSecretValue",
            )

            with pytest.raises(RuntimeError):
                get_api_token("name", "us-east-1", "e")

    @pytest.mark.parametrize("name,region", [("", "us-east-1"), ("name", " ")])
    def test_empty_arguments(self, name, region):
        """Empty secret names and regions are rejected up front."""
        with pytest.raises(ValueError):
            get_api_token(name, region, "e")
