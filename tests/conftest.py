"""
Shared pytest fixtures for Golden Ticket tests.
"""

import os
import sys
from unittest.mock import MagicMock, patch

import boto3
import httpx
import pytest
from moto import mock_aws

# Add functions directory to Python path for imports
sys.path.insert(0, os.path.join(os.path.dirname(__file__), "..", "functions"))

REDEMPTIONS_TABLE = "goldenticket-redemptions"
ALLOWED_ORIGIN = "https://goldenticket.sweetsausallerwelt.de"

# Integration settings every test starts without
_INTEGRATION_ENV = (
    "REDEMPTION_STORE_BACKEND",
    "REDEMPTION_STORE_PATH",
    "REDEMPTIONS_TABLE",
    "KLAVIYO_SECRET_ARN",
    "KLAVIYO_API_KEY",
    "KLAVIYO_MAIN_LIST_ID",
    "MAILCHIMP_SECRET_ARN",
    "MAILCHIMP_API_KEY",
    "MAILCHIMP_AUDIENCE_ID",
    "GOOGLE_SHEETS_WEB_APP_URL",
    "CONFIRMATION_EMAIL_SENDER",
    "ALLOW_DEV_CORS",
)


def pytest_configure(config):
    """Set AWS credentials before test collection.

    Ensures boto3 client creation never picks up real credentials.
    """
    os.environ.setdefault("AWS_ACCESS_KEY_ID", "testing")
    os.environ.setdefault("AWS_SECRET_ACCESS_KEY", "testing")
    os.environ.setdefault("AWS_DEFAULT_REGION", "us-east-1")
    os.environ.setdefault("AWS_REGION", "us-east-1")


@pytest.fixture(autouse=True)
def aws_credentials():
    """Set fake AWS credentials for all tests."""
    os.environ["AWS_ACCESS_KEY_ID"] = "testing"
    os.environ["AWS_SECRET_ACCESS_KEY"] = "testing"
    os.environ["AWS_DEFAULT_REGION"] = "us-east-1"
    os.environ["AWS_REGION"] = "us-east-1"


@pytest.fixture(autouse=True)
def clean_integration_env(monkeypatch):
    """Start every test with no store or integration configuration."""
    for name in _INTEGRATION_ENV:
        monkeypatch.delenv(name, raising=False)


@pytest.fixture(autouse=True)
def reset_aws_clients():
    """Reset shared AWS client singletons between tests."""
    from shared.aws_clients import reset_clients

    reset_clients()
    yield
    reset_clients()


@pytest.fixture(autouse=True)
def reset_secret_cache():
    """Drop cached integration keys between tests."""
    from shared.credentials import clear_secret_cache

    clear_secret_cache()
    yield
    clear_secret_cache()


@pytest.fixture(autouse=True)
def cloudwatch():
    """Capture metrics instead of calling CloudWatch.

    Yields the mock client so tests can assert on put_metric_data calls.
    """
    client = MagicMock()
    with patch("shared.metrics.get_cloudwatch", return_value=client):
        yield client


def create_redemptions_table(dynamodb):
    """Create the redemptions table (one item per ticket code)."""
    return dynamodb.create_table(
        TableName=REDEMPTIONS_TABLE,
        KeySchema=[{"AttributeName": "code", "KeyType": "HASH"}],
        AttributeDefinitions=[{"AttributeName": "code", "AttributeType": "S"}],
        BillingMode="PAY_PER_REQUEST",
    )


@pytest.fixture
def mock_dynamodb():
    """Provide mocked DynamoDB with the redemptions table."""
    with mock_aws():
        dynamodb = boto3.resource("dynamodb", region_name="us-east-1")
        create_redemptions_table(dynamodb)
        yield dynamodb


@pytest.fixture
def dynamodb_store(mock_dynamodb, monkeypatch):
    """DynamoDB-backed store, also selected for handlers via the environment."""
    from shared.redemption_store import DynamoDBRedemptionStore

    monkeypatch.setenv("REDEMPTION_STORE_BACKEND", "dynamodb")
    return DynamoDBRedemptionStore(REDEMPTIONS_TABLE)


@pytest.fixture
def store_path(tmp_path, monkeypatch):
    """Path of a fresh JSON store, also selected for handlers via the environment."""
    path = tmp_path / "data" / "used-codes.json"
    monkeypatch.setenv("REDEMPTION_STORE_BACKEND", "file")
    monkeypatch.setenv("REDEMPTION_STORE_PATH", str(path))
    return path


@pytest.fixture
def file_store(store_path):
    """JSON file store in a temporary directory."""
    from shared.redemption_store import JsonFileRedemptionStore

    return JsonFileRedemptionStore(str(store_path))


@pytest.fixture
def http_mock():
    """Route every httpx.Client through a MockTransport.

    Call with a request -> response function; returns the list that
    collects each request sent.
    """
    original_init = httpx.Client.__init__
    patchers = []

    def install(responder):
        requests = []

        def record(request: httpx.Request) -> httpx.Response:
            requests.append(request)
            return responder(request)

        transport = httpx.MockTransport(record)

        def patched_init(self, *args, **kwargs):
            kwargs["transport"] = transport
            original_init(self, *args, **kwargs)

        patcher = patch.object(httpx.Client, "__init__", patched_init)
        patcher.start()
        patchers.append(patcher)
        return requests

    yield install

    for patcher in patchers:
        patcher.stop()


@pytest.fixture
def api_gateway_event():
    """Base API Gateway event for Lambda handler tests."""
    return {
        "httpMethod": "POST",
        "headers": {"origin": ALLOWED_ORIGIN},
        "pathParameters": {},
        "queryStringParameters": {},
        "body": None,
        "requestContext": {
            "requestId": "test-request-id",
            "identity": {"sourceIp": "127.0.0.1"},
        },
    }


@pytest.fixture
def submission():
    """A complete, valid golden ticket form submission."""
    return {
        "ticketCode": "ab12cd34",
        "email": "Max.Mustermann@Example.com",
        "firstName": "Max",
        "lastName": "Mustermann",
        "phone": "0171 2345678",
        "street": "Hauptstraße 1",
        "postalCode": "10115",
        "city": "Berlin",
        "country": "DE",
        "consent": True,
        "consentTs": "2025-11-30T10:00:00+00:00",
        "newsletterConsent": True,
        "utm_source": "instagram",
        "utm_medium": "social",
        "utm_campaign": "advent",
    }
