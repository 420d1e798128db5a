"""
Tests for request parsing helpers and the Secrets Manager cache.
"""

import base64
import json
from unittest.mock import patch

import boto3
import pytest
from moto import mock_aws

from shared.errors import ValidationError
from shared.request_utils import (
    get_query_param,
    get_raw_body,
    get_user_id,
    parse_form_or_json_body,
    parse_json_body,
)


class TestGetUserId:
    """Identity comes only from the API Gateway authorizer."""

    @pytest.mark.parametrize(
        "authorizer,expected",
        [
            ({"user_id": "user_1"}, "user_1"),
            ({"claims": {"sub": "cognito-sub"}}, "cognito-sub"),
            ({"principalId": "principal"}, "principal"),
            ({}, None),
            (None, None),
        ],
    )
    def test_reads_authorizer(self, authorizer, expected):
        assert get_user_id({"requestContext": {"authorizer": authorizer}}) == expected

    def test_ignores_headers_and_body(self):
        event = {"headers": {"x-user-id": "user_spoofed"}, "body": json.dumps({"user_id": "user_spoofed"})}
        assert get_user_id(event) is None


class TestBodies:
    """Tests for body decoding."""

    def test_base64_body(self):
        event = {"body": base64.b64encode(b'{"a": 1}').decode(), "isBase64Encoded": True}
        assert get_raw_body(event) == '{"a": 1}'
        assert parse_json_body(event) == {"a": 1}

    def test_empty_body_is_empty_dict(self):
        assert parse_json_body({"body": None}) == {}

    @pytest.mark.parametrize("body", ["{nope", "[1, 2]", '"text"'])
    def test_rejects_non_object_json(self, body):
        with pytest.raises(ValidationError):
            parse_json_body({"body": body})

    def test_form_body(self):
        event = {
            "headers": {"Content-Type": "application/x-www-form-urlencoded; charset=utf-8"},
            "body": "sale_id=sale_1&email=a%40b.com&subscription_id=",
        }
        assert parse_form_or_json_body(event) == {"sale_id": "sale_1", "email": "a@b.com", "subscription_id": ""}

    def test_json_when_not_form(self):
        event = {"headers": {"content-type": "application/json"}, "body": '{"sale_id": "s"}'}
        assert parse_form_or_json_body(event) == {"sale_id": "s"}

    def test_query_param(self):
        assert get_query_param({"queryStringParameters": {"token": "t"}}, "token") == "t"
        assert get_query_param({"queryStringParameters": None}, "token") is None


class TestGetSecret:
    """Tests for the cached Secrets Manager lookup."""

    @mock_aws
    def test_json_and_raw_secrets(self):
        from shared.secrets import get_secret

        client = boto3.client("secretsmanager", region_name="us-east-1")
        json_arn = client.create_secret(Name="json", SecretString=json.dumps({"secret": "whsec_1"}))["ARN"]
        raw_arn = client.create_secret(Name="raw", SecretString="plain-value")["ARN"]

        assert get_secret(json_arn, "secret") == "whsec_1"
        assert get_secret(raw_arn, "secret") == "plain-value"

    def test_unset_arn(self):
        from shared.secrets import get_secret

        assert get_secret(None, "secret") is None
        assert get_secret("", "secret") is None

    @mock_aws
    def test_missing_secret_returns_none(self):
        from shared.secrets import get_secret

        assert get_secret("arn:aws:secretsmanager:us-east-1:123456789012:secret:gone-AbCdEf", "secret") is None

    @mock_aws
    def test_value_is_cached(self):
        import shared.secrets as secrets_module

        client = boto3.client("secretsmanager", region_name="us-east-1")
        arn = client.create_secret(Name="cached", SecretString=json.dumps({"token": "v1"}))["ARN"]
        assert secrets_module.get_secret(arn, "token") == "v1"

        client.put_secret_value(SecretId=arn, SecretString=json.dumps({"token": "v2"}))
        assert secrets_module.get_secret(arn, "token") == "v1"

        # Past the TTL the secret is fetched again
        with patch.object(secrets_module.time, "time", return_value=secrets_module.time.time() + 301):
            assert secrets_module.get_secret(arn, "token") == "v2"
