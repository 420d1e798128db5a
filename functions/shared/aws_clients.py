"""
Lazy boto3 clients shared by every handler in a Lambda container.

Clients are built on first use so a cold start only pays for the services the
handler actually touches, and reused across warm invocations.
"""

_clients: dict = {}
_resources: dict = {}


def _client(service: str):
    if service not in _clients:
        import boto3
        _clients[service] = boto3.client(service)
    return _clients[service]


def _resource(service: str):
    if service not in _resources:
        import boto3
        _resources[service] = boto3.resource(service)
    return _resources[service]


def get_dynamodb():
    """DynamoDB resource (tables for subscriptions, ledger, content)."""
    return _resource("dynamodb")


def get_secretsmanager():
    return _client("secretsmanager")


def get_sns():
    return _client("sns")


def get_cloudwatch():
    return _client("cloudwatch")


def reset_clients():
    """Drop cached clients. Used in tests so each moto context gets fresh ones."""
    _clients.clear()
    _resources.clear()
