"""
Process-wide service instances for Lambda handlers.

Built lazily on first use so cold starts only pay for what a handler touches;
`reset_services()` drops them between tests.
"""

from billing.content import DynamoContentRepository
from billing.dynamo_repository import DynamoSubscriptionRepository
from billing.ingestor import WebhookIngestor
from billing.ledger import DynamoIdempotencyLedger
from billing.manager import SubscriptionManager
from billing.notifications import TrialNotifier
from billing.service import EntitlementService

_repository = None
_ingestor = None
_service = None


def get_repository() -> DynamoSubscriptionRepository:
    global _repository
    if _repository is None:
        _repository = DynamoSubscriptionRepository()
    return _repository


def get_ingestor() -> WebhookIngestor:
    global _ingestor
    if _ingestor is None:
        _ingestor = WebhookIngestor(
            repository=get_repository(),
            ledger=DynamoIdempotencyLedger(),
            manager=SubscriptionManager(),
            notifier=TrialNotifier(),
        )
    return _ingestor


def get_service() -> EntitlementService:
    global _service
    if _service is None:
        _service = EntitlementService(
            repository=get_repository(),
            content_repository=DynamoContentRepository(),
            manager=SubscriptionManager(),
        )
    return _service


def reset_services():
    """Reset all cached services. Used in tests for clean state."""
    global _repository, _ingestor, _service
    _repository = None
    _ingestor = None
    _service = None
