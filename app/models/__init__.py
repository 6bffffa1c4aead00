from app.models.user import User
from app.models.transaction import Transaction
from app.models.webhook_event import WebhookEvent
from app.models.integration_settings import IntegrationSettings
from app.models.audit_log import AuditLog
from app.models.failed_job import FailedJob

__all__ = [
    "User",
    "Transaction",
    "WebhookEvent",
    "IntegrationSettings",
    "AuditLog",
    "FailedJob",
]
