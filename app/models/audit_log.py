from datetime import datetime
from typing import Any

from beanie import Document
from pydantic import Field
from pymongo import ASCENDING, DESCENDING, IndexModel


class AuditLog(Document):
    """Operator actions on the OraclePay integration and its callback records."""

    actor_id: str | None = None  # admin user id; None for the retry job
    action: str  # oraclepay_api_key_validated | oraclepay_running_changed | webhook_reprocessed
    entity_type: str  # integration_settings | oraclepay_deposit
    entity_id: str | None = None
    metadata: dict[str, Any] = Field(default_factory=dict)
    request_id: str | None = None
    created_at: datetime = Field(default_factory=datetime.utcnow)

    class Settings:
        name = "audit_logs"
        indexes = [
            IndexModel([("entity_type", ASCENDING), ("entity_id", ASCENDING), ("created_at", DESCENDING)]),
            IndexModel([("actor_id", ASCENDING), ("created_at", DESCENDING)]),
            IndexModel([("action", ASCENDING)]),
        ]
