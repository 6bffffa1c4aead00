from datetime import datetime
from typing import Any

from beanie import Document, PydanticObjectId
from pydantic import BaseModel, Field
from pymongo import ASCENDING, DESCENDING, IndexModel

# Intake outcome codes (besides STATUS_<provider status>)
REASON_MISSING_REQUIRED_FIELDS = "MISSING_REQUIRED_FIELDS"
REASON_USER_NOT_FOUND = "USER_NOT_FOUND"
REASON_RECONCILIATION_FAILED = "RECONCILIATION_FAILED"
STATUS_REASON_PREFIX = "STATUS_"


class BalanceSnapshot(BaseModel):
    previous_balance: float
    new_balance: float
    previous_bonus_balance: float
    new_bonus_balance: float


class WebhookEvent(Document):
    """Raw OraclePay callback. One per delivery attempt that was not a duplicate; never deleted."""

    status: str | None = None
    invoice_number: str | None = None
    amount: float | None = None
    transaction_id: str | None = None
    session_code: str | None = None
    user_identity: str | None = None
    checkout_items: dict[str, Any] = Field(default_factory=dict)
    footprint: str | None = None
    bank: str | None = None
    payload: dict[str, Any] = Field(default_factory=dict)

    received_at: datetime = Field(default_factory=datetime.utcnow)
    processed: bool = False
    reason: str | None = None

    # Claim held while one worker reconciles this record
    processing: bool = False
    processing_started_at: datetime | None = None
    attempts: int = 0
    last_error: str | None = None

    # Filled once the credit is applied
    credited_at: datetime | None = None  # ledger credit applied; retries skip it
    processed_at: datetime | None = None
    checked_at: datetime | None = None
    user_id: PydanticObjectId | None = None
    username: str | None = None
    bonus_amount: float | None = None
    total_credit: float | None = None
    user_data: BalanceSnapshot | None = None
    bonus_details: dict[str, Any] | None = None
    deposit_id: PydanticObjectId | None = None

    class Settings:
        name = "oraclepay_deposits"
        indexes = [
            IndexModel(
                [("transaction_id", ASCENDING)],
                unique=True,
                partialFilterExpression={"transaction_id": {"$type": "string"}},
                name="transaction_id_unique_partial",
            ),
            IndexModel([("session_code", ASCENDING)]),
            IndexModel([("received_at", DESCENDING)]),
            IndexModel([("processed", ASCENDING), ("reason", ASCENDING)]),
            IndexModel([("user_id", ASCENDING)]),
        ]
