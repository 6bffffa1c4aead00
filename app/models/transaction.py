"""Deposit / withdrawal / transfer / bonus records (collection `deposits`)."""

from datetime import datetime
from typing import Any, Literal, get_args

from beanie import Document, Link, PydanticObjectId
from pydantic import BaseModel, Field, model_validator
from pymongo import ASCENDING, DESCENDING, IndexModel

from app.models.user import User

TransactionType = Literal["deposit", "withdrawal", "transfer", "bonus"]
TransactionStatus = Literal["pending", "processing", "completed", "failed", "cancelled", "rejected", "expired"]
BonusType = Literal[
    "none", "first_deposit", "welcome_bonus", "reload_bonus", "special_bonus", "cashback", "referral"
]
Bank = Literal["bkash", "nagad", "rocket", "upay", "bank", "card", "oraclepay"]

BANKS = frozenset(get_args(Bank))
BONUS_TYPES = frozenset(get_args(BonusType))
MOBILE_WALLET_METHODS = frozenset({"bkash", "nagad", "rocket", "upay"})


def _partial_unique(field: str) -> IndexModel:
    # Only string values are indexed, so documents holding null never collide.
    return IndexModel(
        [(field, ASCENDING)],
        unique=True,
        partialFilterExpression={field: {"$type": "string"}},
        name=f"{field}_unique_partial",
    )


def normalize_bank(value: Any) -> str | None:
    if isinstance(value, str) and value.lower() in BANKS:
        return value.lower()
    return None


class Charge(BaseModel):
    fixed: float = Field(default=0, ge=0)
    percent: float = Field(default=0, ge=0)


class Transaction(Document):
    user: Link[User]
    type: TransactionType = "deposit"
    method: str
    amount: float = Field(ge=0)
    status: TransactionStatus = "pending"
    phone_number: str | None = None
    transaction_id: str | None = None

    bonus_type: BonusType = "none"
    bonus_amount: float = Field(default=0, ge=0)
    wagering_requirement: float = Field(default=0, ge=0)
    bonus_code: str | None = None

    player_balance: float = 0  # user balance when the record was created

    # OraclePay
    oraclepay_session_code: str | None = None
    user_identify_address: str | None = None
    invoice_number: str | None = None
    checkout_items: dict[str, Any] = Field(default_factory=dict)
    payment_url: str | None = None
    payment_id: str | None = None
    external_payment_id: str | None = None
    external_methods: list[str] = Field(default_factory=list)
    bank: Bank | None = None
    webhook_response: dict[str, Any] = Field(default_factory=dict)

    currency: str = "BDT"
    rate: float = Field(default=1, ge=0)
    charge: Charge = Field(default_factory=Charge)

    footprint: str | None = None
    ip_address: str | None = None
    user_agent: str | None = None

    expires_at: datetime | None = None
    processed_at: datetime | None = None
    completed_at: datetime | None = None
    failed_at: datetime | None = None
    failure_reason: str | None = None
    description: str = ""

    created_at: datetime = Field(default_factory=datetime.utcnow)
    updated_at: datetime = Field(default_factory=datetime.utcnow)

    class Settings:
        name = "deposits"
        indexes = [
            IndexModel([("user", ASCENDING), ("created_at", DESCENDING)]),
            IndexModel([("status", ASCENDING), ("type", ASCENDING), ("created_at", DESCENDING)]),
            IndexModel([("user", ASCENDING), ("status", ASCENDING), ("type", ASCENDING)]),
            IndexModel([("method", ASCENDING), ("status", ASCENDING), ("created_at", DESCENDING)]),
            IndexModel([("bonus_type", ASCENDING), ("status", ASCENDING)]),
            IndexModel([("bank", ASCENDING), ("status", ASCENDING)]),
            _partial_unique("oraclepay_session_code"),
            _partial_unique("transaction_id"),
            IndexModel([("user_identify_address", ASCENDING)]),
            IndexModel([("invoice_number", ASCENDING)]),
            IndexModel([("payment_id", ASCENDING)]),
            IndexModel([("bonus_code", ASCENDING)]),
        ]

    @model_validator(mode="after")
    def _phone_required_for_mobile_wallets(self) -> "Transaction":
        # Player-initiated records only; provider callbacks never carry a phone number.
        if self.status == "pending" and self.method in MOBILE_WALLET_METHODS and not self.phone_number:
            raise ValueError(f"phone_number is required for method {self.method}")
        return self

    @property
    def total_amount(self) -> float:
        return self.amount + (self.bonus_amount or 0)

    @property
    def is_expired(self) -> bool:
        return self.expires_at is not None and datetime.utcnow() > self.expires_at

    def can_be_processed(self) -> bool:
        return self.status == "pending" and not self.is_expired

    def completion_fields(
        self,
        transaction_id: str | None = None,
        bank: str | None = None,
        now: datetime | None = None,
        **extra: Any,
    ) -> dict[str, Any]:
        """Fields written by the pending -> completed transition."""
        now = now or datetime.utcnow()
        fields: dict[str, Any] = {
            "status": "completed",
            "transaction_id": transaction_id or self.transaction_id,
            "bank": normalize_bank(bank) or self.bank,
            "completed_at": self.completed_at or now,
            "processed_at": self.processed_at or now,
            "updated_at": now,
        }
        fields.update(extra)
        return fields

    def failure_fields(self, reason: str, now: datetime | None = None, **extra: Any) -> dict[str, Any]:
        """Fields written by the pending -> failed transition."""
        now = now or datetime.utcnow()
        fields: dict[str, Any] = {
            "status": "failed",
            "failure_reason": reason,
            "failed_at": self.failed_at or now,
            "updated_at": now,
        }
        fields.update(extra)
        return fields

    async def _transition(self, fields: dict[str, Any], from_statuses: tuple[str, ...] = ("pending",)) -> bool:
        result = await Transaction.get_motor_collection().update_one(
            {"_id": self.id, "status": {"$in": list(from_statuses)}},
            {"$set": fields},
        )
        if result.modified_count == 0:
            return False
        for key, value in fields.items():
            setattr(self, key, value)
        return True

    async def mark_completed(self, transaction_id: str | None = None, bank: str | None = None, **extra: Any) -> bool:
        """Complete a pending or claimed record. Returns False when it was neither."""
        return await self._transition(
            self.completion_fields(transaction_id, bank, **extra), from_statuses=("pending", "processing")
        )

    async def mark_failed(self, reason: str, **extra: Any) -> bool:
        """Fail a pending record. Returns False when it was no longer pending."""
        return await self._transition(self.failure_fields(reason, **extra))

    @classmethod
    async def find_by_session_code(cls, session_code: str) -> "Transaction | None":
        return await cls.find_one(cls.oraclepay_session_code == session_code)

    @classmethod
    async def find_by_user_identify_address(cls, address: str) -> "Transaction | None":
        return await cls.find_one(cls.user_identify_address == address)

    @classmethod
    async def find_pending_oraclepay(cls, limit: int = 100) -> list["Transaction"]:
        return (
            await cls.find({"oraclepay_session_code": {"$type": "string"}, "status": "pending"})
            .sort(-cls.created_at)
            .limit(limit)
            .to_list()
        )

    @classmethod
    async def get_stats(cls, user_id: PydanticObjectId, days: int = 30) -> list[dict[str, Any]]:
        """Per-status count, amount and bonus totals for one user over the last `days` days."""
        from datetime import timedelta

        start = datetime.utcnow() - timedelta(days=days)
        pipeline = [
            {"$match": {"user.$id": user_id, "created_at": {"$gte": start}}},
            {
                "$group": {
                    "_id": "$status",
                    "count": {"$sum": 1},
                    "totalAmount": {"$sum": "$amount"},
                    "totalBonus": {"$sum": "$bonus_amount"},
                }
            },
            {"$sort": {"_id": 1}},
        ]
        rows = await cls.get_motor_collection().aggregate(pipeline).to_list(length=None)
        return [
            {
                "status": r["_id"],
                "count": r["count"],
                "totalAmount": r["totalAmount"],
                "totalBonus": r["totalBonus"],
            }
            for r in rows
        ]
