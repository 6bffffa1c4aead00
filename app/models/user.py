from datetime import datetime
from typing import Any

from beanie import Document, Indexed
from pydantic import BaseModel, Field


class ActiveBonus(BaseModel):
    bonus_type: str
    bonus_code: str | None = None
    amount: float
    original_amount: float
    wagering_requirement: float
    amount_wagered: float = 0
    session_code: str | None = None
    transaction_id: str | None = None
    created_at: datetime = Field(default_factory=datetime.utcnow)
    expires_at: datetime
    status: str = "active"


class BonusInfo(BaseModel):
    active_bonuses: list[ActiveBonus] = Field(default_factory=list)
    first_deposit_bonus_claimed: bool = False


class User(Document):
    """Player account. Ledger fields are mutated only through app.services.ledger."""

    username: Indexed(str, unique=True)
    email: str | None = None
    phone: str | None = None
    password_hash: str | None = None
    two_factor_secret: str | None = None
    role: str = "user"  # "user" | "admin"
    session_version: int = 0

    balance: float = 0
    bonus_balance: float = 0
    total_deposit: float = 0
    lifetime_deposit: float = 0
    deposit_amount: float = 0  # last deposit, drives wagering checks
    wagering_need: float = 0
    total_bet: float = 0
    affiliate_deposit: float = 0

    transaction_history: list[dict[str, Any]] = Field(default_factory=list)  # newest first
    bonus_activity_logs: list[dict[str, Any]] = Field(default_factory=list)
    bonus_info: BonusInfo = Field(default_factory=BonusInfo)
    deposit_history: list[dict[str, Any]] = Field(default_factory=list)  # newest first, capped

    created_at: datetime = Field(default_factory=datetime.utcnow)
    updated_at: datetime = Field(default_factory=datetime.utcnow)

    class Settings:
        name = "users"
        indexes = [
            [("email", 1)],
            [("phone", 1)],
            [("transaction_history.reference_id", 1)],
        ]
