"""Atomic crediting of a player's ledger fields for one completed deposit."""

import random
import time
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any

from beanie import PydanticObjectId
from pymongo import ReturnDocument

from app.core.config import Settings, get_settings
from app.core.exceptions import LedgerUpdateError
from app.models.user import ActiveBonus, User
from app.services.bonus import BonusInfo, effective_wagering_requirement, total_credit


@dataclass
class DepositCredit:
    """Everything the ledger needs to know about one completed provider payment."""

    user_id: PydanticObjectId
    amount: float
    bonus: BonusInfo
    transaction_id: str
    session_code: str | None = None
    invoice_number: str | None = None
    bank: str | None = None
    footprint: str | None = None
    balance_before: float = 0
    player_balance: float | None = None

    @property
    def total(self) -> float:
        return total_credit(self.amount, self.bonus)


def _order_id() -> str:
    return f"DEP-{int(time.time() * 1000)}-{random.randint(0, 999)}"


def build_credit_update(
    credit: DepositCredit,
    now: datetime | None = None,
    settings: Settings | None = None,
) -> tuple[dict[str, Any], dict[str, Any]]:
    """
    Return (filter, update) for a single update_one on the user.

    The filter skips users whose transaction history already references this
    provider transaction id, so re-running the same credit is a no-op.
    """
    settings = settings or get_settings()
    now = now or datetime.utcnow()
    bonus = credit.bonus
    has_bonus = bonus.bonus_amount > 0
    wagering = effective_wagering_requirement(bonus, settings) if has_bonus else bonus.wagering_requirement

    description = f"Deposit via OraclePay ({credit.bank})"
    if has_bonus:
        description += f" with {bonus.bonus_type} bonus"
    transaction_entry = {
        "type": "deposit",
        "amount": credit.amount,
        "balance_before": credit.balance_before,
        "balance_after": credit.balance_before + credit.total,
        "description": description,
        "reference_id": credit.transaction_id,
        "session_code": credit.session_code,
        "metadata": {
            "bank": credit.bank,
            "invoice_number": credit.invoice_number,
            "footprint": credit.footprint,
        },
        "created_at": now,
    }
    deposit_entry = {
        "method": bonus.method,
        "amount": credit.amount,
        "status": "completed",
        "transaction_id": credit.transaction_id,
        "session_code": credit.session_code,
        "bank": credit.bank,
        "invoice_number": credit.invoice_number,
        "bonus_applied": has_bonus,
        "bonus_type": bonus.bonus_type,
        "bonus_amount": bonus.bonus_amount,
        "bonus_code": bonus.bonus_code,
        "wagering_requirement": bonus.wagering_requirement,
        "order_id": _order_id(),
        "payment_url": credit.footprint or "",
        "player_balance": credit.player_balance if credit.player_balance is not None else credit.balance_before,
        "processed_at": now,
        "completed_at": now,
        "created_at": now,
    }

    inc: dict[str, Any] = {
        "balance": credit.total,
        "total_deposit": credit.amount,
        "lifetime_deposit": credit.amount,
        "affiliate_deposit": credit.amount,
    }
    set_: dict[str, Any] = {
        "deposit_amount": credit.amount,
        "wagering_need": wagering,
        "total_bet": 0,
        "updated_at": now,
    }
    push: dict[str, Any] = {
        "transaction_history": {
            "$each": [transaction_entry],
            "$position": 0,
            "$slice": settings.transaction_history_limit,
        },
        "deposit_history": {
            "$each": [deposit_entry],
            "$position": 0,
            "$slice": settings.deposit_history_limit,
        },
    }

    if has_bonus:
        inc["bonus_balance"] = bonus.bonus_amount
        activity = {
            "bonus_type": bonus.bonus_type,
            "bonus_amount": bonus.bonus_amount,
            "deposit_amount": credit.amount,
            "session_code": credit.session_code,
            "transaction_id": credit.transaction_id,
            "activated_at": now,
            "status": "active",
        }
        if bonus.bonus_code:
            activity["bonus_code"] = bonus.bonus_code
        push["bonus_activity_logs"] = activity
        push["bonus_info.active_bonuses"] = ActiveBonus(
            bonus_type=bonus.bonus_type,
            bonus_code=bonus.bonus_code or None,
            amount=bonus.bonus_amount,
            original_amount=bonus.bonus_amount,
            wagering_requirement=wagering,
            session_code=credit.session_code,
            transaction_id=credit.transaction_id,
            created_at=now,
            expires_at=now + timedelta(days=settings.bonus_expiry_days),
        ).model_dump()
        if bonus.bonus_type == "first_deposit":
            set_["bonus_info.first_deposit_bonus_claimed"] = True

    query = {"_id": credit.user_id, "transaction_history.reference_id": {"$ne": credit.transaction_id}}
    return query, {"$inc": inc, "$set": set_, "$push": push}


BALANCE_FIELDS = {"balance": 1, "bonus_balance": 1}


@dataclass
class CreditOutcome:
    """Whether this call applied the credit, and the user's balances after it."""

    applied: bool
    balance: float
    bonus_balance: float

    @classmethod
    def from_doc(cls, applied: bool, doc: dict[str, Any]) -> "CreditOutcome":
        return cls(applied, doc.get("balance", 0), doc.get("bonus_balance", 0))


async def apply_deposit_credit(credit: DepositCredit) -> CreditOutcome:
    """
    Apply the credit in one atomic update and return the balances it produced.
    `applied` is False when an earlier attempt already applied it. Raises
    LedgerUpdateError when nothing matched.
    """
    query, update = build_credit_update(credit)
    users = User.get_motor_collection()
    doc = await users.find_one_and_update(
        query, update, projection=BALANCE_FIELDS, return_document=ReturnDocument.AFTER
    )
    if doc is not None:
        return CreditOutcome.from_doc(True, doc)
    doc = await users.find_one(
        {"_id": credit.user_id, "transaction_history.reference_id": credit.transaction_id},
        projection=BALANCE_FIELDS,
    )
    if doc is not None:
        return CreditOutcome.from_doc(False, doc)
    raise LedgerUpdateError(details={"user_id": str(credit.user_id), "transaction_id": credit.transaction_id})


async def get_balances(user_id: PydanticObjectId) -> dict[str, float]:
    doc = await User.get_motor_collection().find_one({"_id": user_id}, projection=BALANCE_FIELDS)
    if not doc:
        return {"balance": 0, "bonus_balance": 0}
    return {"balance": doc.get("balance", 0), "bonus_balance": doc.get("bonus_balance", 0)}
