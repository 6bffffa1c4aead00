"""Deposit records: pending creation, webhook matching, completion, expiry."""

import secrets
import time
from datetime import datetime, timedelta
from typing import Any

from beanie import PydanticObjectId, UpdateResponse
from pymongo.errors import DuplicateKeyError

from app.core.exceptions import BadRequestError, NotFoundError
from app.core.logging import get_logger
from app.models.transaction import BONUS_TYPES, Transaction, normalize_bank
from app.models.user import User
from app.services.bonus import BonusInfo

log = get_logger(__name__)

PAYMENT_LINK_TTL_MINUTES = 30
CLAIM_ATTEMPTS = 3


def make_invoice_number(user_id: PydanticObjectId) -> str:
    """`INV-<userId>-<ms>`, parsed back by the identity resolver."""
    return f"INV-{user_id}-{int(time.time() * 1000)}"


def make_identity_token(user_id: PydanticObjectId) -> str:
    """`<userId>-<ms>-<random>`, the user_identity sent to OraclePay."""
    return f"{user_id}-{int(time.time() * 1000)}-{secrets.randbelow(10**6)}"


async def create_pending_deposit(
    user_id: PydanticObjectId,
    amount: float,
    method: str = "oraclepay",
    session_code: str | None = None,
    bonus: BonusInfo | None = None,
    phone_number: str | None = None,
    payment_url: str | None = None,
    ip_address: str | None = None,
    user_agent: str | None = None,
) -> Transaction:
    """Persist the pending record that a later OraclePay callback completes."""
    if amount <= 0:
        raise BadRequestError("Amount must be greater than 0")
    user = await User.get(user_id)
    if not user:
        raise NotFoundError("User not found")
    bonus = bonus or BonusInfo()
    identity = make_identity_token(user.id)
    deposit = Transaction(
        user=user,
        type="deposit",
        method=method,
        amount=amount,
        phone_number=phone_number,
        bonus_type=bonus.bonus_type if bonus.bonus_type in BONUS_TYPES else "none",
        bonus_amount=bonus.bonus_amount,
        wagering_requirement=bonus.wagering_requirement,
        bonus_code=bonus.bonus_code or None,
        player_balance=user.balance,
        oraclepay_session_code=session_code,
        user_identify_address=identity,
        payment_id=identity,
        invoice_number=make_invoice_number(user.id),
        checkout_items={"userId": str(user.id), "method": method},
        payment_url=payment_url,
        ip_address=ip_address,
        user_agent=user_agent,
        expires_at=datetime.utcnow() + timedelta(minutes=PAYMENT_LINK_TTL_MINUTES),
        description="OraclePay deposit",
    )
    await deposit.insert()
    log.info("pending_deposit_created", deposit_id=str(deposit.id), user_id=str(user.id), amount=amount)
    return deposit


async def find_pending_deposit(
    user_id: PydanticObjectId,
    checkout_items: dict[str, Any] | None = None,
    invoice_number: str | None = None,
    session_code: str | None = None,
) -> Transaction | None:
    """Locate the pending deposit a callback refers to; falls back to the user's newest pending one."""
    base = {"user.$id": user_id, "status": "pending"}
    queries: list[dict[str, Any]] = []
    if checkout_items and checkout_items.get("userId"):
        queries.append({**base, "checkout_items.userId": str(user_id)})
    if invoice_number:
        queries.append({**base, "invoice_number": invoice_number})
    if session_code:
        queries.append({**base, "oraclepay_session_code": session_code})
    for query in queries:
        deposit = await Transaction.find_one(query)
        if deposit:
            return deposit
    return await Transaction.find(base).sort(-Transaction.created_at, -Transaction.id).first_or_none()


async def claim_pending_deposit(
    user_id: PydanticObjectId,
    transaction_id: str,
    checkout_items: dict[str, Any] | None = None,
    invoice_number: str | None = None,
    session_code: str | None = None,
) -> Transaction | None:
    """
    Match a pending deposit and take it for one provider transaction.

    The claim moves the record to `processing` with the transaction id set, so a
    concurrent callback cannot inherit the same deposit (or its bonus). A lost
    race looks again; None means no pending deposit is left for this callback.
    """
    for _ in range(CLAIM_ATTEMPTS):
        candidate = await find_pending_deposit(user_id, checkout_items, invoice_number, session_code)
        if candidate is None:
            return None
        claimed = await Transaction.find_one({"_id": candidate.id, "status": "pending"}).update(
            {"$set": {"status": "processing", "transaction_id": transaction_id, "updated_at": datetime.utcnow()}},
            response_type=UpdateResponse.NEW_DOCUMENT,
        )
        if claimed is not None:
            return claimed
        log.info("pending_deposit_claim_lost", deposit_id=str(candidate.id))
    return None


def build_completed_deposit(
    user: User,
    amount: float,
    bonus: BonusInfo,
    transaction_id: str,
    session_code: str | None = None,
    invoice_number: str | None = None,
    bank: str | None = None,
    footprint: str | None = None,
    webhook_response: dict[str, Any] | None = None,
) -> Transaction:
    """Unsaved completed record for a credit that had no pending deposit."""
    now = datetime.utcnow()
    return Transaction(
        user=user,
        type="deposit",
        method=bonus.method,
        amount=amount,
        status="completed",
        transaction_id=transaction_id,
        bonus_type=bonus.bonus_type if bonus.bonus_type in BONUS_TYPES else "none",
        bonus_amount=bonus.bonus_amount,
        wagering_requirement=bonus.wagering_requirement,
        bonus_code=bonus.bonus_code or None,
        player_balance=user.balance,
        oraclepay_session_code=session_code,
        invoice_number=invoice_number,
        bank=normalize_bank(bank),
        footprint=footprint,
        webhook_response=webhook_response or {},
        processed_at=now,
        completed_at=now,
        description="OraclePay deposit (no pending record)",
    )


async def save_completed_deposit(deposit: Transaction) -> Transaction:
    """Insert a built completed record; idempotent on transaction_id."""
    try:
        await deposit.insert()
    except DuplicateKeyError:
        existing = await Transaction.find_one(Transaction.transaction_id == deposit.transaction_id)
        if existing is None and deposit.oraclepay_session_code:
            # the collision was on the session code
            existing = await Transaction.find_by_session_code(deposit.oraclepay_session_code)
        if existing is None:
            raise
        return existing
    return deposit


async def record_completed_deposit(user: User, amount: float, bonus: BonusInfo, transaction_id: str, **fields: Any) -> Transaction:
    return await save_completed_deposit(build_completed_deposit(user, amount, bonus, transaction_id, **fields))


async def list_user_deposits(user_id: PydanticObjectId, limit: int = 50, offset: int = 0) -> list[Transaction]:
    return (
        await Transaction.find(Transaction.user.id == user_id)
        .sort(-Transaction.created_at, -Transaction.id)
        .skip(offset)
        .limit(limit)
        .to_list()
    )


async def expire_overdue_deposits(now: datetime | None = None) -> int:
    """Move pending records whose payment link lapsed to `expired`."""
    now = now or datetime.utcnow()
    result = await Transaction.get_motor_collection().update_many(
        {"status": "pending", "expires_at": {"$lt": now}},
        {"$set": {"status": "expired", "updated_at": now}},
    )
    if result.modified_count:
        log.info("pending_deposits_expired", count=result.modified_count)
    return result.modified_count
